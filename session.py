"""
Session composition.

A ``Session`` is built once per sign-in and owns everything that belongs to
that identity: the API client, the realtime channel and the view-models.
``close()`` is logout; nothing survives it.
"""

import logging
from typing import Any, Callable, Iterable, Optional

import httpx

from account import AccountStore, login
from backoffice import BackOffice
from cart import CartStore
from config import Settings
from gateway import ApiClient
from orders import OrderStore
from realtime import RealtimeChannel
from schemas import CartLine, Identity

logger = logging.getLogger(__name__)


class SessionError(Exception):
    pass


class Session:
    def __init__(
        self,
        identity: Identity,
        api: ApiClient,
        channel: Optional[RealtimeChannel] = None,
        cart_items: Iterable[CartLine] = (),
    ) -> None:
        self.identity = identity
        self.api = api
        self.channel = channel
        self.orders = OrderStore(api, privileged=identity.is_admin)
        self.account = AccountStore(api, identity)
        self.cart = CartStore(api, cart_items)
        self.backoffice = BackOffice(api) if identity.is_admin else None
        self.closed = False
        if channel is not None:
            self.orders.attach(channel)

    @property
    def is_admin(self) -> bool:
        return self.identity.is_admin

    @classmethod
    def open(
        cls,
        settings: Settings,
        email: str,
        password: str,
        http: Optional[httpx.Client] = None,
        socket_client: Any = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
        cart_items: Iterable[CartLine] = (),
    ) -> "Session":
        """Sign in and build the session. ``cart_items`` is a cart filled before sign-in."""
        api = ApiClient(
            base_url=settings.api_base_url,
            timeout=settings.http_timeout,
            http=http,
            on_unauthorized=on_unauthorized,
        )
        result = login(api, email, password)
        if not result.success:
            api.close()
            raise SessionError(result.message)
        identity = result.data
        channel = None
        if settings.realtime:
            channel = RealtimeChannel(settings.socket_url, token=identity.token, client=socket_client)
        session = cls(identity, api, channel, cart_items)
        session.orders.load()
        session.cart.on_login()
        if channel is not None:
            channel.connect()
        logger.info("Session opened for %s (admin=%s)", identity.email, identity.is_admin)
        return session

    def close(self) -> None:
        if self.closed:
            return
        self.orders.detach()
        if self.channel is not None:
            self.channel.close()
        self.api.token = None
        self.api.close()
        self.closed = True
        logger.info("Session closed for %s", self.identity.email)
