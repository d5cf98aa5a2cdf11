"""
Realtime channel.

A single socket.io connection per session. Subscribers are kept here rather
than on the transport: the transport gets one dispatcher per event name, so
reconnects and repeated subscriptions never register a handler twice.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import socketio

logger = logging.getLogger(__name__)

Handler = Callable[..., None]


class Subscription:
    def __init__(self, channel: "RealtimeChannel", event: str, handler: Handler) -> None:
        self.channel = channel
        self.event = event
        self.handler = handler

    def cancel(self) -> None:
        self.channel.unsubscribe(self.event, self.handler)


class RealtimeChannel:
    def __init__(self, url: str, token: Optional[str] = None, client: Any = None) -> None:
        self.url = url
        self.token = token
        self.active_users = 0
        self._sio = client if client is not None else socketio.Client(reconnection=True)
        self._handlers: Dict[str, List[Handler]] = {}
        self._bound: set = set()
        self._lock = threading.RLock()
        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        self.subscribe("activeUsers", self._on_active_users)

    @property
    def connected(self) -> bool:
        return bool(getattr(self._sio, "connected", False))

    def connect(self) -> bool:
        if self.connected:
            return True
        try:
            self._sio.connect(
                self.url,
                transports=["websocket", "polling"],
                auth={"token": self.token} if self.token else None,
            )
        except socketio.exceptions.ConnectionError as e:
            logger.warning("Realtime connection to %s failed: %s", self.url, e)
            return False
        return True

    def subscribe(self, event: str, handler: Handler) -> Subscription:
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)
            if event not in self._bound:
                self._bound.add(event)

                def dispatcher(*args):
                    self._dispatch(event, *args)

                self._sio.on(event, dispatcher)
        return Subscription(self, event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

    def subscriber_count(self, event: str) -> int:
        with self._lock:
            return len(self._handlers.get(event, []))

    def _dispatch(self, event: str, *args) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                logger.exception("Subscriber for %r failed", event)

    def emit(self, event: str, data: Any = None) -> None:
        if not self.connected:
            logger.debug("Dropping %r while disconnected", event)
            return
        self._sio.emit(event, data)

    def join(self, room: str) -> None:
        self.emit("join_chat", room)

    def close(self) -> None:
        with self._lock:
            self._handlers.clear()
        if self.connected:
            self._sio.disconnect()

    # -------------------- transport callbacks --------------------

    def _on_connect(self) -> None:
        logger.info("Realtime connected: %s", getattr(self._sio, "sid", None))

    def _on_disconnect(self, *args) -> None:
        logger.info("Realtime disconnected")

    def _on_active_users(self, count: Any) -> None:
        try:
            self.active_users = int(count)
        except (TypeError, ValueError):
            logger.debug("Ignoring activeUsers payload %r", count)
