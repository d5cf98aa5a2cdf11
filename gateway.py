"""
API gateway client.

Wraps every REST call to the backend: base URL resolution, bearer token
injection for the signed-in customer or admin and translation of failures into
``ApiError``/``NetworkError``.
"""

import logging
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """The backend answered with an error status."""

    def __init__(self, description: str, status_code: Optional[int] = None, server_message: Optional[str] = None):
        super().__init__(description)
        self.status_code = status_code
        self.server_message = server_message


class NetworkError(ApiError):
    """No response at all: connection refused, DNS failure, timeout."""


def extract_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def message_of(exc: ApiError, default: str) -> str:
    """User-facing text for a failed call: the server's message, else ``default``."""
    return exc.server_message or default


class ApiClient:
    def __init__(
        self,
        base_url: str = "http://localhost:5000/api",
        token: Optional[str] = None,
        timeout: float = 10.0,
        http: Optional[httpx.Client] = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
    ) -> None:
        self.base_url = base_url
        self.token = token
        self.on_unauthorized = on_unauthorized
        self._owns_http = http is None
        self._http = http or httpx.Client(
            base_url=base_url,
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _unauthorized(self) -> None:
        self.token = None
        logger.warning("Credentials rejected; token cleared")
        if self.on_unauthorized is not None:
            self.on_unauthorized()

    def send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> httpx.Response:
        if params:
            params = {k: v for k, v in params.items() if v is not None and v != ""}
        try:
            r = self._http.request(method, path, params=params or None, json=json, headers=self._headers())
        except httpx.TransportError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise NetworkError(f"{method} {path}: {e}") from e
        if r.status_code == 401:
            self._unauthorized()
        if r.status_code >= 400:
            message = extract_message(r)
            logger.info("%s %s rejected with %s: %s", method, path, r.status_code, message)
            raise ApiError(f"{method} {path}: HTTP {r.status_code}", r.status_code, message)
        return r

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, json: Any = None) -> Any:
        r = self.send(method, path, params=params, json=json)
        if not r.content:
            return None
        if r.headers.get("content-type", "").startswith("application/json"):
            return r.json()
        return r.text

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: Any = None) -> Any:
        return self.request("PUT", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def download(self, path: str) -> bytes:
        return self.send("GET", path).content

    def close(self) -> None:
        if self._owns_http:
            self._http.close()
