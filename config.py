import os

from pydantic import BaseModel, Field


def _env_or(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v is not None else default


class Settings(BaseModel):
    api_base_url: str = "http://localhost:5000/api"
    socket_url: str = "http://localhost:5000"
    http_timeout: float = Field(10.0, gt=0)
    realtime: bool = True
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_base_url=_env_or("SHOPFRONT_API_BASE_URL", "http://localhost:5000/api"),
            socket_url=_env_or("SHOPFRONT_SOCKET_URL", "http://localhost:5000"),
            http_timeout=float(_env_or("SHOPFRONT_HTTP_TIMEOUT", "10.0")),
            realtime=_env_or("SHOPFRONT_REALTIME", "1").lower() not in ("0", "false", "no"),
            log_level=_env_or("SHOPFRONT_LOG_LEVEL", "INFO").upper(),
            port=int(_env_or("PORT", "8000")),
        )
