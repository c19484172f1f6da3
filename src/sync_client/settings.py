"""Client configuration.

Values come from the environment (or a ``.env`` file) through
python-decouple, like the server settings.
"""

from __future__ import annotations

from decouple import config
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_API_URL = "http://localhost:8000/api/v1"
DEFAULT_WS_URL = "ws://localhost:8765"


class ClientSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_url: str = DEFAULT_API_URL
    ws_url: str = DEFAULT_WS_URL
    access_token: str = ""
    request_timeout: float = Field(10.0, gt=0)
    # Client-visible limit for a carrier sync before cached data is shown.
    sync_timeout: float = Field(8.0, gt=0)
    reconnect_attempts: int = Field(5, ge=1)
    reconnect_base_delay: float = Field(0.5, ge=0)
    reconnect_max_delay: float = Field(10.0, ge=0)
    poll_interval: float = Field(30.0, gt=0)

    @classmethod
    def from_env(cls) -> ClientSettings:
        return cls(
            api_url=config("MARKETPLACE_API_URL", default=DEFAULT_API_URL),
            ws_url=config("MARKETPLACE_WS_URL", default=DEFAULT_WS_URL),
            access_token=config("MARKETPLACE_ACCESS_TOKEN", default=""),
            request_timeout=config("MARKETPLACE_REQUEST_TIMEOUT", default=10.0, cast=float),
            sync_timeout=config("MARKETPLACE_SYNC_TIMEOUT", default=8.0, cast=float),
            reconnect_attempts=config("MARKETPLACE_RECONNECT_ATTEMPTS", default=5, cast=int),
            poll_interval=config("MARKETPLACE_POLL_INTERVAL", default=30.0, cast=float),
        )
