from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    CHAT_WS_URL: str = "ws://localhost:3003"
    CHAT_API_URL: str = "http://localhost:3003/api"
    CHAT_TOKEN: str | None = None

    CONNECT_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    JOIN_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    SEND_ACK_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    RECONNECT_BASE_DELAY_SECONDS: float = Field(default=1.0, ge=0)
    RECONNECT_MAX_ATTEMPTS: int = Field(default=5, ge=1)

    HISTORY_PAGE_SIZE: int = Field(default=50, ge=1)
    HTTP_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
