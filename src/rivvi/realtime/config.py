"""
Managed pub/sub (Pusher Channels) configuration.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RealtimeConfig(BaseSettings):
    """Pub/sub credentials from environment."""

    model_config = SettingsConfigDict(
        env_prefix="PUSHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=True)
    app_id: str = Field(default="")
    key: str = Field(default="")
    secret: str = Field(default="")
    cluster: str = Field(default="us2")
    timeout_seconds: float = Field(default=5.0, gt=0, le=60)

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.app_id and self.key and self.secret)

    @property
    def base_url(self) -> str:
        return f"https://api-{self.cluster}.pusher.com"


@lru_cache(maxsize=1)
def get_realtime_config() -> RealtimeConfig:
    return RealtimeConfig()
