"""
Voice provider configuration.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported voice provider types."""

    RETELL = "retell"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Voice provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="RETELL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.RETELL)

    api_key: str = Field(default="")
    base_url: str = Field(default="https://api.retellai.com")
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)

    # Used when an organization has no phone number of its own
    default_from_number: str = Field(default="")


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
