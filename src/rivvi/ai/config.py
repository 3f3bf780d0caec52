"""
LLM gateway configuration.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from rivvi.ai.models import LLMProvider


class LLMConfig(BaseSettings):
    """Chat-completion provider settings from environment."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider: LLMProvider = Field(default=LLMProvider.OPENAI)
    api_key: str = Field(default="")
    base_url: str = Field(default="https://api.openai.com/v1")
    model: str = Field(default="gpt-4.1-mini")
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=4000, ge=1)


@lru_cache(maxsize=1)
def get_llm_config() -> LLMConfig:
    return LLMConfig()
