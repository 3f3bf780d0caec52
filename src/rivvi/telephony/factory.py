"""
Voice provider factory.
"""

from functools import lru_cache

from rivvi.telephony.config import ProviderType, get_telephony_config
from rivvi.telephony.interface import TelephonyProvider
from rivvi.telephony.mock_adapter import MockTelephonyProvider
from rivvi.telephony.retell_adapter import RetellProvider
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


@lru_cache(maxsize=1)
def get_telephony_provider() -> TelephonyProvider:
    """Create and cache the configured voice provider; also a FastAPI dependency."""
    cfg = get_telephony_config()

    logger.info(
        "Telephony config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "api_key": _mask(cfg.api_key),
            "base_url": cfg.base_url,
            "default_from_number": cfg.default_from_number,
        },
    )

    if cfg.provider_type == ProviderType.RETELL:
        return RetellProvider(cfg)

    if cfg.provider_type == ProviderType.MOCK:
        return MockTelephonyProvider()

    raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}")
