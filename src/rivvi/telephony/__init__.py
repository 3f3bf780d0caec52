"""
Voice-AI telephony provider integration.
"""

from rivvi.telephony.interface import (
    PhoneCallRequest,
    PhoneCallResponse,
    TelephonyProvider,
    TelephonyProviderError,
)

__all__ = [
    "PhoneCallRequest",
    "PhoneCallResponse",
    "TelephonyProvider",
    "TelephonyProviderError",
]
