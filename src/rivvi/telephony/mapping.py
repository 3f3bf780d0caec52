"""
Mapping between voice provider payloads and local call/row state.
"""

import json
from typing import Any

from rivvi.calls.models import CallStatus
from rivvi.runs.models import RowStatus

PROVIDER_CALL_STATUS_MAP: dict[str, CallStatus] = {
    "registered": CallStatus.PENDING,
    "ongoing": CallStatus.IN_PROGRESS,
    "ended": CallStatus.COMPLETED,
    "error": CallStatus.FAILED,
    "voicemail": CallStatus.VOICEMAIL,
}

# Rows have no voicemail state; the row keeps ``metadata.was_voicemail`` instead.
PROVIDER_ROW_STATUS_MAP: dict[str, RowStatus] = {
    "ongoing": RowStatus.CALLING,
    "registered": RowStatus.PENDING,
    "ended": RowStatus.COMPLETED,
    "error": RowStatus.FAILED,
    "voicemail": RowStatus.COMPLETED,
}

_SENTIMENT_KEYS = ("sentiment", "user_sentiment", "patient_sentiment", "call_sentiment")
_VOICEMAIL_KEYS = (
    "voicemail_left",
    "voicemailLeft",
    "left_voicemail",
    "leftVoicemail",
    "voicemail",
    "in_voicemail",
    "voicemail_detected",
)
_CALLBACK_KEYS = ("callback_requested", "callbackRequested")
_QUESTION_KEYS = ("patient_questions", "patientQuestion", "has_questions", "hasQuestions", "patient_question")
_CALLBACK_PHRASES = ("call me back", "callback", "call me tomorrow")
_POSITIVE_WORDS = ("great", "good", "excellent", "happy", "pleased", "thank you", "appreciate")
_NEGATIVE_WORDS = ("bad", "unhappy", "disappointed", "frustrated", "upset", "angry", "not right")


def map_call_status(provider_status: str | None) -> CallStatus:
    return PROVIDER_CALL_STATUS_MAP.get((provider_status or "").lower(), CallStatus.PENDING)


def map_row_status(provider_status: str | None) -> RowStatus:
    return PROVIDER_ROW_STATUS_MAP.get((provider_status or "").lower(), RowStatus.PENDING)


def ensure_string_value(value: Any) -> str:
    """Render a value the way the provider expects dynamic variables."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def stringify_variables(variables: dict[str, Any]) -> dict[str, str]:
    return {key: ensure_string_value(value) for key, value in variables.items()}


def is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes")
    return False


def _sentiment_from_analysis(analysis: dict[str, Any]) -> str | None:
    for key in _SENTIMENT_KEYS:
        value = analysis.get(key)
        if isinstance(value, str):
            lowered = value.lower()
            if "positive" in lowered:
                return "positive"
            if "negative" in lowered:
                return "negative"
    return None


def _sentiment_from_transcript(transcript: str) -> str:
    lowered = transcript.lower()
    positive = sum(1 for word in _POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in _NEGATIVE_WORDS if word in lowered)
    if positive > negative + 1:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def extract_call_insights(
    transcript: str | None,
    analysis: dict[str, Any] | None,
) -> dict[str, Any]:
    """Derive sentiment, reach and follow-up flags from a finished call.

    Returns:
        Dict with ``sentiment``, ``follow_up_needed``, ``follow_up_reason``,
        ``patient_reached`` and ``voicemail_left``.
    """
    analysis = analysis or {}

    sentiment = _sentiment_from_analysis(analysis)
    if sentiment is None:
        sentiment = _sentiment_from_transcript(transcript) if transcript else "neutral"

    reached_value = analysis.get("patient_reached", analysis.get("patientReached"))
    patient_reached = is_truthy(reached_value)
    voicemail_left = any(analysis.get(key) is True for key in _VOICEMAIL_KEYS)

    callback_requested = any(is_truthy(analysis.get(key)) for key in _CALLBACK_KEYS)
    had_questions = any(is_truthy(analysis.get(key)) for key in _QUESTION_KEYS)

    follow_up_reason: str | None = None
    if callback_requested:
        follow_up_reason = "Patient requested follow-up"
    elif had_questions:
        follow_up_reason = "Patient had unanswered questions"
    elif not patient_reached and not voicemail_left:
        follow_up_reason = "Unable to reach patient"
    elif sentiment == "negative":
        follow_up_reason = "Negative sentiment detected"
    elif transcript and any(phrase in transcript.lower() for phrase in _CALLBACK_PHRASES):
        follow_up_reason = "Callback request detected in transcript"

    return {
        "sentiment": sentiment,
        "follow_up_needed": follow_up_reason is not None,
        "follow_up_reason": follow_up_reason,
        "patient_reached": patient_reached,
        "voicemail_left": voicemail_left,
    }
