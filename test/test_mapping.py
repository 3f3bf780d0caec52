"""
Tests for provider status mapping, dynamic-variable rendering and call insights.
"""

import pytest

from rivvi.calls.models import CallStatus
from rivvi.runs.models import RowStatus
from rivvi.telephony.mapping import (
    ensure_string_value,
    extract_call_insights,
    map_call_status,
    map_row_status,
    stringify_variables,
)


class TestStatusMapping:
    @pytest.mark.parametrize(
        "provider_status,call_status,row_status",
        [
            ("registered", CallStatus.PENDING, RowStatus.PENDING),
            ("ongoing", CallStatus.IN_PROGRESS, RowStatus.CALLING),
            ("ended", CallStatus.COMPLETED, RowStatus.COMPLETED),
            ("error", CallStatus.FAILED, RowStatus.FAILED),
            ("voicemail", CallStatus.VOICEMAIL, RowStatus.COMPLETED),
            ("ENDED", CallStatus.COMPLETED, RowStatus.COMPLETED),
        ],
    )
    def test_known_statuses(self, provider_status: str, call_status: CallStatus, row_status: RowStatus) -> None:
        assert map_call_status(provider_status) == call_status
        assert map_row_status(provider_status) == row_status

    def test_unknown_status_is_pending(self) -> None:
        assert map_call_status("dialing") == CallStatus.PENDING
        assert map_row_status(None) == RowStatus.PENDING


class TestEnsureStringValue:
    def test_values(self) -> None:
        assert ensure_string_value(None) == ""
        assert ensure_string_value(True) == "TRUE"
        assert ensure_string_value(False) == "FALSE"
        assert ensure_string_value(42) == "42"
        assert ensure_string_value({"a": 1}) == '{"a": 1}'

    def test_stringify_variables(self) -> None:
        assert stringify_variables({"is_minor": False, "count": 3, "name": "Jane"}) == {
            "is_minor": "FALSE",
            "count": "3",
            "name": "Jane",
        }


class TestExtractCallInsights:
    def test_reached_patient_with_positive_analysis(self) -> None:
        insights = extract_call_insights(
            "Agent: Hi Jane. Patient: Yes, confirmed.",
            {"patient_reached": True, "user_sentiment": "Positive"},
        )

        assert insights == {
            "sentiment": "positive",
            "follow_up_needed": False,
            "follow_up_reason": None,
            "patient_reached": True,
            "voicemail_left": False,
        }

    def test_string_flags_are_accepted(self) -> None:
        insights = extract_call_insights(None, {"patientReached": "yes", "callback_requested": "true"})

        assert insights["patient_reached"] is True
        assert insights["follow_up_reason"] == "Patient requested follow-up"

    def test_unreached_without_voicemail_needs_follow_up(self) -> None:
        insights = extract_call_insights(None, {})

        assert insights["sentiment"] == "neutral"
        assert insights["follow_up_needed"] is True
        assert insights["follow_up_reason"] == "Unable to reach patient"

    def test_voicemail_left(self) -> None:
        insights = extract_call_insights(None, {"voicemail_left": True})

        assert insights["voicemail_left"] is True
        assert insights["follow_up_needed"] is False

    def test_sentiment_from_transcript(self) -> None:
        insights = extract_call_insights(
            "I am upset and frustrated, this is bad.",
            {"patient_reached": True},
        )

        assert insights["sentiment"] == "negative"
        assert insights["follow_up_reason"] == "Negative sentiment detected"

    def test_callback_phrase_in_transcript(self) -> None:
        insights = extract_call_insights("Could you call me back later?", {"patient_reached": True})

        assert insights["follow_up_reason"] == "Callback request detected in transcript"
