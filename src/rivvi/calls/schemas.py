"""
Pydantic schemas for call API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rivvi.calls.models import CallStatus
from rivvi.campaigns.models import CallDirection
from rivvi.shared.schemas import DEFAULT_LIMIT, MAX_LIMIT, metadata_field


class CallResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: UUID
    run_id: UUID | None = None
    campaign_id: UUID | None = None
    row_id: UUID | None = None
    patient_id: UUID | None = None
    agent_id: str
    direction: CallDirection
    status: CallStatus
    retell_call_id: str | None = None
    recording_url: str | None = None
    to_number: str
    from_number: str
    metadata: dict[str, Any] | None = metadata_field()
    analysis: dict[str, Any] | None = None
    transcript: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = None
    error: str | None = None
    related_outbound_call_id: UUID | None = None
    created_at: datetime
    updated_at: datetime | None = None


class CallPatientSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    primary_phone: str
    dob: Any = None


class CallListItem(CallResponse):
    """Call with the patient and campaign name attached."""

    patient: CallPatientSummary | None = None
    campaign_name: str | None = None


class CallDetail(CallListItem):
    run: dict[str, Any] | None = None
    row: dict[str, Any] | None = None


class CallFilters(BaseModel):
    """Filters for the call list."""

    patient_id: UUID | None = None
    run_id: UUID | None = None
    campaign_id: UUID | None = None
    status: CallStatus | None = None
    direction: CallDirection | None = None
    search: str | None = Field(default=None, max_length=200)
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)


class TranscriptResponse(BaseModel):
    transcript: str | None = None
    analysis: dict[str, Any] | None = None


class ManualCallCreate(BaseModel):
    """Request to place a one-off call to a patient."""

    patient_id: UUID
    agent_id: str = Field(..., min_length=1, max_length=256)
    campaign_id: UUID | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
