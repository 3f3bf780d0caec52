"""
Pydantic schemas for run API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rivvi.calls.schemas import CallPatientSummary
from rivvi.runs.models import RowStatus, RunStatus
from rivvi.shared.schemas import metadata_field


class RunCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    custom_prompt: str | None = None
    custom_voicemail_message: str | None = None
    variation_notes: str | None = Field(default=None, max_length=5000)
    natural_language_input: str | None = Field(default=None, max_length=5000)
    ai_generated: bool = False
    scheduled_at: datetime | None = None


class RunSchedule(BaseModel):
    scheduled_at: datetime


class RunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    campaign_id: UUID
    org_id: UUID
    name: str
    custom_prompt: str | None = None
    custom_voicemail_message: str | None = None
    variation_notes: str | None = None
    natural_language_input: str | None = None
    prompt_version: int
    ai_generated: bool
    status: RunStatus
    metadata: dict[str, Any] | None = metadata_field()
    scheduled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None


class RowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    run_id: UUID
    patient_id: UUID | None = None
    variables: dict[str, Any]
    processed_variables: dict[str, Any] | None = None
    analysis: dict[str, Any] | None = None
    status: RowStatus
    error: str | None = None
    retell_call_id: str | None = None
    sort_index: int
    priority: int
    retry_count: int
    call_attempts: int
    metadata: dict[str, Any] | None = metadata_field()
    created_at: datetime
    updated_at: datetime | None = None


class RowWithPatient(RowResponse):
    patient: CallPatientSummary | None = None


class RowsPage(BaseModel):
    items: list[RowWithPatient]
    total_count: int
    has_more: bool
    counts: dict[str, int]


class FileUploadRequest(BaseModel):
    """A patient list as text (CSV/TSV) or a ``data:`` base64 URL."""

    file_content: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1, max_length=256)


class FileUploadResponse(BaseModel):
    rows_added: int
    invalid_rows: int
    stats: dict[str, int]
