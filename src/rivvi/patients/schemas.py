"""
Pydantic schemas for patient API.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rivvi.calls.schemas import CallResponse
from rivvi.patients.hashing import clean_phone
from rivvi.shared.schemas import metadata_field


class PatientBase(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=256)
    last_name: str = Field(..., min_length=1, max_length=256)
    dob: date
    primary_phone: str = Field(..., min_length=7, max_length=20)
    secondary_phone: str | None = Field(default=None, max_length=20)

    @field_validator("primary_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if len(clean_phone(v)) < 7:
            raise ValueError("Phone number must contain at least 7 digits")
        return v.strip()


class PatientCreate(PatientBase):
    emr_id: str | None = Field(default=None, max_length=256)


class PatientUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=256)
    last_name: str | None = Field(default=None, min_length=1, max_length=256)
    dob: date | None = None
    primary_phone: str | None = Field(default=None, min_length=7, max_length=20)
    secondary_phone: str | None = Field(default=None, max_length=20)
    emr_id: str | None = Field(default=None, max_length=256)


class PatientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    dob: date
    is_minor: bool
    primary_phone: str
    secondary_phone: str | None = None
    external_ids: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = metadata_field()
    created_at: datetime
    updated_at: datetime | None = None


class PatientListItem(PatientResponse):
    emr_id: str | None = None
    call_count: int = 0


class PatientDetail(PatientResponse):
    emr_id: str | None = None
    recent_calls: list[CallResponse] = Field(default_factory=list)
