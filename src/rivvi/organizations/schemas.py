"""
Pydantic schemas for organization API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rivvi.organizations.models import DEFAULT_CONCURRENT_CALL_LIMIT, DEFAULT_TIMEZONE

_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class DayHours(BaseModel):
    start: str = Field(..., pattern=_TIME_PATTERN)
    end: str = Field(..., pattern=_TIME_PATTERN)


class OfficeHours(BaseModel):
    monday: DayHours | None = None
    tuesday: DayHours | None = None
    wednesday: DayHours | None = None
    thursday: DayHours | None = None
    friday: DayHours | None = None
    saturday: DayHours | None = None
    sunday: DayHours | None = None


def _validate_timezone(v: str | None) -> str | None:
    if v is None:
        return v
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {v}")
    return v


class OrganizationCreate(BaseModel):
    clerk_id: str = Field(..., min_length=1, max_length=256)
    name: str = Field(..., min_length=1, max_length=256)
    phone: str | None = Field(default=None, max_length=20)
    timezone: str | None = DEFAULT_TIMEZONE
    office_hours: OfficeHours | None = None
    concurrent_call_limit: int = Field(default=DEFAULT_CONCURRENT_CALL_LIMIT, ge=1, le=100)
    is_super_admin: bool = False

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        return _validate_timezone(v)


class OrganizationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=256)
    phone: str | None = Field(default=None, max_length=20)
    timezone: str | None = None
    office_hours: OfficeHours | None = None
    concurrent_call_limit: int | None = Field(default=None, ge=1, le=100)

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        return _validate_timezone(v)


class OrganizationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    clerk_id: str
    name: str
    phone: str | None = None
    timezone: str | None = None
    office_hours: dict[str, Any] | None = None
    concurrent_call_limit: int
    is_super_admin: bool
    created_at: datetime
    updated_at: datetime | None = None


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    clerk_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    role: str
    created_at: datetime
