"""
SQLAlchemy models for runs and their rows.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from rivvi.shared.database import Base, JSONType, enum_column


class RunStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    SCHEDULED = "scheduled"


class RowStatus(str, Enum):
    PENDING = "pending"
    CALLING = "calling"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


def empty_run_metadata() -> dict[str, Any]:
    """Initial counters stored on every new run."""
    return {
        "rows": {"total": 0, "invalid": 0},
        "calls": {
            "total": 0,
            "completed": 0,
            "failed": 0,
            "calling": 0,
            "pending": 0,
            "skipped": 0,
            "voicemail": 0,
            "connected": 0,
            "converted": 0,
        },
        "run": {},
    }


class Run(Base):
    """One batch execution of a campaign against an uploaded patient list."""

    __tablename__ = "runs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    campaign_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    org_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    custom_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_voicemail_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    variation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    natural_language_input: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[RunStatus] = mapped_column(
        enum_column(RunStatus, "run_status"), nullable=False, default=RunStatus.DRAFT
    )
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=empty_run_metadata
    )
    raw_file_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    processed_file_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Run(id={self.id}, name={self.name}, status={self.status})>"


class Row(Base):
    """A single patient line of a run."""

    __tablename__ = "rows"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    org_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    patient_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    variables: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    processed_variables: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    analysis: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    status: Mapped[RowStatus] = mapped_column(
        enum_column(RowStatus, "row_status"), nullable=False, default=RowStatus.PENDING
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retell_call_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    sort_index: Mapped[int] = mapped_column(Integer, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    call_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )
