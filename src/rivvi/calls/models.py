"""
SQLAlchemy model for calls.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from rivvi.campaigns.models import CallDirection
from rivvi.shared.database import Base, JSONType, enum_column


class CallStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    VOICEMAIL = "voicemail"
    NO_ANSWER = "no-answer"


ACTIVE_CALL_STATUSES = (CallStatus.PENDING, CallStatus.IN_PROGRESS)


class Call(Base):
    """A single telephony interaction, outbound or inbound."""

    __tablename__ = "calls"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    run_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("runs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    campaign_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True, index=True
    )
    row_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("rows.id", ondelete="SET NULL"), nullable=True
    )
    patient_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    agent_id: Mapped[str] = mapped_column(String(256), nullable=False)
    direction: Mapped[CallDirection] = mapped_column(
        enum_column(CallDirection, "call_direction"), nullable=False
    )
    status: Mapped[CallStatus] = mapped_column(
        enum_column(CallStatus, "call_status"), nullable=False, default=CallStatus.PENDING
    )
    retell_call_id: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    recording_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    to_number: Mapped[str] = mapped_column(String(20), nullable=False)
    from_number: Mapped[str] = mapped_column(String(20), nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    analysis: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    related_outbound_call_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("calls.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Call(id={self.id}, status={self.status}, direction={self.direction})>"
