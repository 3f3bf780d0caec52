"""
SQLAlchemy models for campaigns, their templates and campaign requests.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from rivvi.shared.database import Base, JSONType, enum_column


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CampaignRequestStatus(str, Enum):
    """Lifecycle of an organization's request for a new campaign."""

    PENDING = "pending"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    REJECTED = "rejected"
    COMPLETED = "completed"


class CampaignTemplate(Base):
    """Agent, prompt, variable mapping and analysis configuration of a campaign."""

    __tablename__ = "campaign_templates"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    agent_id: Mapped[str] = mapped_column(String(256), nullable=False)
    llm_id: Mapped[str] = mapped_column(String(256), nullable=False)
    base_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    voicemail_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    post_call_webhook_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    inbound_webhook_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    variables_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    analysis_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("campaign_templates.id"), nullable=False
    )
    direction: Mapped[CallDirection] = mapped_column(
        enum_column(CallDirection, "call_direction"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default_inbound: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Campaign(id={self.id}, name={self.name}, direction={self.direction})>"


class CampaignRequest(Base):
    __tablename__ = "campaign_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    org_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requested_by: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    direction: Mapped[CallDirection] = mapped_column(
        enum_column(CallDirection, "call_direction"),
        nullable=False,
        default=CallDirection.OUTBOUND,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    main_goal: Mapped[str | None] = mapped_column(Text, nullable=True)
    desired_analysis: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    example_sheets: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    status: Mapped[CampaignRequestStatus] = mapped_column(
        enum_column(CampaignRequestStatus, "campaign_request_status"),
        nullable=False,
        default=CampaignRequestStatus.PENDING,
    )
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resulting_campaign_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )


class AgentVariation(Base):
    """An AI-generated customization of a campaign's prompt and voicemail."""

    __tablename__ = "agent_variations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    campaign_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    user_input: Mapped[str] = mapped_column(Text, nullable=False)
    original_base_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    original_voicemail_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    customized_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    customized_voicemail_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_run_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    change_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
