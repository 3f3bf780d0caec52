"""
Pydantic schemas for campaign API.

Defines the template configuration documents (variable mapping and analysis
fields) and the request/response models for campaigns and campaign requests.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rivvi.campaigns.models import CallDirection, CampaignRequestStatus
from rivvi.shared.schemas import metadata_field


class TransformType(str, Enum):
    TEXT = "text"
    SHORT_DATE = "short_date"
    LONG_DATE = "long_date"
    TIME = "time"
    PHONE = "phone"
    PROVIDER = "provider"


class AnalysisFieldType(str, Enum):
    BOOLEAN = "boolean"
    STRING = "string"
    DATE = "date"
    ENUM = "enum"


class VariableField(BaseModel):
    """A column of the uploaded file mapped to a call variable."""

    key: str = Field(..., min_length=1, max_length=100)
    label: str = Field(default="", max_length=256)
    possible_columns: list[str] = Field(default_factory=list)
    transform: TransformType | None = None
    required: bool = False
    description: str | None = None


class PatientValidation(BaseModel):
    require_valid_phone: bool = False
    require_valid_dob: bool = False
    require_name: bool = False


class PatientVariables(BaseModel):
    fields: list[VariableField] = Field(default_factory=list)
    validation: PatientValidation = Field(default_factory=PatientValidation)


class CampaignVariables(BaseModel):
    fields: list[VariableField] = Field(default_factory=list)


class VariablesConfig(BaseModel):
    patient: PatientVariables = Field(default_factory=PatientVariables)
    campaign: CampaignVariables = Field(default_factory=CampaignVariables)


class AnalysisField(BaseModel):
    key: str = Field(..., min_length=1, max_length=100)
    label: str = Field(default="", max_length=256)
    type: AnalysisFieldType = AnalysisFieldType.STRING
    options: list[str] | None = None
    required: bool = False
    description: str | None = None
    is_main_kpi: bool = False


class AnalysisSection(BaseModel):
    fields: list[AnalysisField] = Field(default_factory=list)


class AnalysisConfig(BaseModel):
    standard: AnalysisSection = Field(default_factory=AnalysisSection)
    campaign: AnalysisSection = Field(default_factory=AnalysisSection)


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None = None
    agent_id: str
    llm_id: str
    base_prompt: str
    voicemail_message: str | None = None
    post_call_webhook_url: str | None = None
    inbound_webhook_url: str | None = None
    variables_config: VariablesConfig
    analysis_config: AnalysisConfig
    created_at: datetime
    updated_at: datetime | None = None


class TemplateSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    agent_id: str
    description: str | None = None


class CampaignCreate(BaseModel):
    """Create a campaign (and its template) for an organization."""

    org_id: UUID
    name: str = Field(..., min_length=1, max_length=256)
    description: str | None = Field(default=None, max_length=5000)
    direction: CallDirection = CallDirection.OUTBOUND
    agent_id: str = Field(..., min_length=1, max_length=256)
    llm_id: str | None = Field(default=None, max_length=256)
    base_prompt: str = Field(..., min_length=1)
    voicemail_message: str | None = None
    variables_config: VariablesConfig = Field(default_factory=VariablesConfig)
    analysis_config: AnalysisConfig = Field(default_factory=AnalysisConfig)
    is_default_inbound: bool = False
    configure_webhooks: bool = False
    request_id: UUID | None = None


class CampaignUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=256)
    is_active: bool | None = None
    is_default_inbound: bool | None = None
    base_prompt: str | None = Field(default=None, min_length=1)
    voicemail_message: str | None = None
    variables_config: VariablesConfig | None = None
    analysis_config: AnalysisConfig | None = None


class AgentPromptUpdate(BaseModel):
    prompt: str = Field(..., min_length=1)
    voicemail_message: str | None = None


class CampaignResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: UUID
    name: str
    template_id: UUID
    direction: CallDirection
    is_active: bool
    is_default_inbound: bool
    metadata: dict[str, Any] | None = metadata_field()
    created_at: datetime
    updated_at: datetime | None = None


class CampaignListItem(CampaignResponse):
    template: TemplateSummary | None = None
    run_count: int = 0


class CampaignDetail(CampaignResponse):
    template: TemplateResponse


class CampaignRequestCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    direction: CallDirection = CallDirection.OUTBOUND
    description: str = Field(..., min_length=1, max_length=10000)
    main_goal: str | None = Field(default=None, max_length=5000)
    desired_analysis: list[str] | None = None
    example_sheets: list[dict[str, Any]] | None = None


class CampaignRequestProcess(BaseModel):
    status: CampaignRequestStatus
    admin_notes: str | None = Field(default=None, max_length=10000)
    resulting_campaign_id: UUID | None = None


class CampaignRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    org_id: UUID
    requested_by: UUID | None = None
    name: str
    direction: CallDirection
    description: str
    main_goal: str | None = None
    desired_analysis: list[str] | None = None
    example_sheets: list[dict[str, Any]] | None = None
    status: CampaignRequestStatus
    admin_notes: str | None = None
    resulting_campaign_id: UUID | None = None
    created_at: datetime
    updated_at: datetime | None = None
