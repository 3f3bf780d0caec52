"""
Pydantic schemas for analytics API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from rivvi.campaigns.models import CallDirection
from rivvi.runs.models import RunStatus


class DashboardStats(BaseModel):
    campaigns: int
    active_runs: int
    completed_calls: int
    patients: int


class CampaignCallMetrics(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    voicemail: int = 0
    in_progress: int = 0
    pending: int = 0
    success_rate: float = 0.0


class ConversionMetric(BaseModel):
    field: str
    label: str
    type: str
    values: dict[str, int]
    total: int
    rate: float


class RunMetric(BaseModel):
    id: UUID
    name: str
    total_calls: int
    completed_calls: int
    conversion_rate: float


class CampaignSummary(BaseModel):
    id: UUID
    name: str
    direction: CallDirection


class CampaignAnalytics(BaseModel):
    campaign: CampaignSummary
    call_metrics: CampaignCallMetrics
    conversion_metrics: list[ConversionMetric]
    run_metrics: list[RunMetric]
    last_updated: datetime


class RunOverview(BaseModel):
    name: str
    campaign_name: str
    status: RunStatus
    total_rows: int
    completed_calls: int
    pending_calls: int
    failed_calls: int
    start_time: str | None = None
    end_time: str | None = None
    duration: int = 0


class RunCallMetrics(BaseModel):
    patients_reached: int = 0
    voicemails_left: int = 0
    no_answer: int = 0
    average_call_duration: float = 0.0
    conversion_rate: float = 0.0


class AnalysisValueCount(BaseModel):
    field: str
    value: str
    count: int
    percentage: float


class TimelineEntry(BaseModel):
    time: datetime
    status: str
    reached: bool


class RunAnalytics(BaseModel):
    overview: RunOverview
    call_metrics: RunCallMetrics
    call_timeline: list[TimelineEntry]
    analysis: list[AnalysisValueCount]


class UpcomingRun(BaseModel):
    id: UUID
    name: str
    campaign_id: UUID
    campaign_name: str | None = None
    scheduled_at: datetime
    metadata: dict[str, Any] | None = None


class AdminDashboardStats(BaseModel):
    organizations: int
    campaigns: int
    runs: int
    calls: int
    pending_campaign_requests: int
    calls_last_24h: int
