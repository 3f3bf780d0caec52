"""
Analytics service.

Counts come from SQL aggregates; metrics that depend on the call analysis
JSON are computed in Python over the scoped call rows so they behave the same
on every database backend.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.analytics.schemas import (
    AdminDashboardStats,
    AnalysisValueCount,
    CampaignAnalytics,
    CampaignCallMetrics,
    CampaignSummary,
    ConversionMetric,
    DashboardStats,
    RunAnalytics,
    RunCallMetrics,
    RunMetric,
    RunOverview,
    TimelineEntry,
    UpcomingRun,
)
from rivvi.calls.models import Call, CallStatus
from rivvi.campaigns.models import Campaign, CampaignRequest, CampaignRequestStatus, CampaignTemplate
from rivvi.campaigns.schemas import AnalysisConfig, AnalysisFieldType
from rivvi.organizations.models import Organization
from rivvi.runs.dispatcher import row_status_counts
from rivvi.runs.models import Run, RunStatus
from rivvi.shared.clock import utcnow
from rivvi.shared.exceptions import NotFoundError
from rivvi.shared.logging import get_logger
from rivvi.telephony.mapping import is_truthy

logger = get_logger(__name__)

ACTIVE_RUN_STATUSES = (RunStatus.RUNNING, RunStatus.PAUSED, RunStatus.SCHEDULED)
_EXCLUDED_ANALYSIS_KEYS = {"patient_reached", "left_voicemail"}
_FALSE_VALUES = ("false", "no")


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def _reached(analysis: dict[str, Any] | None) -> bool:
    analysis = analysis or {}
    return is_truthy(analysis.get("patient_reached")) or is_truthy(analysis.get("patientReached"))


def _voicemail(analysis: dict[str, Any] | None) -> bool:
    analysis = analysis or {}
    return any(is_truthy(analysis.get(k)) for k in ("voicemail_left", "left_voicemail", "voicemail"))


def _converted(analysis: dict[str, Any] | None) -> bool:
    analysis = analysis or {}
    return is_truthy(analysis.get("conversion")) or is_truthy(analysis.get("main_kpi_value"))


def _is_false(value: Any) -> bool:
    if isinstance(value, bool):
        return not value
    return isinstance(value, str) and value.strip().lower() in _FALSE_VALUES


def _parse_iso(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


class AnalyticsService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _scalar(self, stmt: Any) -> int:
        return (await self._session.execute(stmt)).scalar() or 0

    async def get_dashboard_stats(self, org_id: UUID) -> DashboardStats:
        return DashboardStats(
            campaigns=await self._scalar(
                select(func.count(Campaign.id)).where(Campaign.org_id == org_id)
            ),
            active_runs=await self._scalar(
                select(func.count(Run.id)).where(
                    Run.org_id == org_id, Run.status.in_(ACTIVE_RUN_STATUSES)
                )
            ),
            completed_calls=await self._scalar(
                select(func.count(Call.id)).where(
                    Call.org_id == org_id, Call.status == CallStatus.COMPLETED
                )
            ),
            patients=await self._scalar(
                select(func.count(distinct(Call.patient_id))).where(
                    Call.org_id == org_id, Call.patient_id.is_not(None)
                )
            ),
        )

    async def get_campaign_analytics(self, org_id: UUID, campaign_id: UUID) -> CampaignAnalytics:
        campaign = await self._session.get(Campaign, campaign_id)
        if campaign is None or campaign.org_id != org_id:
            raise NotFoundError(
                f"Campaign with ID {campaign_id} not found",
                {"campaign_id": str(campaign_id)},
            )
        template = await self._session.get(CampaignTemplate, campaign.template_id)

        calls = (
            await self._session.execute(
                select(Call.run_id, Call.status, Call.analysis).where(
                    Call.org_id == org_id, Call.campaign_id == campaign_id
                )
            )
        ).all()
        statuses = Counter(status for _, status, _ in calls)
        completed = [analysis or {} for _, status, analysis in calls if status == CallStatus.COMPLETED]
        success = sum(1 for a in completed if _reached(a))

        call_metrics = CampaignCallMetrics(
            total=len(calls),
            completed=statuses[CallStatus.COMPLETED],
            failed=statuses[CallStatus.FAILED],
            voicemail=sum(
                1 for _, status, a in calls if status == CallStatus.VOICEMAIL or _voicemail(a)
            ),
            in_progress=statuses[CallStatus.IN_PROGRESS],
            pending=statuses[CallStatus.PENDING],
            success_rate=_rate(success, len(completed)),
        )

        analysis_config = AnalysisConfig.model_validate(template.analysis_config if template else {})
        conversion_metrics: list[ConversionMetric] = []
        for field in analysis_config.campaign.fields:
            if field.type == AnalysisFieldType.BOOLEAN:
                true_count = sum(1 for a in completed if is_truthy(a.get(field.key)))
                false_count = sum(1 for a in completed if _is_false(a.get(field.key)))
                conversion_metrics.append(
                    ConversionMetric(
                        field=field.key,
                        label=field.label or field.key,
                        type=field.type.value,
                        values={"true": true_count, "false": false_count},
                        total=len(completed),
                        rate=_rate(true_count, len(completed)),
                    )
                )
            elif field.type == AnalysisFieldType.ENUM and field.options:
                values = {option: 0 for option in field.options}
                for a in completed:
                    value = a.get(field.key)
                    if value is not None:
                        values[str(value)] = values.get(str(value), 0) + 1
                conversion_metrics.append(
                    ConversionMetric(
                        field=field.key,
                        label=field.label or field.key,
                        type=field.type.value,
                        values=values,
                        total=len(completed),
                        rate=_rate(values[field.options[0]], len(completed)),
                    )
                )

        recent_runs = (
            await self._session.execute(
                select(Run.id, Run.name)
                .where(Run.org_id == org_id, Run.campaign_id == campaign_id)
                .order_by(Run.created_at.desc())
                .limit(10)
            )
        ).all()
        per_run: dict[UUID, list[tuple[CallStatus, dict[str, Any]]]] = defaultdict(list)
        for run_id, status, analysis in calls:
            if run_id is not None:
                per_run[run_id].append((status, analysis or {}))

        run_metrics = []
        for run_id, name in recent_runs:
            run_calls = per_run.get(run_id, [])
            run_completed = [a for status, a in run_calls if status == CallStatus.COMPLETED]
            run_metrics.append(
                RunMetric(
                    id=run_id,
                    name=name,
                    total_calls=len(run_calls),
                    completed_calls=len(run_completed),
                    conversion_rate=_rate(sum(1 for a in run_completed if _reached(a)), len(run_completed)),
                )
            )

        return CampaignAnalytics(
            campaign=CampaignSummary(id=campaign.id, name=campaign.name, direction=campaign.direction),
            call_metrics=call_metrics,
            conversion_metrics=conversion_metrics,
            run_metrics=run_metrics,
            last_updated=utcnow(),
        )

    async def get_run_analytics(self, org_id: UUID, run_id: UUID) -> RunAnalytics:
        run = await self._session.get(Run, run_id)
        if run is None or run.org_id != org_id:
            raise NotFoundError(f"Run with ID {run_id} not found", {"run_id": str(run_id)})
        campaign = await self._session.get(Campaign, run.campaign_id)

        counts = await row_status_counts(self._session, run_id)
        calls = (
            await self._session.execute(
                select(Call.status, Call.analysis, Call.duration, Call.created_at)
                .where(Call.run_id == run_id, Call.org_id == org_id)
                .order_by(Call.created_at)
            )
        ).all()
        completed = [(analysis or {}, duration) for status, analysis, duration, _ in calls if status == CallStatus.COMPLETED]

        durations = [d for _, d in completed if d is not None]
        no_answer = sum(1 for status, *_ in calls if status == CallStatus.NO_ANSWER) + sum(
            1 for a, _ in completed if not _reached(a) and not _voicemail(a)
        )
        call_metrics = RunCallMetrics(
            patients_reached=sum(1 for a, _ in completed if _reached(a)),
            voicemails_left=sum(1 for a, _ in completed if _voicemail(a)),
            no_answer=no_answer,
            average_call_duration=sum(durations) / len(durations) if durations else 0.0,
            conversion_rate=_rate(sum(1 for a, _ in completed if _converted(a)), len(completed)),
        )

        run_meta = (run.metadata_ or {}).get("run") or {}
        start, end = _parse_iso(run_meta.get("start_time")), _parse_iso(run_meta.get("end_time"))
        duration = int((end - start).total_seconds()) if start and end else int(run_meta.get("duration") or 0)
        overview = RunOverview(
            name=run.name,
            campaign_name=campaign.name if campaign else "Unknown Campaign",
            status=run.status,
            total_rows=sum(counts.values()),
            completed_calls=counts["completed"],
            pending_calls=counts["pending"] + counts["calling"],
            failed_calls=counts["failed"],
            start_time=run_meta.get("start_time") or run.created_at.isoformat(),
            end_time=run_meta.get("end_time"),
            duration=duration,
        )

        distribution: dict[str, Counter[str]] = defaultdict(Counter)
        for analysis, _ in completed:
            for key, value in analysis.items():
                if key in _EXCLUDED_ANALYSIS_KEYS or value is None or isinstance(value, (dict, list)):
                    continue
                distribution[key][str(value).lower() if isinstance(value, bool) else str(value)] += 1
        analysis_values = []
        for key in sorted(distribution):
            field_total = sum(distribution[key].values())
            for value, count in distribution[key].most_common():
                analysis_values.append(
                    AnalysisValueCount(field=key, value=value, count=count, percentage=_rate(count, field_total))
                )

        return RunAnalytics(
            overview=overview,
            call_metrics=call_metrics,
            call_timeline=[
                TimelineEntry(time=created_at, status=status.value, reached=_reached(analysis))
                for status, analysis, _, created_at in calls
            ],
            analysis=analysis_values,
        )

    async def get_upcoming_runs(self, org_id: UUID, limit: int = 5) -> list[UpcomingRun]:
        stmt = (
            select(Run, Campaign.name)
            .outerjoin(Campaign, Campaign.id == Run.campaign_id)
            .where(
                Run.org_id == org_id,
                Run.status == RunStatus.SCHEDULED,
                Run.scheduled_at > utcnow(),
            )
            .order_by(Run.scheduled_at)
            .limit(limit)
        )
        return [
            UpcomingRun(
                id=run.id,
                name=run.name,
                campaign_id=run.campaign_id,
                campaign_name=campaign_name,
                scheduled_at=run.scheduled_at,
                metadata=run.metadata_,
            )
            for run, campaign_name in (await self._session.execute(stmt)).all()
        ]

    async def get_admin_dashboard(self) -> AdminDashboardStats:
        since = utcnow() - timedelta(hours=24)
        return AdminDashboardStats(
            organizations=await self._scalar(select(func.count(Organization.id))),
            campaigns=await self._scalar(select(func.count(Campaign.id))),
            runs=await self._scalar(select(func.count(Run.id))),
            calls=await self._scalar(select(func.count(Call.id))),
            pending_campaign_requests=await self._scalar(
                select(func.count(CampaignRequest.id)).where(
                    CampaignRequest.status == CampaignRequestStatus.PENDING
                )
            ),
            calls_last_24h=await self._scalar(
                select(func.count(Call.id)).where(Call.created_at >= since)
            ),
        )
