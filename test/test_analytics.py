"""
Tests for dashboard, campaign and run analytics.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.analytics.service import AnalyticsService
from rivvi.calls.models import Call, CallStatus
from rivvi.campaigns.models import CallDirection, Campaign
from rivvi.patients.models import Patient
from rivvi.runs.models import Run, RunStatus
from rivvi.shared.exceptions import NotFoundError

from conftest import RunFactory


@pytest_asyncio.fixture
async def run_with_calls(
    db_session: AsyncSession,
    make_run: RunFactory,
    campaign: Campaign,
    patient: Patient,
) -> Run:
    run = await make_run(status=RunStatus.RUNNING, patients=[patient])

    def call(status: CallStatus, analysis: dict | None, duration: int | None = None) -> Call:
        return Call(
            org_id=run.org_id,
            run_id=run.id,
            campaign_id=campaign.id,
            patient_id=patient.id,
            agent_id="agent_test",
            direction=CallDirection.OUTBOUND,
            status=status,
            to_number="5551234567",
            from_number="5550001111",
            analysis=analysis,
            duration=duration,
        )

    db_session.add_all(
        [
            call(
                CallStatus.COMPLETED,
                {
                    "patient_reached": True,
                    "appointment_confirmed": True,
                    "main_kpi_value": True,
                    "preferred_contact": "sms",
                },
                duration=60,
            ),
            call(
                CallStatus.COMPLETED,
                {"patient_reached": False, "left_voicemail": True, "appointment_confirmed": False},
                duration=30,
            ),
            call(CallStatus.FAILED, None),
            call(CallStatus.VOICEMAIL, {}),
        ]
    )
    await db_session.flush()
    return run


@pytest.fixture
def service(db_session: AsyncSession) -> AnalyticsService:
    return AnalyticsService(db_session)


# =============================================================================
# Service
# =============================================================================


class TestCampaignAnalytics:
    @pytest.mark.asyncio
    async def test_call_metrics(
        self, service: AnalyticsService, campaign: Campaign, run_with_calls: Run
    ) -> None:
        result = await service.get_campaign_analytics(campaign.org_id, campaign.id)

        metrics = result.call_metrics
        assert metrics.total == 4
        assert metrics.completed == 2
        assert metrics.failed == 1
        assert metrics.voicemail == 2
        assert metrics.success_rate == 50.0

    @pytest.mark.asyncio
    async def test_conversion_metrics_follow_analysis_config(
        self, service: AnalyticsService, campaign: Campaign, run_with_calls: Run
    ) -> None:
        result = await service.get_campaign_analytics(campaign.org_id, campaign.id)

        by_field = {m.field: m for m in result.conversion_metrics}
        confirmed = by_field["appointment_confirmed"]
        assert confirmed.values == {"true": 1, "false": 1}
        assert confirmed.rate == 50.0
        assert by_field["preferred_contact"].values == {"phone": 0, "sms": 1, "email": 0}

    @pytest.mark.asyncio
    async def test_run_metrics(
        self, service: AnalyticsService, campaign: Campaign, run_with_calls: Run
    ) -> None:
        result = await service.get_campaign_analytics(campaign.org_id, campaign.id)

        assert len(result.run_metrics) == 1
        run_metric = result.run_metrics[0]
        assert run_metric.id == run_with_calls.id
        assert run_metric.total_calls == 4
        assert run_metric.completed_calls == 2
        assert run_metric.conversion_rate == 50.0

    @pytest.mark.asyncio
    async def test_other_organization(self, service: AnalyticsService, campaign: Campaign) -> None:
        with pytest.raises(NotFoundError):
            await service.get_campaign_analytics(uuid4(), campaign.id)


class TestRunAnalytics:
    @pytest.mark.asyncio
    async def test_overview_and_metrics(self, service: AnalyticsService, run_with_calls: Run) -> None:
        result = await service.get_run_analytics(run_with_calls.org_id, run_with_calls.id)

        assert result.overview.total_rows == 1
        assert result.overview.pending_calls == 1
        assert result.overview.campaign_name == "Appointment Confirmation"
        assert result.call_metrics.patients_reached == 1
        assert result.call_metrics.voicemails_left == 1
        assert result.call_metrics.no_answer == 0
        assert result.call_metrics.average_call_duration == 45.0
        assert result.call_metrics.conversion_rate == 50.0
        assert len(result.call_timeline) == 4

    @pytest.mark.asyncio
    async def test_analysis_distribution_skips_reach_fields(
        self, service: AnalyticsService, run_with_calls: Run
    ) -> None:
        result = await service.get_run_analytics(run_with_calls.org_id, run_with_calls.id)

        fields = {entry.field for entry in result.analysis}
        assert fields == {"appointment_confirmed", "main_kpi_value", "preferred_contact"}
        confirmed = [e for e in result.analysis if e.field == "appointment_confirmed"]
        assert {(e.value, e.count, e.percentage) for e in confirmed} == {("true", 1, 50.0), ("false", 1, 50.0)}

    @pytest.mark.asyncio
    async def test_missing_run(self, service: AnalyticsService, campaign: Campaign) -> None:
        with pytest.raises(NotFoundError):
            await service.get_run_analytics(campaign.org_id, uuid4())


class TestDashboard:
    @pytest.mark.asyncio
    async def test_dashboard_stats(
        self, service: AnalyticsService, campaign: Campaign, run_with_calls: Run
    ) -> None:
        stats = await service.get_dashboard_stats(campaign.org_id)

        assert stats.campaigns == 1
        assert stats.active_runs == 1
        assert stats.completed_calls == 2
        assert stats.patients == 1

    @pytest.mark.asyncio
    async def test_upcoming_runs(
        self, service: AnalyticsService, make_run: RunFactory, campaign: Campaign
    ) -> None:
        now = datetime.now(timezone.utc)
        upcoming = await make_run(status=RunStatus.SCHEDULED, scheduled_at=now + timedelta(days=2), name="Later")
        await make_run(status=RunStatus.SCHEDULED, scheduled_at=now + timedelta(days=1), name="Sooner")
        await make_run(status=RunStatus.SCHEDULED, scheduled_at=now - timedelta(days=1), name="Overdue")

        runs = await service.get_upcoming_runs(campaign.org_id)

        assert [r.name for r in runs] == ["Sooner", "Later"]
        assert runs[1].id == upcoming.id
        assert runs[0].campaign_name == campaign.name


# =============================================================================
# Router
# =============================================================================


class TestAnalyticsRouter:
    @pytest.mark.asyncio
    async def test_dashboard(
        self, async_client: AsyncClient, auth_headers: dict[str, str], run_with_calls: Run
    ) -> None:
        response = await async_client.get("/api/analytics/dashboard", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"campaigns": 1, "active_runs": 1, "completed_calls": 2, "patients": 1}

    @pytest.mark.asyncio
    async def test_run_analytics(
        self, async_client: AsyncClient, auth_headers: dict[str, str], run_with_calls: Run
    ) -> None:
        response = await async_client.get(f"/api/analytics/runs/{run_with_calls.id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["overview"]["status"] == "running"

    @pytest.mark.asyncio
    async def test_campaign_not_found(self, async_client: AsyncClient, auth_headers: dict[str, str]) -> None:
        response = await async_client.get(f"/api/analytics/campaigns/{uuid4()}", headers=auth_headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_admin_dashboard(
        self,
        async_client: AsyncClient,
        super_admin_headers: dict[str, str],
        run_with_calls: Run,
    ) -> None:
        response = await async_client.get("/api/analytics/admin", headers=super_admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["organizations"] == 2
        assert body["calls"] == 4
        assert body["calls_last_24h"] == 4
        assert body["pending_campaign_requests"] == 0

    @pytest.mark.asyncio
    async def test_admin_dashboard_forbidden_for_members(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.get("/api/analytics/admin", headers=auth_headers)

        assert response.status_code == 403
