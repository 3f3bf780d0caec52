"""
Run dispatcher: places outbound calls for running runs.

Dispatch is event driven. Starting a run dispatches its first batch and every
post-call webhook dispatches the next one, so at most
``concurrent_call_limit`` calls per organization are in flight. An optional
background loop (``DispatcherLoop``) starts scheduled runs when they fall
due and tops up running runs.
"""

import asyncio
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.calls.models import ACTIVE_CALL_STATUSES, Call, CallStatus
from rivvi.campaigns.models import CallDirection, Campaign, CampaignTemplate
from rivvi.config import get_settings
from rivvi.organizations.models import Organization
from rivvi.organizations.office_hours import is_within_office_hours
from rivvi.patients.models import Patient
from rivvi.realtime.publisher import RealtimePublisher, get_realtime_publisher
from rivvi.runs.models import Row, RowStatus, Run, RunStatus
from rivvi.shared.clock import as_utc, iso_now, utcnow
from rivvi.shared.database import get_database_manager
from rivvi.shared.logging import get_logger
from rivvi.telephony.config import get_telephony_config
from rivvi.telephony.factory import get_telephony_provider
from rivvi.telephony.interface import PhoneCallRequest, TelephonyProvider, TelephonyProviderError

logger = get_logger(__name__)

_ROW_PHONE_KEYS = ("primary_phone", "phone", "phone_number", "primaryPhone", "phoneNumber")


def update_run_metadata(run: Run, section: str, **values: Any) -> None:
    """Set keys of one metadata section, reassigning the JSON document."""
    metadata = dict(run.metadata_ or {})
    metadata[section] = {**(metadata.get(section) or {}), **values}
    run.metadata_ = metadata


async def row_status_counts(session: AsyncSession, run_id: UUID) -> dict[str, int]:
    stmt = select(Row.status, func.count(Row.id)).where(Row.run_id == run_id).group_by(Row.status)
    counts = {s.value: 0 for s in RowStatus}
    for status, count in (await session.execute(stmt)).all():
        counts[RowStatus(status).value] = count
    return counts


class RunDispatcher:
    """Places calls for one run at a time within the organization's limits."""

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider,
        publisher: RealtimePublisher,
    ) -> None:
        self._session = session
        self._provider = provider
        self._publisher = publisher

    async def _set_status(self, run: Run, status: RunStatus) -> None:
        run.status = status
        await self._session.flush()
        await self._publisher.publish_run_updated(run.org_id, run.id, status.value, run.metadata_)
        await self._publisher.publish_run_status_changed(run.id, status.value)

    async def refresh_row_counters(self, run: Run) -> dict[str, int]:
        counts = await row_status_counts(self._session, run.id)
        update_run_metadata(
            run,
            "calls",
            pending=counts[RowStatus.PENDING.value],
            calling=counts[RowStatus.CALLING.value],
            skipped=counts[RowStatus.SKIPPED.value],
        )
        return counts

    async def activate(self, run: Run) -> int:
        """Move a run to ``running`` and dispatch its first batch.

        Rows left in ``calling`` by an earlier interruption go back to pending.
        """
        stuck = (
            await self._session.execute(
                select(Row).where(Row.run_id == run.id, Row.status == RowStatus.CALLING)
            )
        ).scalars().all()
        for row in stuck:
            row.status = RowStatus.PENDING
        if stuck:
            logger.info("Reset calling rows", extra={"run_id": str(run.id), "count": len(stuck)})

        update_run_metadata(run, "run", start_time=iso_now(), paused_outside_hours=False)
        await self.refresh_row_counters(run)
        await self._set_status(run, RunStatus.RUNNING)
        logger.info("Run started", extra={"run_id": str(run.id), "org_id": str(run.org_id)})
        return await self.dispatch(run)

    async def complete_if_finished(self, run: Run) -> bool:
        counts = await self.refresh_row_counters(run)
        if counts[RowStatus.PENDING.value] or counts[RowStatus.CALLING.value]:
            await self._session.flush()
            return False
        update_run_metadata(run, "run", end_time=iso_now())
        await self._set_status(run, RunStatus.COMPLETED)
        logger.info("Run completed", extra={"run_id": str(run.id)})
        return True

    async def _active_call_count(self, org_id: UUID) -> int:
        stmt = select(func.count(Call.id)).where(
            Call.org_id == org_id,
            Call.status.in_(ACTIVE_CALL_STATUSES),
        )
        return (await self._session.execute(stmt)).scalar() or 0

    async def dispatch(self, run: Run) -> int:
        """Place calls for the next pending rows of a running run.

        Returns:
            Number of calls placed.
        """
        if run.status != RunStatus.RUNNING:
            return 0

        org = await self._session.get(Organization, run.org_id)
        if org is None:
            logger.error("Run organization missing", extra={"run_id": str(run.id)})
            return 0

        if not is_within_office_hours(org.timezone, org.office_hours):
            update_run_metadata(run, "run", paused_outside_hours=True, last_paused_at=iso_now())
            await self._set_status(run, RunStatus.PAUSED)
            logger.info(
                "Run paused outside office hours",
                extra={"run_id": str(run.id), "timezone": org.timezone},
            )
            return 0

        slots = org.concurrent_call_limit - await self._active_call_count(org.id)
        if slots <= 0:
            logger.debug("No call slots available", extra={"org_id": str(org.id)})
            return 0

        rows = await self._pending_rows(run, slots)
        if not rows:
            await self.complete_if_finished(run)
            return 0

        campaign = await self._session.get(Campaign, run.campaign_id)
        template = await self._session.get(CampaignTemplate, campaign.template_id) if campaign else None
        if campaign is None or template is None:
            update_run_metadata(run, "run", error="Campaign template not found")
            await self._set_status(run, RunStatus.FAILED)
            return 0

        from_number = org.phone or get_telephony_config().default_from_number
        if not from_number:
            update_run_metadata(run, "run", error="No outbound phone number configured")
            await self._set_status(run, RunStatus.PAUSED)
            logger.error("No outbound phone number", extra={"org_id": str(org.id)})
            return 0

        # A row that fails to dial frees its slot, so keep pulling pending rows
        placed = 0
        while rows:
            for row in rows:
                if await self._place_call(run, row, org, campaign, template, from_number):
                    placed += 1
            if placed >= slots:
                break
            rows = await self._pending_rows(run, slots - placed)

        # Every row failed; the run may have nothing left in flight
        if placed == 0 and await self.complete_if_finished(run):
            return 0
        await self.refresh_row_counters(run)
        update_run_metadata(run, "run", last_dispatch_at=iso_now())
        await self._session.flush()
        await self._publisher.publish_run_updated(run.org_id, run.id, run.status.value, run.metadata_)
        logger.info(
            "Dispatched run batch",
            extra={"run_id": str(run.id), "placed": placed, "slots": slots},
        )
        return placed

    async def _pending_rows(self, run: Run, limit: int) -> Sequence[Row]:
        stmt = (
            select(Row)
            .where(Row.run_id == run.id, Row.status == RowStatus.PENDING)
            .order_by(Row.priority.desc(), Row.sort_index)
            .limit(limit)
        )
        return (await self._session.execute(stmt)).scalars().all()

    async def _place_call(
        self,
        run: Run,
        row: Row,
        org: Organization,
        campaign: Campaign,
        template: CampaignTemplate,
        from_number: str,
    ) -> bool:
        patient = await self._session.get(Patient, row.patient_id) if row.patient_id else None
        variables = dict(row.variables or {})
        to_number = patient.primary_phone if patient else next(
            (str(variables[k]) for k in _ROW_PHONE_KEYS if variables.get(k)), None
        )
        if not to_number:
            await self._fail_row(run, row, "No phone number for row")
            return False

        variables.update(
            organization_name=org.name,
            campaign_name=campaign.name,
            retry_count=row.retry_count,
            patient_phone=to_number,
            phone=to_number,
        )
        if patient is not None:
            variables.update(
                patient_id=str(patient.id),
                first_name=patient.first_name,
                last_name=patient.last_name,
                patient_first_name=patient.first_name,
                patient_last_name=patient.last_name,
                dob=patient.dob.isoformat(),
            )
        if run.custom_prompt:
            variables["custom_prompt"] = run.custom_prompt
        variables = {k: v for k, v in variables.items() if v is not None}

        request = PhoneCallRequest(
            to_number=to_number,
            from_number=from_number,
            agent_id=template.agent_id,
            variables=variables,
            metadata={
                "run_id": str(run.id),
                "row_id": str(row.id),
                "org_id": str(run.org_id),
                "campaign_id": str(campaign.id),
                "patient_id": str(row.patient_id) if row.patient_id else None,
            },
        )
        try:
            response = await self._provider.create_phone_call(request)
        except TelephonyProviderError as e:
            logger.error(
                "Failed to place call",
                extra={"run_id": str(run.id), "row_id": str(row.id), "error": e.message},
            )
            await self._fail_row(run, row, e.message)
            return False

        call = Call(
            org_id=run.org_id,
            run_id=run.id,
            campaign_id=campaign.id,
            row_id=row.id,
            patient_id=row.patient_id,
            agent_id=template.agent_id,
            direction=CallDirection.OUTBOUND,
            status=CallStatus.PENDING,
            retell_call_id=response.call_id,
            to_number=to_number,
            from_number=from_number,
            metadata_={"variables": variables},
        )
        self._session.add(call)

        row.status = RowStatus.CALLING
        row.call_attempts = row.call_attempts + 1
        row.retell_call_id = response.call_id
        row.processed_variables = variables
        await self._session.flush()

        await self._publisher.publish_row_updated(
            run.id, row.id, RowStatus.CALLING.value, call_id=call.id, retell_call_id=response.call_id
        )
        await self._publisher.publish_call_started(
            run.org_id,
            {
                "call_id": call.id,
                "retell_call_id": response.call_id,
                "run_id": run.id,
                "row_id": row.id,
                "patient_id": row.patient_id,
                "direction": CallDirection.OUTBOUND.value,
            },
        )
        return True

    async def _fail_row(self, run: Run, row: Row, error: str) -> None:
        row.status = RowStatus.FAILED
        row.error = error
        row.call_attempts = row.call_attempts + 1
        calls = dict((run.metadata_ or {}).get("calls") or {})
        update_run_metadata(run, "calls", failed=calls.get("failed", 0) + 1)
        await self._session.flush()
        await self._publisher.publish_row_updated(run.id, row.id, RowStatus.FAILED.value, error=error)

    async def start_due_runs(self, now: datetime | None = None) -> list[UUID]:
        """Start scheduled runs whose ``scheduled_at`` has passed."""
        now = now or utcnow()
        runs = (
            await self._session.execute(
                select(Run)
                .where(Run.status == RunStatus.SCHEDULED, Run.scheduled_at.is_not(None))
                .order_by(Run.scheduled_at)
            )
        ).scalars().all()

        started: list[UUID] = []
        for run in runs:
            if as_utc(run.scheduled_at) > now:
                continue
            if await self._has_no_rows(run):
                logger.warning("Scheduled run has no rows, skipping", extra={"run_id": str(run.id)})
                continue
            await self.activate(run)
            started.append(run.id)
        return started

    async def _has_no_rows(self, run: Run) -> bool:
        count = (
            await self._session.execute(select(func.count(Row.id)).where(Row.run_id == run.id))
        ).scalar() or 0
        return count == 0

    async def dispatch_running_runs(self) -> int:
        runs = (
            await self._session.execute(select(Run).where(Run.status == RunStatus.RUNNING))
        ).scalars().all()
        placed = 0
        for run in runs:
            placed += await self.dispatch(run)
        return placed


class DispatcherLoop:
    """Background task that periodically starts due runs and tops up running ones."""

    def __init__(self, interval_seconds: int | None = None) -> None:
        self._interval = interval_seconds or get_settings().dispatcher_interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._running:
            logger.warning("Dispatcher loop already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Dispatcher loop started", extra={"interval_seconds": self._interval})

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Dispatcher loop stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Dispatcher iteration failed")
            await asyncio.sleep(self._interval)

    async def run_once(self) -> int:
        async with get_database_manager().session() as session:
            dispatcher = RunDispatcher(session, get_telephony_provider(), get_realtime_publisher())
            started = await dispatcher.start_due_runs()
            placed = await dispatcher.dispatch_running_runs()
        if started or placed:
            logger.info(
                "Dispatcher iteration",
                extra={"started_runs": [str(r) for r in started], "calls_placed": placed},
            )
        return placed
