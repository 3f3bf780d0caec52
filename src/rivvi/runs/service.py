"""
Run service for business logic.

Manages the run lifecycle: creation, patient-list upload, start, pause and
scheduling. Placing calls is delegated to ``RunDispatcher``.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.calls.schemas import CallPatientSummary
from rivvi.campaigns.models import Campaign, CampaignTemplate
from rivvi.patients.models import Patient
from rivvi.patients.service import PatientService
from rivvi.realtime.publisher import RealtimePublisher
from rivvi.runs.dispatcher import RunDispatcher, row_status_counts, update_run_metadata
from rivvi.runs.file_processor import FileProcessingError, FileProcessor
from rivvi.runs.models import Row, RowStatus, Run, RunStatus, empty_run_metadata
from rivvi.runs.schemas import FileUploadResponse, RowResponse, RowsPage, RowWithPatient, RunCreate
from rivvi.shared.clock import iso_now
from rivvi.shared.exceptions import BadRequestError, InvalidStatusTransitionError, NotFoundError
from rivvi.shared.logging import get_logger
from rivvi.telephony.interface import TelephonyProvider

logger = get_logger(__name__)

STARTABLE_STATUSES = {RunStatus.DRAFT, RunStatus.READY, RunStatus.PAUSED, RunStatus.SCHEDULED}
UPLOADABLE_STATUSES = {RunStatus.DRAFT, RunStatus.READY, RunStatus.SCHEDULED, RunStatus.FAILED}


class RunService:
    """Service for runs and their rows."""

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider,
        publisher: RealtimePublisher,
    ) -> None:
        self._session = session
        self._publisher = publisher
        self._dispatcher = RunDispatcher(session, provider, publisher)

    async def _get_campaign(self, org_id: UUID, campaign_id: UUID) -> Campaign:
        campaign = await self._session.get(Campaign, campaign_id)
        if campaign is None or campaign.org_id != org_id:
            raise NotFoundError(
                f"Campaign with ID {campaign_id} not found",
                {"campaign_id": str(campaign_id)},
            )
        return campaign

    async def get_by_id(self, org_id: UUID, run_id: UUID) -> Run:
        run = await self._session.get(Run, run_id)
        if run is None or run.org_id != org_id:
            raise NotFoundError(f"Run with ID {run_id} not found", {"run_id": str(run_id)})
        return run

    async def get_all(
        self,
        org_id: UUID,
        campaign_id: UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Run], int]:
        await self._get_campaign(org_id, campaign_id)
        conditions = [Run.org_id == org_id, Run.campaign_id == campaign_id]
        total = (
            await self._session.execute(select(func.count(Run.id)).where(*conditions))
        ).scalar() or 0
        stmt = (
            select(Run)
            .where(*conditions)
            .order_by(Run.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all()), total

    async def create(self, org_id: UUID, campaign_id: UUID, data: RunCreate) -> Run:
        campaign = await self._get_campaign(org_id, campaign_id)
        if not campaign.is_active:
            raise BadRequestError("Campaign is not active", {"campaign_id": str(campaign_id)})

        run = Run(
            campaign_id=campaign_id,
            org_id=org_id,
            name=data.name,
            custom_prompt=data.custom_prompt,
            custom_voicemail_message=data.custom_voicemail_message,
            variation_notes=data.variation_notes,
            natural_language_input=data.natural_language_input,
            ai_generated=data.ai_generated,
            status=RunStatus.SCHEDULED if data.scheduled_at else RunStatus.DRAFT,
            scheduled_at=data.scheduled_at,
            metadata_=empty_run_metadata(),
        )
        self._session.add(run)
        await self._session.flush()
        await self._session.refresh(run)

        logger.info(
            "Run created",
            extra={"run_id": str(run.id), "campaign_id": str(campaign_id), "status": run.status.value},
        )
        await self._publisher.publish_run_updated(org_id, run.id, run.status.value, run.metadata_)
        return run

    async def upload_file(
        self,
        org_id: UUID,
        run_id: UUID,
        file_content: str,
        file_name: str,
    ) -> FileUploadResponse:
        """Process a patient list into rows of the run."""
        run = await self.get_by_id(org_id, run_id)
        if run.status not in UPLOADABLE_STATUSES:
            raise InvalidStatusTransitionError(run.status, "upload a file to", UPLOADABLE_STATUSES)

        campaign = await self._get_campaign(org_id, run.campaign_id)
        template = await self._session.get(CampaignTemplate, campaign.template_id)
        keep_scheduled = run.status == RunStatus.SCHEDULED

        run.status = RunStatus.PROCESSING
        await self._session.flush()
        await self._publisher.publish_run_updated(org_id, run.id, run.status.value, run.metadata_)

        processor = FileProcessor(PatientService(self._session))
        try:
            result = await processor.process(
                file_content,
                file_name,
                template.variables_config if template else None,
                org_id,
            )
        except FileProcessingError as e:
            update_run_metadata(run, "run", error=str(e), failed_at=iso_now())
            run.status = RunStatus.FAILED
            # Keep the failed status even though the request errors out
            await self._session.commit()
            await self._publisher.publish_run_updated(org_id, run.id, run.status.value, run.metadata_)
            logger.warning("Run file processing failed", extra={"run_id": str(run_id), "error": str(e)})
            raise BadRequestError(str(e), {"run_id": str(run_id)})

        start_index = (
            await self._session.execute(
                select(func.coalesce(func.max(Row.sort_index) + 1, 0)).where(Row.run_id == run.id)
            )
        ).scalar() or 0
        for offset, valid in enumerate(result.valid_rows):
            self._session.add(
                Row(
                    run_id=run.id,
                    org_id=org_id,
                    patient_id=valid.patient_id,
                    variables=valid.variables,
                    status=RowStatus.PENDING,
                    sort_index=start_index + offset,
                    metadata_={"patient_hash": valid.patient_hash} if valid.patient_hash else None,
                )
            )
        await self._session.flush()

        counts = await row_status_counts(self._session, run.id)
        total_rows = sum(counts.values())
        previous_invalid = ((run.metadata_ or {}).get("rows") or {}).get("invalid", 0) if start_index else 0
        update_run_metadata(run, "rows", total=total_rows, invalid=previous_invalid + len(result.invalid_rows))
        update_run_metadata(run, "calls", total=total_rows, pending=counts[RowStatus.PENDING.value])
        update_run_metadata(
            run,
            "run",
            error=None,
            file_name=file_name,
            matched_columns=result.matched_columns,
            unmatched_columns=result.unmatched_columns,
            invalid_rows=[
                {"index": r.index, "error": r.error, "raw_data": r.raw_data}
                for r in result.invalid_rows[:100]
            ],
        )
        run.status = RunStatus.SCHEDULED if keep_scheduled else RunStatus.READY
        await self._session.flush()
        await self._session.refresh(run)

        logger.info(
            "Run file uploaded",
            extra={
                "run_id": str(run_id),
                "rows_added": len(result.valid_rows),
                "invalid_rows": len(result.invalid_rows),
            },
        )
        await self._publisher.publish_run_updated(org_id, run.id, run.status.value, run.metadata_)
        return FileUploadResponse(
            rows_added=len(result.valid_rows),
            invalid_rows=len(result.invalid_rows),
            stats=result.stats,
        )

    async def start(self, org_id: UUID, run_id: UUID) -> Run:
        run = await self.get_by_id(org_id, run_id)
        if run.status not in STARTABLE_STATUSES:
            raise InvalidStatusTransitionError(run.status, "start", STARTABLE_STATUSES)

        await self._dispatcher.activate(run)
        await self._session.refresh(run)
        return run

    async def pause(self, org_id: UUID, run_id: UUID) -> Run:
        run = await self.get_by_id(org_id, run_id)
        if run.status != RunStatus.RUNNING:
            raise InvalidStatusTransitionError(run.status, "pause", {RunStatus.RUNNING})

        update_run_metadata(run, "run", last_paused_at=iso_now())
        run.status = RunStatus.PAUSED
        await self._session.flush()
        await self._session.refresh(run)

        logger.info("Run paused", extra={"run_id": str(run_id)})
        await self._publisher.publish_run_updated(org_id, run.id, run.status.value, run.metadata_)
        await self._publisher.publish_run_status_changed(run.id, run.status.value)
        return run

    async def schedule(self, org_id: UUID, run_id: UUID, scheduled_at: datetime) -> Run:
        run = await self.get_by_id(org_id, run_id)
        if run.status not in STARTABLE_STATUSES:
            raise InvalidStatusTransitionError(run.status, "schedule", STARTABLE_STATUSES)

        run.scheduled_at = scheduled_at
        run.status = RunStatus.SCHEDULED
        update_run_metadata(run, "run", scheduled_for=scheduled_at.isoformat())
        await self._session.flush()
        await self._session.refresh(run)

        logger.info(
            "Run scheduled",
            extra={"run_id": str(run_id), "scheduled_at": scheduled_at.isoformat()},
        )
        await self._publisher.publish_run_updated(org_id, run.id, run.status.value, run.metadata_)
        return run

    async def get_rows(
        self,
        org_id: UUID,
        run_id: UUID,
        status: RowStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> RowsPage:
        await self.get_by_id(org_id, run_id)

        conditions: list[Any] = [Row.run_id == run_id, Row.org_id == org_id]
        if status is not None:
            conditions.append(Row.status == status)

        total = (
            await self._session.execute(select(func.count(Row.id)).where(*conditions))
        ).scalar() or 0
        stmt = (
            select(Row, Patient)
            .outerjoin(Patient, Patient.id == Row.patient_id)
            .where(*conditions)
            .order_by(Row.sort_index)
            .offset(offset)
            .limit(limit)
        )
        items = [
            RowWithPatient(
                **RowResponse.model_validate(row).model_dump(),
                patient=CallPatientSummary.model_validate(patient) if patient else None,
            )
            for row, patient in (await self._session.execute(stmt)).all()
        ]
        return RowsPage(
            items=items,
            total_count=total,
            has_more=offset + limit < total,
            counts=await row_status_counts(self._session, run_id),
        )
