"""
Call service for business logic.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.calls.models import Call, CallStatus
from rivvi.calls.schemas import (
    CallDetail,
    CallFilters,
    CallListItem,
    CallPatientSummary,
    CallResponse,
    ManualCallCreate,
    TranscriptResponse,
)
from rivvi.campaigns.models import CallDirection, Campaign
from rivvi.organizations.models import Organization
from rivvi.patients.models import OrganizationPatient, Patient
from rivvi.realtime.publisher import RealtimePublisher
from rivvi.runs.models import Row, Run
from rivvi.shared.exceptions import BadRequestError, NotFoundError
from rivvi.shared.logging import get_logger
from rivvi.telephony.config import get_telephony_config
from rivvi.telephony.interface import PhoneCallRequest, TelephonyProvider

logger = get_logger(__name__)


def _list_item(call: Call, patient: Patient | None, campaign_name: str | None) -> CallListItem:
    return CallListItem(
        **CallResponse.model_validate(call).model_dump(),
        patient=CallPatientSummary.model_validate(patient) if patient else None,
        campaign_name=campaign_name,
    )


class CallService:
    """Service for call history and manual calls."""

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider | None = None,
        publisher: RealtimePublisher | None = None,
    ) -> None:
        self._session = session
        self._provider = provider
        self._publisher = publisher

    def _base_query(self):
        return (
            select(Call, Patient, Campaign.name)
            .outerjoin(Patient, Patient.id == Call.patient_id)
            .outerjoin(Campaign, Campaign.id == Call.campaign_id)
        )

    async def get_all(self, org_id: UUID, filters: CallFilters) -> tuple[list[CallListItem], int]:
        conditions: list[Any] = [Call.org_id == org_id]
        if filters.patient_id:
            conditions.append(Call.patient_id == filters.patient_id)
        if filters.run_id:
            conditions.append(Call.run_id == filters.run_id)
        if filters.campaign_id:
            conditions.append(Call.campaign_id == filters.campaign_id)
        if filters.status:
            conditions.append(Call.status == filters.status)
        if filters.direction:
            conditions.append(Call.direction == filters.direction)
        if filters.start_date:
            conditions.append(Call.created_at >= filters.start_date)
        if filters.end_date:
            conditions.append(Call.created_at <= filters.end_date)
        if filters.search:
            term = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    Patient.first_name.ilike(term),
                    Patient.last_name.ilike(term),
                    (Patient.first_name + " " + Patient.last_name).ilike(term),
                    Call.to_number.ilike(term),
                    Call.from_number.ilike(term),
                )
            )

        count_stmt = (
            select(func.count(Call.id))
            .select_from(Call)
            .outerjoin(Patient, Patient.id == Call.patient_id)
            .where(*conditions)
        )
        total = (await self._session.execute(count_stmt)).scalar() or 0

        stmt = (
            self._base_query()
            .where(*conditions)
            .order_by(Call.created_at.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        rows = (await self._session.execute(stmt)).all()
        return [_list_item(call, patient, name) for call, patient, name in rows], total

    async def _get_call(self, org_id: UUID, call_id: UUID) -> Call:
        call = await self._session.get(Call, call_id)
        if call is None or call.org_id != org_id:
            raise NotFoundError(f"Call with ID {call_id} not found", {"call_id": str(call_id)})
        return call

    async def get_by_id(self, org_id: UUID, call_id: UUID) -> CallDetail:
        call = await self._get_call(org_id, call_id)
        patient = await self._session.get(Patient, call.patient_id) if call.patient_id else None
        campaign = await self._session.get(Campaign, call.campaign_id) if call.campaign_id else None
        run = await self._session.get(Run, call.run_id) if call.run_id else None
        row = await self._session.get(Row, call.row_id) if call.row_id else None

        return CallDetail(
            **_list_item(call, patient, campaign.name if campaign else None).model_dump(),
            run={"id": run.id, "name": run.name, "status": run.status.value} if run else None,
            row=(
                {
                    "id": row.id,
                    "status": row.status.value,
                    "variables": row.variables,
                    "analysis": row.analysis,
                    "sort_index": row.sort_index,
                }
                if row
                else None
            ),
        )

    async def get_patient_calls(self, org_id: UUID, patient_id: UUID, limit: int = 10) -> list[CallListItem]:
        stmt = (
            self._base_query()
            .where(Call.org_id == org_id, Call.patient_id == patient_id)
            .order_by(Call.created_at.desc())
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).all()
        return [_list_item(call, patient, name) for call, patient, name in rows]

    async def get_transcript(self, org_id: UUID, call_id: UUID) -> TranscriptResponse:
        call = await self._get_call(org_id, call_id)
        return TranscriptResponse(transcript=call.transcript, analysis=call.analysis)

    async def create_manual_call(self, org_id: UUID, data: ManualCallCreate) -> Call:
        """Place a one-off outbound call to a patient of the organization."""
        if self._provider is None:
            raise RuntimeError("CallService needs a telephony provider to place calls")

        link = await self._session.get(OrganizationPatient, (org_id, data.patient_id))
        patient = await self._session.get(Patient, data.patient_id) if link else None
        if patient is None:
            raise NotFoundError(
                f"Patient with ID {data.patient_id} not found",
                {"patient_id": str(data.patient_id)},
            )

        campaign = None
        if data.campaign_id is not None:
            campaign = await self._session.get(Campaign, data.campaign_id)
            if campaign is None or campaign.org_id != org_id:
                raise NotFoundError(
                    f"Campaign with ID {data.campaign_id} not found",
                    {"campaign_id": str(data.campaign_id)},
                )

        org = await self._session.get(Organization, org_id)
        from_number = (org.phone if org else None) or get_telephony_config().default_from_number
        if not from_number:
            raise BadRequestError(
                "Organization has no outbound phone number configured",
                {"org_id": str(org_id)},
            )

        variables = {
            "first_name": patient.first_name,
            "last_name": patient.last_name,
            "patient_id": str(patient.id),
            "dob": patient.dob.isoformat(),
            "phone": patient.primary_phone,
            "organization_name": org.name if org else "",
            **data.variables,
        }
        metadata = {
            "org_id": str(org_id),
            "patient_id": str(patient.id),
            "campaign_id": str(campaign.id) if campaign else None,
            "manual": True,
        }
        response = await self._provider.create_phone_call(
            PhoneCallRequest(
                to_number=patient.primary_phone,
                from_number=from_number,
                agent_id=data.agent_id,
                variables=variables,
                metadata=metadata,
            )
        )

        call = Call(
            org_id=org_id,
            campaign_id=campaign.id if campaign else None,
            patient_id=patient.id,
            agent_id=data.agent_id,
            direction=CallDirection.OUTBOUND,
            status=CallStatus.PENDING,
            retell_call_id=response.call_id,
            to_number=patient.primary_phone,
            from_number=from_number,
            metadata_={"manual": True, "variables": variables},
        )
        self._session.add(call)
        await self._session.flush()
        await self._session.refresh(call)

        logger.info(
            "Manual call placed",
            extra={"call_id": str(call.id), "retell_call_id": response.call_id, "org_id": str(org_id)},
        )
        if self._publisher is not None:
            await self._publisher.publish_call_started(
                org_id,
                {
                    "call_id": call.id,
                    "retell_call_id": response.call_id,
                    "patient_id": patient.id,
                    "direction": CallDirection.OUTBOUND.value,
                    "manual": True,
                },
            )
        return call
