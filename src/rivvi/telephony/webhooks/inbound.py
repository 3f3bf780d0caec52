"""
Inbound call routing webhook.

The provider asks which agent and dynamic variables to use for an incoming
call. The answer must always be a valid ``call_inbound`` body so the call
continues even when something goes wrong on our side.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.calls.models import Call, CallStatus
from rivvi.campaigns.models import CallDirection, Campaign, CampaignTemplate
from rivvi.organizations.models import Organization
from rivvi.patients.hashing import clean_phone
from rivvi.patients.models import Patient
from rivvi.patients.repository import PatientRepository
from rivvi.patients.service import PatientService
from rivvi.realtime.publisher import RealtimePublisher
from rivvi.shared.clock import utcnow
from rivvi.shared.logging import get_logger
from rivvi.telephony.mapping import stringify_variables

logger = get_logger(__name__)

RETURN_CALL_WINDOW = timedelta(days=30)
FALLBACK_ORGANIZATION_NAME = "Our organization"
DEFAULT_INBOUND_CAMPAIGN_NAME = "Inbound Call Service"


def inbound_response(
    dynamic_variables: dict[str, Any],
    metadata: dict[str, Any] | None = None,
    override_agent_id: str | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "dynamic_variables": stringify_variables(dynamic_variables),
        "metadata": stringify_variables({k: v for k, v in (metadata or {}).items() if v is not None}),
    }
    if override_agent_id:
        body["override_agent_id"] = override_agent_id
    return {"call_inbound": body}


def error_response(message: str) -> dict[str, Any]:
    return inbound_response(
        {
            "error_occurred": True,
            "error_message": message,
            "organization_name": FALLBACK_ORGANIZATION_NAME,
        }
    )


class InboundWebhookHandler:
    """Resolves caller, campaign and agent for an incoming call."""

    def __init__(self, session: AsyncSession, publisher: RealtimePublisher) -> None:
        self._session = session
        self._publisher = publisher
        self._patients = PatientService(session)
        self._repository = PatientRepository(session)

    async def handle(self, org_id: UUID, payload: dict[str, Any]) -> dict[str, Any]:
        call_inbound = payload.get("call_inbound") or {}
        from_number = call_inbound.get("from_number")
        to_number = call_inbound.get("to_number") or ""
        if not from_number:
            logger.warning("Inbound call without caller number", extra={"org_id": str(org_id)})
            return error_response("Missing caller phone number")

        org = await self._session.get(Organization, org_id)
        if org is None:
            logger.warning("Inbound call for unknown organization", extra={"org_id": str(org_id)})
            return error_response("Organization not found")

        patient, patient_exists = await self._resolve_caller(org_id, from_number)
        recent_call = await self._recent_outbound_call(org_id, patient.id)
        inbound_campaign, inbound_agent_id = await self._default_inbound_campaign(org_id)

        campaign = inbound_campaign
        override_agent_id = inbound_agent_id
        if recent_call is not None and recent_call.campaign_id is not None:
            recent_campaign = await self._session.get(Campaign, recent_call.campaign_id)
            if campaign is None:
                campaign = recent_campaign
            if override_agent_id is None:
                override_agent_id = recent_call.agent_id

        phone = patient.primary_phone or clean_phone(from_number)
        variables: dict[str, Any] = {
            "organization_name": org.name or FALLBACK_ORGANIZATION_NAME,
            "inbound_call": True,
            "is_return_call": recent_call is not None,
            "patient_exists": patient_exists,
            "patient_id": str(patient.id),
            "patient_first_name": patient.first_name,
            "patient_last_name": patient.last_name,
            "patient_phone": phone,
            "first_name": patient.first_name,
            "last_name": patient.last_name,
            "phone": phone,
            "campaign_name": campaign.name if campaign else DEFAULT_INBOUND_CAMPAIGN_NAME,
        }
        if recent_call is not None:
            variables["previous_call_status"] = recent_call.status.value
            variables.update((recent_call.metadata_ or {}).get("variables") or {})
            # the caller's identity wins over what the outbound row carried
            variables.update(patient_id=str(patient.id), inbound_call=True, is_return_call=True)

        call = Call(
            org_id=org_id,
            campaign_id=campaign.id if campaign else None,
            patient_id=patient.id,
            agent_id=override_agent_id or call_inbound.get("agent_id") or "unknown",
            direction=CallDirection.INBOUND,
            status=CallStatus.IN_PROGRESS,
            to_number=to_number,
            from_number=clean_phone(from_number),
            related_outbound_call_id=recent_call.id if recent_call else None,
            start_time=utcnow(),
        )
        self._session.add(call)
        await self._session.flush()

        metadata = {
            "call_id": str(call.id),
            "org_id": str(org_id),
            "patient_id": str(patient.id),
            "campaign_id": str(campaign.id) if campaign else None,
            "is_return_call": recent_call is not None,
            "previous_call_id": str(recent_call.id) if recent_call else None,
            "previous_run_id": str(recent_call.run_id) if recent_call and recent_call.run_id else None,
        }
        call.metadata_ = {**metadata, "variables": variables}
        await self._session.flush()

        logger.info(
            "Inbound call routed",
            extra={
                "call_id": str(call.id),
                "org_id": str(org_id),
                "patient_id": str(patient.id),
                "is_return_call": recent_call is not None,
                "agent_id": override_agent_id,
            },
        )
        await self._publisher.publish_inbound_call(
            org_id,
            {
                "call_id": call.id,
                "patient_id": patient.id,
                "from_number": call.from_number,
                "is_return_call": recent_call is not None,
                "campaign_id": campaign.id if campaign else None,
            },
        )
        return inbound_response(variables, metadata, override_agent_id)

    async def _resolve_caller(self, org_id: UUID, from_number: str) -> tuple[Patient, bool]:
        patient = await self._patients.find_by_phone(from_number, org_id)
        if patient is None:
            patient, _ = await self._patients.find_or_create(
                first_name="Unknown",
                last_name="Caller",
                dob=utcnow().date(),
                phone=from_number,
                org_id=org_id,
            )
            logger.info("Created patient for unknown caller", extra={"patient_id": str(patient.id)})
            return patient, False

        if await self._repository.get_link(org_id, patient.id) is None:
            await self._repository.link(org_id, patient.id)
        return patient, True

    async def _recent_outbound_call(self, org_id: UUID, patient_id: UUID) -> Call | None:
        stmt = (
            select(Call)
            .where(
                Call.org_id == org_id,
                Call.patient_id == patient_id,
                Call.direction == CallDirection.OUTBOUND,
                Call.created_at >= utcnow() - RETURN_CALL_WINDOW,
            )
            .order_by(Call.created_at.desc())
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalars().first()

    async def _default_inbound_campaign(self, org_id: UUID) -> tuple[Campaign | None, str | None]:
        stmt = (
            select(Campaign, CampaignTemplate.agent_id)
            .join(CampaignTemplate, CampaignTemplate.id == Campaign.template_id)
            .where(
                Campaign.org_id == org_id,
                Campaign.direction == CallDirection.INBOUND,
                Campaign.is_active.is_(True),
            )
            .order_by(Campaign.is_default_inbound.desc(), Campaign.created_at.desc())
            .limit(1)
        )
        result = (await self._session.execute(stmt)).first()
        if result is None:
            return None, None
        campaign, agent_id = result
        return campaign, agent_id or None
