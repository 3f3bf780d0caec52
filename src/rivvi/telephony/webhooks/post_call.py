"""
Post-call webhook handler.

Processes ``call_analyzed`` events from the voice provider: records the call
outcome, updates the originating row and run counters, and keeps the run
moving by dispatching its next batch.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.calls.models import Call, CallStatus
from rivvi.campaigns.models import CallDirection, Campaign, CampaignTemplate
from rivvi.campaigns.schemas import AnalysisConfig
from rivvi.patients.repository import PatientRepository
from rivvi.patients.service import PatientService
from rivvi.realtime.publisher import RealtimePublisher
from rivvi.runs.dispatcher import RunDispatcher, update_run_metadata
from rivvi.runs.models import Row, Run, RunStatus
from rivvi.shared.clock import iso_now
from rivvi.shared.logging import get_logger
from rivvi.telephony.interface import TelephonyProvider
from rivvi.telephony.mapping import extract_call_insights, is_truthy, map_call_status, map_row_status

logger = get_logger(__name__)

_PASSTHROUGH_ANALYSIS = ("user_sentiment", "call_completion_rating")


def _as_uuid(value: Any) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _from_timestamp_ms(value: Any) -> datetime | None:
    if not isinstance(value, (int, float)) or value <= 0:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _metadata_id(metadata: dict[str, Any], snake: str, camel: str) -> UUID | None:
    return _as_uuid(metadata.get(snake) or metadata.get(camel))


def build_processed_analysis(
    call_data: dict[str, Any],
    analysis_config: AnalysisConfig | None = None,
) -> dict[str, Any]:
    """Flatten the provider's call analysis into the stored analysis document.

    Custom analysis data is kept as is, voicemail detection is normalized to
    ``voicemail_detected``/``left_voicemail``/``in_voicemail`` and the
    campaign's main KPI field, if any, is copied to ``main_kpi_field`` and
    ``main_kpi_value``.
    """
    call_analysis = call_data.get("call_analysis") or {}
    custom = dict(call_analysis.get("custom_analysis_data") or {})
    analysis: dict[str, Any] = dict(custom)

    if call_data.get("call_status") == "voicemail" or call_analysis.get("in_voicemail") is True:
        analysis["voicemail_detected"] = True
        analysis["left_voicemail"] = True
        analysis["in_voicemail"] = True

    if call_analysis.get("call_summary"):
        analysis["summary"] = call_analysis["call_summary"]
    for key in _PASSTHROUGH_ANALYSIS:
        if call_analysis.get(key):
            analysis[key] = call_analysis[key]
    if call_analysis.get("call_successful") is not None:
        analysis["call_successful"] = call_analysis["call_successful"]

    if analysis_config is not None:
        for field in analysis_config.standard.fields:
            if field.key in custom:
                analysis[field.key] = custom[field.key]
        for field in analysis_config.campaign.fields:
            if field.key not in custom:
                continue
            analysis[field.key] = custom[field.key]
            if field.is_main_kpi:
                analysis["main_kpi_field"] = field.key
                analysis["main_kpi_value"] = custom[field.key]

    return analysis


def is_conversion(analysis: dict[str, Any]) -> bool:
    return is_truthy(analysis.get("main_kpi_value")) or is_truthy(analysis.get("conversion"))


class PostCallWebhookHandler:
    """Applies a provider's post-call payload to calls, rows and runs."""

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider,
        publisher: RealtimePublisher,
    ) -> None:
        self._session = session
        self._provider = provider
        self._publisher = publisher
        self._patients = PatientService(session)
        self._patient_links = PatientRepository(session)

    async def handle(
        self,
        org_id: UUID,
        campaign_id: UUID | None,
        call_data: dict[str, Any],
    ) -> dict[str, Any]:
        """Process one analyzed call.

        Args:
            org_id: Organization from the webhook URL.
            campaign_id: Campaign from the webhook URL, if present.
            call_data: The ``call`` object of the provider payload.

        Returns:
            Result body with the local call id, patient id, direction and
            derived insights.
        """
        retell_call_id = call_data["call_id"]
        direction = (
            CallDirection.INBOUND if call_data.get("direction") == "inbound" else CallDirection.OUTBOUND
        )

        call = await self._find_call(org_id, retell_call_id, direction, call_data)
        if call is None:
            call = await self._create_call(org_id, campaign_id, retell_call_id, direction, call_data)

        analysis_config = await self._analysis_config(org_id, call.campaign_id)
        analysis = build_processed_analysis(call_data, analysis_config)
        transcript = call_data.get("transcript") or call.transcript
        insights = extract_call_insights(transcript, analysis)

        provider_status = call_data.get("call_status") or "ended"
        call_status = map_call_status(provider_status)
        already_counted = bool((call.metadata_ or {}).get("counted"))

        call.status = call_status
        call.retell_call_id = retell_call_id
        call.recording_url = call_data.get("recording_url") or call.recording_url
        call.transcript = transcript
        call.analysis = analysis
        if isinstance(call_data.get("duration_ms"), (int, float)):
            call.duration = int(call_data["duration_ms"] / 1000)
        call.start_time = _from_timestamp_ms(call_data.get("start_timestamp")) or call.start_time
        call.end_time = _from_timestamp_ms(call_data.get("end_timestamp")) or call.end_time
        call.error = (
            call_data.get("disconnection_reason") or "Call failed"
            if call_status == CallStatus.FAILED
            else None
        )
        call.metadata_ = {
            **(call.metadata_ or {}),
            "insights": insights,
            "counted": True,
            "webhook_processed_at": iso_now(),
        }
        await self._session.flush()

        logger.info(
            "Post-call webhook applied",
            extra={
                "call_id": str(call.id),
                "retell_call_id": retell_call_id,
                "status": call_status.value,
                "direction": direction.value,
            },
        )

        if call.row_id is not None:
            await self._update_row(call, provider_status, analysis, insights)

        await self._publisher.publish_call_updated(
            org_id,
            {
                "call_id": call.id,
                "retell_call_id": retell_call_id,
                "status": call_status.value,
                "patient_id": call.patient_id,
                "run_id": call.run_id,
                "insights": insights,
            },
        )
        await self._publisher.publish_call_completed(
            call.campaign_id,
            call.run_id,
            {
                "call_id": call.id,
                "status": call_status.value,
                "patient_id": call.patient_id,
                "analysis": analysis,
            },
        )

        if call.run_id is not None:
            await self._update_run(call, analysis, insights, already_counted)

        return {
            "status": "success",
            "call_id": str(call.id),
            "patient_id": str(call.patient_id) if call.patient_id else None,
            "direction": direction.value,
            "insights": insights,
        }

    async def _find_call(
        self,
        org_id: UUID,
        retell_call_id: str,
        direction: CallDirection,
        call_data: dict[str, Any],
    ) -> Call | None:
        call = (
            await self._session.execute(
                select(Call).where(Call.org_id == org_id, Call.retell_call_id == retell_call_id)
            )
        ).scalars().first()
        if call is not None or direction != CallDirection.INBOUND:
            return call

        # Inbound calls are created when the call is routed, before the provider id is known.
        local_id = _as_uuid((call_data.get("metadata") or {}).get("call_id"))
        if local_id is None:
            return None
        call = await self._session.get(Call, local_id)
        if call is None or call.org_id != org_id:
            return None
        return call

    async def _create_call(
        self,
        org_id: UUID,
        campaign_id: UUID | None,
        retell_call_id: str,
        direction: CallDirection,
        call_data: dict[str, Any],
    ) -> Call:
        metadata = dict(call_data.get("metadata") or {})
        to_number = call_data.get("to_number") or ""
        from_number = call_data.get("from_number") or ""

        patient_id = _metadata_id(metadata, "patient_id", "patientId")
        if patient_id is not None and await self._patient_links.get_link(org_id, patient_id) is None:
            logger.warning(
                "Ignoring call metadata patient outside organization",
                extra={"patient_id": str(patient_id), "org_id": str(org_id)},
            )
            patient_id = None
        if patient_id is None:
            phone = from_number if direction == CallDirection.INBOUND else to_number
            patient = await self._patients.search_by_phone(org_id, phone) if phone else None
            patient_id = patient.id if patient else None

        run_id = await self._owned_id(Run, _metadata_id(metadata, "run_id", "runId"), org_id)
        row_id = await self._owned_id(Row, _metadata_id(metadata, "row_id", "rowId"), org_id)
        campaign_id = await self._owned_id(
            Campaign, _metadata_id(metadata, "campaign_id", "campaignId") or campaign_id, org_id
        )

        call = Call(
            org_id=org_id,
            run_id=run_id,
            row_id=row_id,
            campaign_id=campaign_id,
            patient_id=patient_id,
            agent_id=call_data.get("agent_id") or "unknown",
            direction=direction,
            status=map_call_status(call_data.get("call_status")),
            retell_call_id=retell_call_id,
            to_number=to_number,
            from_number=from_number,
            metadata_={**metadata, "webhook_received": True, "webhook_time": iso_now()},
        )
        self._session.add(call)
        await self._session.flush()
        logger.info(
            "Created call from post-call webhook",
            extra={"call_id": str(call.id), "retell_call_id": retell_call_id},
        )
        return call

    async def _owned_id(
        self,
        model: type[Campaign | Row | Run],
        record_id: UUID | None,
        org_id: UUID,
    ) -> UUID | None:
        """Keep an id from provider metadata only if it belongs to the organization."""
        if record_id is None:
            return None
        record = await self._session.get(model, record_id)
        if record is None or record.org_id != org_id:
            logger.warning(
                "Ignoring call metadata id outside organization",
                extra={"model": model.__name__, "record_id": str(record_id), "org_id": str(org_id)},
            )
            return None
        return record_id

    async def _analysis_config(self, org_id: UUID, campaign_id: UUID | None) -> AnalysisConfig | None:
        if campaign_id is None:
            return None
        campaign = await self._session.get(Campaign, campaign_id)
        if campaign is None or campaign.org_id != org_id:
            return None
        template = await self._session.get(CampaignTemplate, campaign.template_id)
        if template is None:
            return None
        return AnalysisConfig.model_validate(template.analysis_config or {})

    async def _update_row(
        self,
        call: Call,
        provider_status: str,
        analysis: dict[str, Any],
        insights: dict[str, Any],
    ) -> None:
        row = await self._session.get(Row, call.row_id)
        if row is None or row.org_id != call.org_id:
            logger.warning("Row for call not found in organization", extra={"call_id": str(call.id), "row_id": str(call.row_id)})
            return

        was_voicemail = provider_status == "voicemail" or analysis.get("voicemail_detected") is True
        previous_status = row.status.value
        row.status = map_row_status(provider_status)
        row.error = call.error if call.status == CallStatus.FAILED else None
        row.analysis = analysis
        if call.patient_id is not None:
            row.patient_id = call.patient_id
        row.metadata_ = {
            **(row.metadata_ or {}),
            "call_completed": call.status == CallStatus.COMPLETED,
            "call_insights": insights,
            "was_voicemail": was_voicemail,
            "is_return_call": call.direction == CallDirection.INBOUND,
            "previous_status": previous_status,
            "last_updated": iso_now(),
        }
        await self._session.flush()
        await self._publisher.publish_row_updated(
            row.run_id, row.id, row.status.value, call_id=call.id, analysis=analysis
        )

    async def _update_run(
        self,
        call: Call,
        analysis: dict[str, Any],
        insights: dict[str, Any],
        already_counted: bool,
    ) -> None:
        run = await self._session.get(Run, call.run_id)
        if run is None or run.org_id != call.org_id:
            logger.warning("Run for call not found in organization", extra={"call_id": str(call.id), "run_id": str(call.run_id)})
            return

        if already_counted:
            logger.info("Call already counted in run metrics", extra={"call_id": str(call.id)})
        else:
            counters = dict((run.metadata_ or {}).get("calls") or {})
            increments = {
                "completed": call.status == CallStatus.COMPLETED,
                "failed": call.status == CallStatus.FAILED,
                "voicemail": call.status == CallStatus.VOICEMAIL or analysis.get("voicemail_detected") is True,
                "connected": insights["patient_reached"],
                "converted": is_conversion(analysis),
            }
            update_run_metadata(
                run,
                "calls",
                **{key: counters.get(key, 0) + 1 for key, hit in increments.items() if hit},
            )
            update_run_metadata(run, "run", last_call_at=iso_now())

        dispatcher = RunDispatcher(self._session, self._provider, self._publisher)
        if not await dispatcher.complete_if_finished(run) and run.status == RunStatus.RUNNING:
            await dispatcher.dispatch(run)

        await self._publisher.publish_metrics_updated(run.id, dict((run.metadata_ or {}).get("calls") or {}))
        await self._publisher.publish_run_updated(run.org_id, run.id, run.status.value, run.metadata_)
