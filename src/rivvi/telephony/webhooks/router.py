"""
FastAPI router for voice provider webhooks.

The provider must always get a JSON answer: handler failures are logged and
rendered as error bodies instead of propagating to the exception handlers.
"""

from json import JSONDecodeError
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.realtime.publisher import RealtimePublisher, get_realtime_publisher
from rivvi.shared.database import get_db_session
from rivvi.shared.logging import get_logger
from rivvi.telephony.factory import get_telephony_provider
from rivvi.telephony.interface import TelephonyProvider
from rivvi.telephony.webhooks.inbound import InboundWebhookHandler, error_response
from rivvi.telephony.webhooks.post_call import PostCallWebhookHandler

logger = get_logger(__name__)

router = APIRouter(prefix="/api/webhooks/retell", tags=["webhooks"])


def get_post_call_handler(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime_publisher)],
) -> PostCallWebhookHandler:
    return PostCallWebhookHandler(session, provider, publisher)


def get_inbound_handler(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime_publisher)],
) -> InboundWebhookHandler:
    return InboundWebhookHandler(session, publisher)


async def _read_json(request: Request) -> dict[str, Any] | None:
    try:
        payload = await request.json()
    except (JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


async def _post_call(
    request: Request,
    org_id: UUID,
    campaign_id: UUID | None,
    handler: PostCallWebhookHandler,
    session: AsyncSession,
) -> JSONResponse:
    payload = await _read_json(request)
    if payload is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "error", "error": "Invalid JSON payload"},
        )

    call_data = payload.get("call") or {}
    if not isinstance(call_data, dict):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "error", "error": "Invalid call payload"},
        )
    event = payload.get("event")
    if event != "call_analyzed" or call_data.get("call_type", "phone_call") != "phone_call":
        logger.debug("Ignoring provider event", extra={"event": event, "org_id": str(org_id)})
        return JSONResponse(
            content={"status": "ignored", "reason": f"Not a call_analyzed phone call event: {event}"}
        )

    if not call_data.get("call_id"):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "error", "error": "Call ID not provided"},
        )

    try:
        result = await handler.handle(org_id, campaign_id, call_data)
    except Exception as e:
        logger.exception(
            "Failed to process post-call webhook",
            extra={"org_id": str(org_id), "retell_call_id": call_data.get("call_id")},
        )
        await session.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error", "error": str(e) or "Internal server error"},
        )
    return JSONResponse(content=result)


@router.post("/{org_id}/post-call")
async def receive_post_call(
    org_id: UUID,
    request: Request,
    handler: Annotated[PostCallWebhookHandler, Depends(get_post_call_handler)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> JSONResponse:
    return await _post_call(request, org_id, None, handler, session)


@router.post("/{org_id}/post-call/{campaign_id}")
async def receive_campaign_post_call(
    org_id: UUID,
    campaign_id: UUID,
    request: Request,
    handler: Annotated[PostCallWebhookHandler, Depends(get_post_call_handler)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> JSONResponse:
    return await _post_call(request, org_id, campaign_id, handler, session)


@router.post("/{org_id}/inbound")
async def receive_inbound(
    org_id: UUID,
    request: Request,
    handler: Annotated[InboundWebhookHandler, Depends(get_inbound_handler)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> dict[str, Any]:
    # The provider expects a routing answer even for malformed requests.
    payload = await _read_json(request) or {}
    try:
        return await handler.handle(org_id, payload)
    except Exception:
        logger.exception("Failed to route inbound call", extra={"org_id": str(org_id)})
        await session.rollback()
        return error_response("Error processing call")
