"""
FastAPI router for identity-provider webhooks.
"""

import json
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.config import Settings, get_settings
from rivvi.identity.handler import IdentityEventHandler
from rivvi.identity.signature import WebhookVerificationError, verify_webhook
from rivvi.shared.database import get_db_session
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SVIX_HEADERS = ("svix-id", "svix-timestamp", "svix-signature")


@router.post("/clerk")
async def receive_identity_event(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> JSONResponse:
    secret = settings.clerk_webhook_secret
    if not secret:
        logger.error("Identity webhook secret is not configured")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Missing webhook secret"},
        )

    message_id, timestamp, signature = (request.headers.get(h) for h in SVIX_HEADERS)
    if not message_id or not timestamp or not signature:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing required Svix headers"},
        )

    body = await request.body()
    try:
        verify_webhook(secret, message_id, timestamp, signature, body)
        event = json.loads(body)
    except (WebhookVerificationError, ValueError) as e:
        logger.warning("Rejected identity webhook", extra={"svix_id": message_id, "reason": str(e)})
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid webhook signature"},
        )

    event_type = event.get("type", "") if isinstance(event, dict) else ""
    data = event.get("data") or {} if isinstance(event, dict) else {}
    try:
        await IdentityEventHandler(session).handle_event(event_type, data)
    except Exception:
        logger.exception("Failed to handle identity webhook", extra={"event_type": event_type})
        await session.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Error handling webhook"},
        )
    return JSONResponse(content={"success": True})
