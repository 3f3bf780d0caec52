"""
Call API router.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.auth.middleware import CurrentUser
from rivvi.auth.rbac import require_org_member
from rivvi.calls.models import CallStatus
from rivvi.calls.schemas import (
    CallDetail,
    CallFilters,
    CallListItem,
    CallResponse,
    ManualCallCreate,
    TranscriptResponse,
)
from rivvi.calls.service import CallService
from rivvi.campaigns.models import CallDirection
from rivvi.realtime.publisher import RealtimePublisher, get_realtime_publisher
from rivvi.shared.database import get_db_session
from rivvi.shared.schemas import DEFAULT_LIMIT, MAX_LIMIT, ErrorResponse, Page
from rivvi.telephony.factory import get_telephony_provider
from rivvi.telephony.interface import TelephonyProvider

router = APIRouter(prefix="/api/calls", tags=["calls"])


def get_call_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime_publisher)],
) -> CallService:
    return CallService(session, provider, publisher)


@router.get("", response_model=Page[CallListItem])
async def list_calls(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CallService, Depends(get_call_service)],
    patient_id: UUID | None = None,
    run_id: UUID | None = None,
    campaign_id: UUID | None = None,
    status_filter: Annotated[CallStatus | None, Query(alias="status")] = None,
    direction: CallDirection | None = None,
    search: Annotated[str | None, Query(max_length=200)] = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Page[CallListItem]:
    filters = CallFilters(
        patient_id=patient_id,
        run_id=run_id,
        campaign_id=campaign_id,
        status=status_filter,
        direction=direction,
        search=search,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    items, total = await service.get_all(current_user.organization_id, filters)
    return Page[CallListItem].build(items, total, limit, offset)


@router.post(
    "",
    response_model=CallResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse, "description": "Patient or campaign not found"},
        502: {"model": ErrorResponse, "description": "Voice provider error"},
    },
)
async def create_manual_call(
    data: ManualCallCreate,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CallService, Depends(get_call_service)],
) -> CallResponse:
    call = await service.create_manual_call(current_user.organization_id, data)
    return CallResponse.model_validate(call)


@router.get("/patient/{patient_id}", response_model=list[CallListItem])
async def get_patient_calls(
    patient_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CallService, Depends(get_call_service)],
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = 10,
) -> list[CallListItem]:
    return await service.get_patient_calls(current_user.organization_id, patient_id, limit)


@router.get(
    "/{call_id}",
    response_model=CallDetail,
    responses={404: {"model": ErrorResponse, "description": "Call not found"}},
)
async def get_call(
    call_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CallService, Depends(get_call_service)],
) -> CallDetail:
    return await service.get_by_id(current_user.organization_id, call_id)


@router.get("/{call_id}/transcript", response_model=TranscriptResponse)
async def get_call_transcript(
    call_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CallService, Depends(get_call_service)],
) -> TranscriptResponse:
    return await service.get_transcript(current_user.organization_id, call_id)
