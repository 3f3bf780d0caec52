"""
Campaign API routers.

``router`` serves an organization's own campaigns and requests;
``admin_router`` holds the super-admin campaign management endpoints.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.auth.middleware import CurrentUser
from rivvi.auth.rbac import require_org_member, require_super_admin
from rivvi.campaigns.models import CampaignRequestStatus
from rivvi.campaigns.requests_service import CampaignRequestService
from rivvi.campaigns.schemas import (
    AgentPromptUpdate,
    CampaignCreate,
    CampaignDetail,
    CampaignListItem,
    CampaignRequestCreate,
    CampaignRequestProcess,
    CampaignRequestResponse,
    CampaignResponse,
    CampaignUpdate,
    TemplateResponse,
)
from rivvi.campaigns.service import CampaignService
from rivvi.runs.schemas import RunResponse
from rivvi.shared.database import get_db_session
from rivvi.shared.logging import get_logger
from rivvi.shared.schemas import DEFAULT_LIMIT, MAX_LIMIT, ErrorResponse, Page
from rivvi.telephony.factory import get_telephony_provider
from rivvi.telephony.interface import TelephonyProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])


def get_campaign_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
) -> CampaignService:
    return CampaignService(session, provider)


def get_campaign_request_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CampaignRequestService:
    return CampaignRequestService(session)


def _request_page(
    requests: list, total: int, limit: int, offset: int
) -> Page[CampaignRequestResponse]:
    return Page[CampaignRequestResponse].build(
        [CampaignRequestResponse.model_validate(r) for r in requests], total, limit, offset
    )


@router.get("", response_model=Page[CampaignListItem])
async def list_campaigns(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Page[CampaignListItem]:
    items, total = await service.get_all(current_user.organization_id, limit, offset)
    return Page[CampaignListItem].build(items, total, limit, offset)


@router.get("/requests", response_model=Page[CampaignRequestResponse])
async def list_campaign_requests(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CampaignRequestService, Depends(get_campaign_request_service)],
    status_filter: Annotated[CampaignRequestStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Page[CampaignRequestResponse]:
    requests, total = await service.get_campaign_requests(
        current_user.organization_id, status_filter, limit, offset
    )
    return _request_page(requests, total, limit, offset)


@router.post(
    "/requests",
    response_model=CampaignRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_campaign(
    data: CampaignRequestCreate,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CampaignRequestService, Depends(get_campaign_request_service)],
) -> CampaignRequestResponse:
    request = await service.request_campaign(
        current_user.organization_id, current_user.user_id, data
    )
    return CampaignRequestResponse.model_validate(request)


@router.get(
    "/{campaign_id}",
    response_model=CampaignDetail,
    responses={404: {"model": ErrorResponse, "description": "Campaign not found"}},
)
async def get_campaign(
    campaign_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> CampaignDetail:
    return await service.get_by_id(current_user.organization_id, campaign_id)


@router.get("/{campaign_id}/recent-runs", response_model=list[RunResponse])
async def get_recent_runs(
    campaign_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
    limit: Annotated[int, Query(ge=1, le=50)] = 5,
) -> list[RunResponse]:
    runs = await service.get_recent_runs(current_user.organization_id, campaign_id, limit)
    return [RunResponse.model_validate(r) for r in runs]


@admin_router.post(
    "/campaigns",
    response_model=CampaignResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Agent could not be verified"}},
)
async def create_campaign(
    data: CampaignCreate,
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> CampaignResponse:
    logger.info(
        "Creating campaign",
        extra={
            "user_id": str(current_user.user_id),
            "org_id": str(data.org_id),
            "campaign_name": data.name,
        },
    )
    campaign = await service.create(data, created_by=current_user.user_id)
    return CampaignResponse.model_validate(campaign)


@admin_router.get("/campaigns/{campaign_id}", response_model=CampaignDetail)
async def admin_get_campaign(
    campaign_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> CampaignDetail:
    return await service.get_by_id(None, campaign_id)


@admin_router.patch("/campaigns/{campaign_id}", response_model=CampaignResponse)
async def update_campaign(
    campaign_id: UUID,
    data: CampaignUpdate,
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> CampaignResponse:
    campaign = await service.update(campaign_id, data)
    return CampaignResponse.model_validate(campaign)


@admin_router.put(
    "/campaigns/{campaign_id}/agent-prompt",
    response_model=TemplateResponse,
    responses={502: {"model": ErrorResponse, "description": "Voice provider error"}},
)
async def update_agent_prompt(
    campaign_id: UUID,
    data: AgentPromptUpdate,
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> TemplateResponse:
    template = await service.update_agent_prompt(campaign_id, data.prompt, data.voicemail_message)
    return TemplateResponse.model_validate(template)


@admin_router.get("/campaign-requests", response_model=Page[CampaignRequestResponse])
async def list_all_campaign_requests(
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[CampaignRequestService, Depends(get_campaign_request_service)],
    status_filter: Annotated[CampaignRequestStatus | None, Query(alias="status")] = None,
    org_id: UUID | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Page[CampaignRequestResponse]:
    requests, total = await service.get_all_campaign_requests(status_filter, org_id, limit, offset)
    return _request_page(requests, total, limit, offset)


@admin_router.patch(
    "/campaign-requests/{request_id}",
    response_model=CampaignRequestResponse,
    responses={404: {"model": ErrorResponse, "description": "Campaign request not found"}},
)
async def process_campaign_request(
    request_id: UUID,
    data: CampaignRequestProcess,
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[CampaignRequestService, Depends(get_campaign_request_service)],
) -> CampaignRequestResponse:
    request = await service.process_campaign_request(
        request_id, data.status, data.admin_notes, data.resulting_campaign_id
    )
    return CampaignRequestResponse.model_validate(request)
