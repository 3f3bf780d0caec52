"""
Organization API router.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.auth.middleware import CurrentUser
from rivvi.auth.rbac import require_org_member, require_super_admin
from rivvi.organizations.schemas import (
    MemberResponse,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationUpdate,
)
from rivvi.organizations.service import OrganizationService
from rivvi.shared.database import get_db_session
from rivvi.shared.schemas import DEFAULT_LIMIT, MAX_LIMIT, ErrorResponse, Page

router = APIRouter(prefix="/api/organizations", tags=["organizations"])


def get_organization_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> OrganizationService:
    return OrganizationService(session)


@router.get("/current", response_model=OrganizationResponse)
async def get_current_organization(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[OrganizationService, Depends(get_organization_service)],
) -> OrganizationResponse:
    organization = await service.get_current(current_user)
    return OrganizationResponse.model_validate(organization)


@router.get("/members", response_model=Page[MemberResponse])
async def list_members(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[OrganizationService, Depends(get_organization_service)],
    organization_id: UUID | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Page[MemberResponse]:
    members, total = await service.get_members(current_user, organization_id, limit, offset)
    return Page[MemberResponse].build(
        [MemberResponse.model_validate(m) for m in members], total, limit, offset
    )


@router.get("", response_model=Page[OrganizationResponse])
async def list_organizations(
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[OrganizationService, Depends(get_organization_service)],
    search: Annotated[str | None, Query(max_length=200)] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Page[OrganizationResponse]:
    organizations, total = await service.get_all(search, limit, offset)
    return Page[OrganizationResponse].build(
        [OrganizationResponse.model_validate(o) for o in organizations], total, limit, offset
    )


@router.post(
    "",
    response_model=OrganizationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Organization already exists"}},
)
async def create_organization(
    data: OrganizationCreate,
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[OrganizationService, Depends(get_organization_service)],
) -> OrganizationResponse:
    organization = await service.create(data)
    return OrganizationResponse.model_validate(organization)


@router.get(
    "/{organization_id}",
    response_model=OrganizationResponse,
    responses={404: {"model": ErrorResponse, "description": "Organization not found"}},
)
async def get_organization(
    organization_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[OrganizationService, Depends(get_organization_service)],
) -> OrganizationResponse:
    organization = await service.get_by_id(organization_id)
    return OrganizationResponse.model_validate(organization)


@router.patch(
    "/{organization_id}",
    response_model=OrganizationResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Not allowed to update this organization"},
        404: {"model": ErrorResponse, "description": "Organization not found"},
    },
)
async def update_organization(
    organization_id: UUID,
    data: OrganizationUpdate,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[OrganizationService, Depends(get_organization_service)],
) -> OrganizationResponse:
    organization = await service.update(organization_id, data, current_user)
    return OrganizationResponse.model_validate(organization)
