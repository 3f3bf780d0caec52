"""
Patient API router.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.auth.middleware import CurrentUser
from rivvi.auth.rbac import require_org_member
from rivvi.patients.schemas import (
    PatientCreate,
    PatientDetail,
    PatientListItem,
    PatientResponse,
    PatientUpdate,
)
from rivvi.patients.service import PatientService
from rivvi.shared.database import get_db_session
from rivvi.shared.logging import get_logger
from rivvi.shared.schemas import DEFAULT_LIMIT, MAX_LIMIT, ErrorResponse, Page

logger = get_logger(__name__)

router = APIRouter(prefix="/api/patients", tags=["patients"])


def get_patient_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> PatientService:
    return PatientService(session)


@router.get("", response_model=Page[PatientListItem])
async def list_patients(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[PatientService, Depends(get_patient_service)],
    search: Annotated[str | None, Query(max_length=200)] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Page[PatientListItem]:
    items, total = await service.get_all(current_user.organization_id, search, limit, offset)
    return Page[PatientListItem].build(items, total, limit, offset)


@router.get("/search", response_model=PatientResponse | None)
async def search_patient_by_phone(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[PatientService, Depends(get_patient_service)],
    phone: Annotated[str, Query(min_length=4, max_length=20)],
) -> PatientResponse | None:
    """Find the organization's patient with this phone number, or null."""
    patient = await service.search_by_phone(current_user.organization_id, phone)
    return PatientResponse.model_validate(patient) if patient else None


@router.post(
    "",
    response_model=PatientResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Patient already exists"}},
)
async def create_patient(
    data: PatientCreate,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[PatientService, Depends(get_patient_service)],
) -> PatientResponse:
    logger.info(
        "Creating patient",
        extra={"user_id": str(current_user.user_id), "org_id": str(current_user.organization_id)},
    )
    patient = await service.create(current_user.organization_id, data)
    return PatientResponse.model_validate(patient)


@router.get(
    "/{patient_id}",
    response_model=PatientDetail,
    responses={404: {"model": ErrorResponse, "description": "Patient not found"}},
)
async def get_patient(
    patient_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[PatientService, Depends(get_patient_service)],
) -> PatientDetail:
    return await service.get_by_id(current_user.organization_id, patient_id)


@router.patch(
    "/{patient_id}",
    response_model=PatientResponse,
    responses={404: {"model": ErrorResponse, "description": "Patient not found"}},
)
async def update_patient(
    patient_id: UUID,
    data: PatientUpdate,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[PatientService, Depends(get_patient_service)],
) -> PatientResponse:
    patient = await service.update(current_user.organization_id, patient_id, data)
    return PatientResponse.model_validate(patient)
