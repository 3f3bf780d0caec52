"""
Run API routers.

``campaign_runs_router`` lists and creates the runs of a campaign; ``router``
operates on a single run (upload, lifecycle, rows).
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.auth.middleware import CurrentUser
from rivvi.auth.rbac import require_org_member
from rivvi.realtime.publisher import RealtimePublisher, get_realtime_publisher
from rivvi.runs.models import RowStatus
from rivvi.runs.schemas import (
    FileUploadRequest,
    FileUploadResponse,
    RowsPage,
    RunCreate,
    RunResponse,
    RunSchedule,
)
from rivvi.runs.service import RunService
from rivvi.shared.database import get_db_session
from rivvi.shared.exceptions import BadRequestError
from rivvi.shared.logging import get_logger
from rivvi.shared.schemas import DEFAULT_LIMIT, MAX_LIMIT, ErrorResponse, Page
from rivvi.telephony.factory import get_telephony_provider
from rivvi.telephony.interface import TelephonyProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/runs", tags=["runs"])
campaign_runs_router = APIRouter(prefix="/api/campaigns/{campaign_id}/runs", tags=["runs"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def get_run_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    publisher: Annotated[RealtimePublisher, Depends(get_realtime_publisher)],
) -> RunService:
    return RunService(session, provider, publisher)


@campaign_runs_router.get("", response_model=Page[RunResponse])
async def list_runs(
    campaign_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> Page[RunResponse]:
    runs, total = await service.get_all(current_user.organization_id, campaign_id, limit, offset)
    return Page[RunResponse].build([RunResponse.model_validate(r) for r in runs], total, limit, offset)


@campaign_runs_router.post(
    "",
    response_model=RunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse, "description": "Campaign not found"}},
)
async def create_run(
    campaign_id: UUID,
    data: RunCreate,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
) -> RunResponse:
    run = await service.create(current_user.organization_id, campaign_id, data)
    return RunResponse.model_validate(run)


@router.get(
    "/{run_id}",
    response_model=RunResponse,
    responses={404: {"model": ErrorResponse, "description": "Run not found"}},
)
async def get_run(
    run_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
) -> RunResponse:
    return RunResponse.model_validate(await service.get_by_id(current_user.organization_id, run_id))


@router.post(
    "/{run_id}/upload",
    response_model=FileUploadResponse,
    responses={400: {"model": ErrorResponse, "description": "File could not be processed"}},
)
async def upload_run_file(
    run_id: UUID,
    data: FileUploadRequest,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
) -> FileUploadResponse:
    """Upload a patient list as CSV/TSV text or a ``data:`` base64 URL."""
    logger.info(
        "Run file upload",
        extra={"run_id": str(run_id), "user_id": str(current_user.user_id), "file_name": data.file_name},
    )
    return await service.upload_file(
        current_user.organization_id, run_id, data.file_content, data.file_name
    )


@router.post(
    "/{run_id}/upload-file",
    response_model=FileUploadResponse,
    responses={400: {"model": ErrorResponse, "description": "File could not be processed"}},
)
async def upload_run_file_multipart(
    run_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
    file: Annotated[UploadFile, File(description="CSV or TSV patient list")],
) -> FileUploadResponse:
    """Upload a patient list as a multipart file."""
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise BadRequestError("File is too large", {"max_bytes": MAX_UPLOAD_BYTES})
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise BadRequestError("File must be UTF-8 encoded text", {"file_name": file.filename})

    return await service.upload_file(
        current_user.organization_id, run_id, text, file.filename or "upload.csv"
    )


@router.post("/{run_id}/start", response_model=RunResponse)
async def start_run(
    run_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
) -> RunResponse:
    logger.info("Run start requested", extra={"run_id": str(run_id), "user_id": str(current_user.user_id)})
    return RunResponse.model_validate(await service.start(current_user.organization_id, run_id))


@router.post("/{run_id}/pause", response_model=RunResponse)
async def pause_run(
    run_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
) -> RunResponse:
    return RunResponse.model_validate(await service.pause(current_user.organization_id, run_id))


@router.post("/{run_id}/schedule", response_model=RunResponse)
async def schedule_run(
    run_id: UUID,
    data: RunSchedule,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
) -> RunResponse:
    run = await service.schedule(current_user.organization_id, run_id, data.scheduled_at)
    return RunResponse.model_validate(run)


@router.get("/{run_id}/rows", response_model=RowsPage)
async def get_run_rows(
    run_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[RunService, Depends(get_run_service)],
    status_filter: Annotated[RowStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> RowsPage:
    return await service.get_rows(current_user.organization_id, run_id, status_filter, limit, offset)
