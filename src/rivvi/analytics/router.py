"""
Analytics API router.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.analytics.schemas import (
    AdminDashboardStats,
    CampaignAnalytics,
    DashboardStats,
    RunAnalytics,
    UpcomingRun,
)
from rivvi.analytics.service import AnalyticsService
from rivvi.auth.middleware import CurrentUser
from rivvi.auth.rbac import require_org_member, require_super_admin
from rivvi.shared.database import get_db_session
from rivvi.shared.schemas import ErrorResponse

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def get_analytics_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> AnalyticsService:
    return AnalyticsService(session)


@router.get("/dashboard", response_model=DashboardStats)
async def get_dashboard(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[AnalyticsService, Depends(get_analytics_service)],
) -> DashboardStats:
    return await service.get_dashboard_stats(current_user.organization_id)


@router.get(
    "/campaigns/{campaign_id}",
    response_model=CampaignAnalytics,
    responses={404: {"model": ErrorResponse, "description": "Campaign not found"}},
)
async def get_campaign_analytics(
    campaign_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[AnalyticsService, Depends(get_analytics_service)],
) -> CampaignAnalytics:
    return await service.get_campaign_analytics(current_user.organization_id, campaign_id)


@router.get(
    "/runs/{run_id}",
    response_model=RunAnalytics,
    responses={404: {"model": ErrorResponse, "description": "Run not found"}},
)
async def get_run_analytics(
    run_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[AnalyticsService, Depends(get_analytics_service)],
) -> RunAnalytics:
    return await service.get_run_analytics(current_user.organization_id, run_id)


@router.get("/upcoming-runs", response_model=list[UpcomingRun])
async def get_upcoming_runs(
    current_user: Annotated[CurrentUser, Depends(require_org_member)],
    service: Annotated[AnalyticsService, Depends(get_analytics_service)],
    limit: Annotated[int, Query(ge=1, le=50)] = 5,
) -> list[UpcomingRun]:
    return await service.get_upcoming_runs(current_user.organization_id, limit)


@router.get("/admin", response_model=AdminDashboardStats)
async def get_admin_dashboard(
    current_user: Annotated[CurrentUser, Depends(require_super_admin)],
    service: Annotated[AnalyticsService, Depends(get_analytics_service)],
) -> AdminDashboardStats:
    return await service.get_admin_dashboard()
