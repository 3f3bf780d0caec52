"""
Campaign request workflow: organizations ask, super admins process.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.campaigns.models import CampaignRequest, CampaignRequestStatus
from rivvi.campaigns.schemas import CampaignRequestCreate
from rivvi.shared.exceptions import NotFoundError
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


class CampaignRequestService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def request_campaign(
        self,
        org_id: UUID,
        user_id: UUID,
        data: CampaignRequestCreate,
    ) -> CampaignRequest:
        request = CampaignRequest(
            org_id=org_id,
            requested_by=user_id,
            name=data.name,
            direction=data.direction,
            description=data.description,
            main_goal=data.main_goal,
            desired_analysis=data.desired_analysis,
            example_sheets=data.example_sheets,
            status=CampaignRequestStatus.PENDING,
        )
        self._session.add(request)
        await self._session.flush()
        await self._session.refresh(request)
        logger.info(
            "Campaign requested",
            extra={"request_id": str(request.id), "org_id": str(org_id), "user_id": str(user_id)},
        )
        return request

    async def _list(
        self,
        conditions: list,
        limit: int,
        offset: int,
    ) -> tuple[list[CampaignRequest], int]:
        total = (
            await self._session.execute(select(func.count(CampaignRequest.id)).where(*conditions))
        ).scalar() or 0
        stmt = (
            select(CampaignRequest)
            .where(*conditions)
            .order_by(CampaignRequest.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all()), total

    async def get_campaign_requests(
        self,
        org_id: UUID,
        status: CampaignRequestStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CampaignRequest], int]:
        conditions = [CampaignRequest.org_id == org_id]
        if status is not None:
            conditions.append(CampaignRequest.status == status)
        return await self._list(conditions, limit, offset)

    async def get_all_campaign_requests(
        self,
        status: CampaignRequestStatus | None = None,
        org_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CampaignRequest], int]:
        conditions = []
        if status is not None:
            conditions.append(CampaignRequest.status == status)
        if org_id is not None:
            conditions.append(CampaignRequest.org_id == org_id)
        return await self._list(conditions, limit, offset)

    async def process_campaign_request(
        self,
        request_id: UUID,
        status: CampaignRequestStatus,
        admin_notes: str | None = None,
        resulting_campaign_id: UUID | None = None,
    ) -> CampaignRequest:
        request = await self._session.get(CampaignRequest, request_id)
        if request is None:
            raise NotFoundError(
                f"Campaign request with ID {request_id} not found",
                {"request_id": str(request_id)},
            )

        previous = request.status
        request.status = status
        if admin_notes is not None:
            request.admin_notes = admin_notes
        if resulting_campaign_id is not None:
            request.resulting_campaign_id = resulting_campaign_id
        await self._session.flush()
        await self._session.refresh(request)

        logger.info(
            "Campaign request processed",
            extra={
                "request_id": str(request_id),
                "from_status": previous.value,
                "to_status": status.value,
            },
        )
        return request
