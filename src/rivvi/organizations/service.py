"""
Organization service.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.auth.middleware import CurrentUser
from rivvi.organizations.models import Organization, User
from rivvi.organizations.office_hours import normalize_office_hours
from rivvi.organizations.schemas import OrganizationCreate, OrganizationUpdate
from rivvi.shared.exceptions import ConflictError, ForbiddenError, NotFoundError
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


class OrganizationService:
    """Service for organization and membership queries."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_current(self, user: CurrentUser) -> Organization:
        if user.organization_id is None:
            raise NotFoundError("No active organization")
        return await self.get_by_id(user.organization_id)

    async def get_by_id(self, organization_id: UUID) -> Organization:
        organization = await self._session.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError(
                f"Organization with ID {organization_id} not found",
                {"organization_id": str(organization_id)},
            )
        return organization

    async def get_all(
        self,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Organization], int]:
        conditions = []
        if search:
            conditions.append(Organization.name.ilike(f"%{search.strip()}%"))

        count_stmt = select(func.count(Organization.id)).where(*conditions)
        total = (await self._session.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Organization)
            .where(*conditions)
            .order_by(Organization.name)
            .offset(offset)
            .limit(limit)
        )
        organizations = (await self._session.execute(stmt)).scalars().all()
        return list(organizations), total

    async def create(self, data: OrganizationCreate) -> Organization:
        existing = await self._session.execute(
            select(Organization.id).where(Organization.clerk_id == data.clerk_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(
                "Organization with this identity-provider ID already exists",
                {"clerk_id": data.clerk_id},
            )

        office_hours = data.office_hours.model_dump() if data.office_hours else None
        organization = Organization(
            clerk_id=data.clerk_id,
            name=data.name,
            phone=data.phone,
            timezone=data.timezone,
            office_hours=normalize_office_hours(office_hours),
            concurrent_call_limit=data.concurrent_call_limit,
            is_super_admin=data.is_super_admin,
        )
        self._session.add(organization)
        await self._session.flush()
        await self._session.refresh(organization)
        logger.info("Organization created", extra={"organization_id": str(organization.id)})
        return organization

    async def update(
        self,
        organization_id: UUID,
        data: OrganizationUpdate,
        user: CurrentUser,
    ) -> Organization:
        if not user.is_super_admin and user.organization_id != organization_id:
            raise ForbiddenError("You can only update your own organization")

        organization = await self.get_by_id(organization_id)
        update_data = data.model_dump(exclude_unset=True)
        if "office_hours" in update_data:
            update_data["office_hours"] = normalize_office_hours(update_data["office_hours"])

        for field, value in update_data.items():
            setattr(organization, field, value)

        await self._session.flush()
        await self._session.refresh(organization)
        logger.info(
            "Organization updated",
            extra={
                "organization_id": str(organization_id),
                "user_id": str(user.user_id),
                "fields": sorted(update_data),
            },
        )
        return organization

    async def get_members(
        self,
        user: CurrentUser,
        organization_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[User], int]:
        target = organization_id or user.organization_id
        if target is None:
            raise NotFoundError("No active organization")
        if target != user.organization_id and not user.is_super_admin:
            raise ForbiddenError("You can only list members of your own organization")

        count_stmt = select(func.count(User.id)).where(User.org_id == target)
        total = (await self._session.execute(count_stmt)).scalar() or 0
        stmt = (
            select(User)
            .where(User.org_id == target)
            .order_by(User.email)
            .offset(offset)
            .limit(limit)
        )
        members = (await self._session.execute(stmt)).scalars().all()
        return list(members), total
