"""
Sync of users, organizations and memberships from identity-provider events.
"""

from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.auth.rbac import Role
from rivvi.organizations.models import (
    DEFAULT_CONCURRENT_CALL_LIMIT,
    DEFAULT_TIMEZONE,
    Organization,
    User,
)
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)

ADMIN_MEMBERSHIP_ROLES = {"org:admin", "admin"}


def primary_email(data: dict[str, Any]) -> str | None:
    addresses = data.get("email_addresses") or []
    if not addresses:
        return None
    primary_id = data.get("primary_email_address_id")
    for address in addresses:
        if address.get("id") == primary_id:
            return address.get("email_address")
    return addresses[0].get("email_address")


class IdentityEventHandler:
    """Applies identity-provider events to local users and organizations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "user.created": self.user_created,
            "user.updated": self.user_updated,
            "user.deleted": self.user_deleted,
            "organization.created": self.organization_created,
            "organization.updated": self.organization_updated,
            "organization.deleted": self.organization_deleted,
            "organizationMembership.created": self.membership_created,
            "organizationMembership.deleted": self.membership_deleted,
        }

    async def handle_event(self, event_type: str, data: dict[str, Any]) -> bool:
        """Dispatch one event.

        Returns:
            True if the event type is handled, False if it was ignored.
        """
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("Ignoring identity event", extra={"event_type": event_type})
            return False
        await handler(data)
        await self._session.flush()
        logger.info("Identity event processed", extra={"event_type": event_type, "clerk_id": data.get("id")})
        return True

    async def _user(self, clerk_id: str) -> User | None:
        stmt = select(User).where(User.clerk_id == clerk_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _organization(self, clerk_id: str) -> Organization | None:
        stmt = select(Organization).where(Organization.clerk_id == clerk_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def user_created(self, data: dict[str, Any]) -> None:
        clerk_id = data.get("id")
        email = primary_email(data)
        if not clerk_id or not email:
            return
        user = await self._user(clerk_id)
        if user is None:
            self._session.add(
                User(
                    clerk_id=clerk_id,
                    email=email,
                    first_name=data.get("first_name"),
                    last_name=data.get("last_name"),
                )
            )
            return
        user.email = email
        user.first_name = data.get("first_name")
        user.last_name = data.get("last_name")

    async def user_updated(self, data: dict[str, Any]) -> None:
        clerk_id = data.get("id")
        user = await self._user(clerk_id) if clerk_id else None
        if user is None:
            return
        email = primary_email(data)
        if email:
            user.email = email
        if "first_name" in data:
            user.first_name = data["first_name"]
        if "last_name" in data:
            user.last_name = data["last_name"]

    async def user_deleted(self, data: dict[str, Any]) -> None:
        clerk_id = data.get("id")
        user = await self._user(clerk_id) if clerk_id else None
        if user is not None:
            await self._session.delete(user)

    async def organization_created(self, data: dict[str, Any]) -> None:
        clerk_id, name = data.get("id"), data.get("name")
        if not clerk_id or not name:
            return
        org = await self._organization(clerk_id)
        if org is None:
            self._session.add(
                Organization(
                    clerk_id=clerk_id,
                    name=name,
                    timezone=DEFAULT_TIMEZONE,
                    concurrent_call_limit=DEFAULT_CONCURRENT_CALL_LIMIT,
                    is_super_admin=False,
                )
            )
            return
        org.name = name

    async def organization_updated(self, data: dict[str, Any]) -> None:
        clerk_id = data.get("id")
        org = await self._organization(clerk_id) if clerk_id else None
        if org is not None and data.get("name"):
            org.name = data["name"]

    async def organization_deleted(self, data: dict[str, Any]) -> None:
        clerk_id = data.get("id")
        org = await self._organization(clerk_id) if clerk_id else None
        if org is not None:
            await self._session.delete(org)

    async def _membership(self, data: dict[str, Any]) -> tuple[User | None, Organization | None]:
        org_clerk_id = (data.get("organization") or {}).get("id")
        user_clerk_id = (data.get("public_user_data") or {}).get("user_id")
        if not org_clerk_id or not user_clerk_id:
            return None, None
        return await self._user(user_clerk_id), await self._organization(org_clerk_id)

    async def membership_created(self, data: dict[str, Any]) -> None:
        user, org = await self._membership(data)
        if user is None or org is None:
            logger.warning("Membership for unknown user or organization", extra={"data_id": data.get("id")})
            return
        user.org_id = org.id
        user.role = (
            Role.ADMIN.value if data.get("role") in ADMIN_MEMBERSHIP_ROLES else Role.MEMBER.value
        )

    async def membership_deleted(self, data: dict[str, Any]) -> None:
        user, org = await self._membership(data)
        if user is None:
            return
        if org is None or user.org_id == org.id:
            user.org_id = None
            user.role = Role.MEMBER.value
