"""
Role-based access control dependencies.

Roles are hierarchical: super_admin > admin > member. Members of a
super-admin organization act as super admins.
"""

from enum import Enum
from typing import Annotated

from fastapi import Depends, Request

from rivvi.auth.middleware import CurrentUser, get_current_user
from rivvi.shared.exceptions import ForbiddenError
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    """User roles with hierarchical ordering."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MEMBER = "member"

    @classmethod
    def from_string(cls, role_str: str | None) -> "Role":
        """Convert a stored role to a Role, treating unknown values as member."""
        try:
            return cls(role_str)
        except ValueError:
            return cls.MEMBER

    def has_permission(self, required_role: "Role") -> bool:
        hierarchy = {
            Role.SUPER_ADMIN: 3,
            Role.ADMIN: 2,
            Role.MEMBER: 1,
        }
        return hierarchy[self] >= hierarchy[required_role]


def effective_role(user: CurrentUser) -> Role:
    if user.is_super_admin:
        return Role.SUPER_ADMIN
    return Role.from_string(user.role)


class RBACChecker:
    """Dependency class for organization and role checks."""

    def __init__(self, minimum_role: Role, require_organization: bool = True) -> None:
        self.minimum_role = minimum_role
        self.require_organization = require_organization

    async def __call__(
        self,
        request: Request,
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        role = effective_role(current_user)

        if self.require_organization and current_user.organization_id is None:
            self._deny(request, current_user, role, "No active organization")
        if not role.has_permission(self.minimum_role):
            self._deny(
                request,
                current_user,
                role,
                f"Role '{self.minimum_role.value}' or higher required",
            )

        logger.debug(
            "Access granted",
            extra={
                "user_id": str(current_user.user_id),
                "endpoint": str(request.url.path),
                "method": request.method,
            },
        )
        return current_user

    def _deny(self, request: Request, user: CurrentUser, role: Role, message: str) -> None:
        logger.warning(
            "Access denied",
            extra={
                "user_id": str(user.user_id),
                "user_role": role.value,
                "required_role": self.minimum_role.value,
                "organization_id": str(user.organization_id) if user.organization_id else None,
                "endpoint": str(request.url.path),
                "method": request.method,
                "client_ip": request.client.host if request.client else "unknown",
            },
        )
        raise ForbiddenError(
            message,
            {"required_role": self.minimum_role.value, "current_role": role.value},
        )


require_org_member = RBACChecker(Role.MEMBER)
require_org_admin = RBACChecker(Role.ADMIN)
require_super_admin = RBACChecker(Role.SUPER_ADMIN)
