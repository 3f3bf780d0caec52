"""
Authentication dependency for identity-provider session tokens.

The identity provider issues a bearer JWT whose ``sub`` claim is its user id
and whose ``org_id`` claim is the active organization. Both are resolved to
local rows kept in sync by the identity webhook.
"""

from typing import Annotated, Any
from uuid import UUID

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.config import Settings, get_settings
from rivvi.organizations.models import Organization, User
from rivvi.shared.database import get_db_session
from rivvi.shared.exceptions import UnauthorizedError
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Authenticated caller and their active organization."""

    model_config = ConfigDict(frozen=True)

    user_id: UUID = Field(..., description="Local user ID")
    clerk_id: str = Field(..., description="Identity-provider user ID")
    email: str
    role: str = Field(default="member", description="Role within the organization")
    organization_id: UUID | None = Field(default=None, description="Active organization")
    is_super_admin: bool = False


class JWTTokenValidator:
    """Validate session tokens with the configured key and algorithm."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def validate_access_token(self, token: str) -> dict[str, Any]:
        options: dict[str, Any] = {"require": ["sub", "exp"]}
        if not self._settings.jwt_audience:
            options["verify_aud"] = False
        try:
            return jwt.decode(
                token,
                self._settings.jwt_secret_key,
                algorithms=[self._settings.jwt_algorithm],
                audience=self._settings.jwt_audience,
                leeway=self._settings.jwt_leeway_seconds,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token has expired", {"reason": "expired"})
        except jwt.InvalidTokenError as e:
            raise UnauthorizedError("Invalid token", {"error": str(e)})


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CurrentUser:
    """Resolve the bearer token to the local user and active organization."""
    if credentials is None:
        logger.warning(
            "Missing authentication credentials",
            extra={
                "endpoint": str(request.url.path),
                "method": request.method,
                "client_ip": request.client.host if request.client else "unknown",
            },
        )
        raise UnauthorizedError()

    try:
        payload = JWTTokenValidator(settings).validate_access_token(credentials.credentials)
    except UnauthorizedError as e:
        logger.warning(
            "Invalid token",
            extra={
                "endpoint": str(request.url.path),
                "method": request.method,
                "error": e.message,
            },
        )
        raise

    clerk_user_id = payload["sub"]
    user = (
        await session.execute(select(User).where(User.clerk_id == clerk_user_id))
    ).scalar_one_or_none()
    if user is None:
        logger.warning("Token subject has no local user", extra={"clerk_user_id": clerk_user_id})
        raise UnauthorizedError("User not found")

    organization: Organization | None = None
    clerk_org_id = payload.get("org_id")
    if clerk_org_id:
        organization = (
            await session.execute(
                select(Organization).where(Organization.clerk_id == clerk_org_id)
            )
        ).scalar_one_or_none()

    return CurrentUser(
        user_id=user.id,
        clerk_id=user.clerk_id,
        email=user.email,
        role=user.role,
        organization_id=organization.id if organization else None,
        is_super_admin=bool(organization and organization.is_super_admin),
    )
