"""
Tests for identity-provider webhook verification and user/organization sync.
"""

import json
import time
from typing import Any

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.config import Settings, get_settings
from rivvi.identity.handler import IdentityEventHandler, primary_email
from rivvi.identity.signature import WebhookVerificationError, sign_payload, verify_webhook
from rivvi.organizations.models import Organization, User

from conftest import TEST_WEBHOOK_SECRET


def signed_headers(body: str, message_id: str = "msg_1", timestamp: int | None = None) -> dict[str, str]:
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return {
        "svix-id": message_id,
        "svix-timestamp": ts,
        "svix-signature": sign_payload(TEST_WEBHOOK_SECRET, message_id, ts, body),
        "Content-Type": "application/json",
    }


def user_data(clerk_id: str = "user_new", email: str = "new@clinic.test", **extra: Any) -> dict[str, Any]:
    return {
        "id": clerk_id,
        "first_name": "Riley",
        "last_name": "Park",
        "primary_email_address_id": "idn_2",
        "email_addresses": [
            {"id": "idn_1", "email_address": "old@clinic.test"},
            {"id": "idn_2", "email_address": email},
        ],
        **extra,
    }


async def user_by_clerk_id(session: AsyncSession, clerk_id: str) -> User | None:
    return (await session.execute(select(User).where(User.clerk_id == clerk_id))).scalar_one_or_none()


# =============================================================================
# Signatures
# =============================================================================


class TestVerifyWebhook:
    def test_valid_signature(self) -> None:
        body = '{"type":"user.created"}'
        signature = sign_payload(TEST_WEBHOOK_SECRET, "msg_1", "1700000000", body)

        verify_webhook(TEST_WEBHOOK_SECRET, "msg_1", "1700000000", signature, body, now=1700000010)

    def test_any_listed_signature_matches(self) -> None:
        body = b"{}"
        good = sign_payload(TEST_WEBHOOK_SECRET, "msg_1", "1700000000", body)

        verify_webhook(
            TEST_WEBHOOK_SECRET, "msg_1", "1700000000", f"v1,bogus {good}", body, now=1700000000
        )

    def test_tampered_body(self) -> None:
        signature = sign_payload(TEST_WEBHOOK_SECRET, "msg_1", "1700000000", "{}")

        with pytest.raises(WebhookVerificationError, match="No matching signature"):
            verify_webhook(TEST_WEBHOOK_SECRET, "msg_1", "1700000000", signature, '{"x":1}', now=1700000000)

    def test_stale_timestamp(self) -> None:
        signature = sign_payload(TEST_WEBHOOK_SECRET, "msg_1", "1700000000", "{}")

        with pytest.raises(WebhookVerificationError, match="tolerance"):
            verify_webhook(TEST_WEBHOOK_SECRET, "msg_1", "1700000000", signature, "{}", now=1700000301)

    def test_malformed_timestamp(self) -> None:
        with pytest.raises(WebhookVerificationError, match="timestamp"):
            verify_webhook(TEST_WEBHOOK_SECRET, "msg_1", "yesterday", "v1,abc", "{}")


class TestPrimaryEmail:
    def test_primary_address_wins(self) -> None:
        assert primary_email(user_data()) == "new@clinic.test"

    def test_falls_back_to_first(self) -> None:
        assert primary_email({"email_addresses": [{"id": "a", "email_address": "a@x.test"}]}) == "a@x.test"

    def test_no_addresses(self) -> None:
        assert primary_email({}) is None


# =============================================================================
# Event handling
# =============================================================================


class TestIdentityEventHandler:
    @pytest.mark.asyncio
    async def test_user_created(self, db_session: AsyncSession) -> None:
        handled = await IdentityEventHandler(db_session).handle_event("user.created", user_data())

        user = await user_by_clerk_id(db_session, "user_new")
        assert handled is True
        assert user.email == "new@clinic.test"
        assert user.first_name == "Riley"
        assert user.org_id is None

    @pytest.mark.asyncio
    async def test_user_created_without_email_is_skipped(self, db_session: AsyncSession) -> None:
        await IdentityEventHandler(db_session).handle_event("user.created", {"id": "user_x", "email_addresses": []})

        assert await user_by_clerk_id(db_session, "user_x") is None

    @pytest.mark.asyncio
    async def test_user_updated(self, db_session: AsyncSession, user: User) -> None:
        data = user_data(clerk_id=user.clerk_id, email="renamed@clinic.test", first_name="Sam")

        await IdentityEventHandler(db_session).handle_event("user.updated", data)

        assert user.email == "renamed@clinic.test"
        assert user.first_name == "Sam"

    @pytest.mark.asyncio
    async def test_user_deleted(self, db_session: AsyncSession, user: User) -> None:
        await IdentityEventHandler(db_session).handle_event("user.deleted", {"id": user.clerk_id})

        assert await user_by_clerk_id(db_session, user.clerk_id) is None

    @pytest.mark.asyncio
    async def test_organization_created_with_defaults(self, db_session: AsyncSession) -> None:
        await IdentityEventHandler(db_session).handle_event(
            "organization.created", {"id": "org_new", "name": "New Clinic"}
        )

        org = (
            await db_session.execute(select(Organization).where(Organization.clerk_id == "org_new"))
        ).scalar_one()
        assert org.name == "New Clinic"
        assert org.timezone == "America/New_York"
        assert org.concurrent_call_limit == 20
        assert org.is_super_admin is False

    @pytest.mark.asyncio
    async def test_organization_updated(self, db_session: AsyncSession, organization: Organization) -> None:
        await IdentityEventHandler(db_session).handle_event(
            "organization.updated", {"id": organization.clerk_id, "name": "Renamed Clinic"}
        )

        assert organization.name == "Renamed Clinic"

    @pytest.mark.asyncio
    async def test_membership_created_maps_admin_role(
        self, db_session: AsyncSession, organization: Organization
    ) -> None:
        handler = IdentityEventHandler(db_session)
        await handler.handle_event("user.created", user_data())

        await handler.handle_event(
            "organizationMembership.created",
            {
                "id": "mem_1",
                "role": "org:admin",
                "organization": {"id": organization.clerk_id},
                "public_user_data": {"user_id": "user_new"},
            },
        )

        user = await user_by_clerk_id(db_session, "user_new")
        assert user.org_id == organization.id
        assert user.role == "admin"

    @pytest.mark.asyncio
    async def test_membership_deleted_resets_user(
        self, db_session: AsyncSession, organization: Organization, user: User
    ) -> None:
        await IdentityEventHandler(db_session).handle_event(
            "organizationMembership.deleted",
            {
                "organization": {"id": organization.clerk_id},
                "public_user_data": {"user_id": user.clerk_id},
            },
        )

        assert user.org_id is None
        assert user.role == "member"

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self, db_session: AsyncSession) -> None:
        assert await IdentityEventHandler(db_session).handle_event("session.created", {}) is False


# =============================================================================
# Router
# =============================================================================


class TestIdentityRouter:
    @pytest.mark.asyncio
    async def test_valid_event_creates_user(self, async_client: AsyncClient, db_session: AsyncSession) -> None:
        body = json.dumps({"type": "user.created", "data": user_data()})

        response = await async_client.post("/api/webhooks/clerk", content=body, headers=signed_headers(body))

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert (await user_by_clerk_id(db_session, "user_new")) is not None

    @pytest.mark.asyncio
    async def test_missing_headers(self, async_client: AsyncClient) -> None:
        response = await async_client.post("/api/webhooks/clerk", json={"type": "user.created"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required Svix headers"}

    @pytest.mark.asyncio
    async def test_bad_signature(self, async_client: AsyncClient) -> None:
        body = json.dumps({"type": "user.created", "data": user_data()})
        headers = signed_headers(body)
        headers["svix-signature"] = "v1,not-the-signature"

        response = await async_client.post("/api/webhooks/clerk", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid webhook signature"}

    @pytest.mark.asyncio
    async def test_missing_secret(self, app, async_client: AsyncClient) -> None:
        app.dependency_overrides[get_settings] = lambda: Settings(app_env="dev", clerk_webhook_secret="")
        body = json.dumps({"type": "user.created", "data": user_data()})

        response = await async_client.post("/api/webhooks/clerk", content=body, headers=signed_headers(body))

        assert response.status_code == 500
        assert response.json() == {"error": "Missing webhook secret"}
