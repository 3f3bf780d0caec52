"""Tests for the realtime event publisher."""

import hashlib
import json
from uuid import uuid4

import httpx
import pytest

from rivvi.realtime.config import RealtimeConfig
from rivvi.realtime.publisher import (
    RealtimeEvent,
    RealtimePublisher,
    org_channel,
    run_channel,
    sign_request,
)


@pytest.fixture
def realtime_config() -> RealtimeConfig:
    return RealtimeConfig(app_id="12345", key="pub_key", secret="pub_secret", cluster="us2")


def make_publisher(config: RealtimeConfig, handler) -> RealtimePublisher:
    client = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
    return RealtimePublisher(config=config, http_client=client)


class TestSignRequest:
    def test_signature_is_stable_for_param_order(self) -> None:
        a = sign_request("secret", "POST", "/apps/1/events", {"b": "2", "a": "1"})
        b = sign_request("secret", "POST", "/apps/1/events", {"a": "1", "b": "2"})

        assert a == b
        assert len(a) == 64

    def test_signature_depends_on_secret(self) -> None:
        params = {"auth_key": "k"}

        assert sign_request("one", "POST", "/p", params) != sign_request("two", "POST", "/p", params)


class TestTrigger:
    @pytest.mark.asyncio
    async def test_signed_request(self, realtime_config: RealtimeConfig) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        publisher = make_publisher(realtime_config, handler)
        accepted = await publisher.trigger("org-1", RealtimeEvent.RUN_UPDATED, {"status": "running"})

        assert accepted is True
        request = seen[0]
        assert request.url.path == "/apps/12345/events"
        params = dict(request.url.params)
        signature = params.pop("auth_signature")
        assert params["auth_key"] == "pub_key"
        assert params["body_md5"] == hashlib.md5(request.content).hexdigest()
        assert signature == sign_request("pub_secret", "POST", "/apps/12345/events", params)

        body = json.loads(request.content)
        assert body["name"] == "run-updated"
        assert body["channels"] == ["org-1"]
        assert json.loads(body["data"]) == {"status": "running"}

    @pytest.mark.asyncio
    async def test_disabled_publisher_is_noop(self) -> None:
        calls: list[httpx.Request] = []
        config = RealtimeConfig(app_id="", key="", secret="")
        publisher = make_publisher(config, lambda request: calls.append(request) or httpx.Response(200))

        assert await publisher.trigger("org-1", "run-updated", {}) is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_rejected_request_returns_false(self, realtime_config: RealtimeConfig) -> None:
        publisher = make_publisher(realtime_config, lambda request: httpx.Response(401, text="bad signature"))

        assert await publisher.trigger("org-1", "run-updated", {}) is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self, realtime_config: RealtimeConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        publisher = make_publisher(realtime_config, handler)

        assert await publisher.trigger("org-1", "run-updated", {}) is False


class TestPublishHelpers:
    @pytest.mark.asyncio
    async def test_call_completed_goes_to_campaign_and_run(self, realtime_config: RealtimeConfig) -> None:
        channels: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            channels.extend(json.loads(request.content)["channels"])
            return httpx.Response(200, json={})

        campaign_id, run_id = uuid4(), uuid4()
        publisher = make_publisher(realtime_config, handler)
        await publisher.publish_call_completed(campaign_id, run_id, {"call_id": "c1"})

        assert channels == [f"campaign-{campaign_id}", run_channel(run_id)]

    @pytest.mark.asyncio
    async def test_run_updated_payload(self, realtime_config: RealtimeConfig) -> None:
        payloads: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={})

        org_id, run_id = uuid4(), uuid4()
        publisher = make_publisher(realtime_config, handler)
        await publisher.publish_run_updated(org_id, run_id, "running", {"calls": 1})

        assert payloads[0]["channels"] == [org_channel(org_id)]
        data = json.loads(payloads[0]["data"])
        assert data["run_id"] == str(run_id)
        assert data["status"] == "running"
        assert data["metadata"] == {"calls": 1}
