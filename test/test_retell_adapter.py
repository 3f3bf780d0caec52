"""Tests for the Retell voice provider adapter.

Requests go through ``httpx.MockTransport`` so payloads and error handling
are checked without network access.
"""

import json
from collections.abc import Callable

import httpx
import pytest

from rivvi.telephony.config import ProviderType, TelephonyConfig
from rivvi.telephony.interface import CallInitiationError, PhoneCallRequest, TelephonyProviderError
from rivvi.telephony.retell_adapter import RetellProvider

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def retell_config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type=ProviderType.RETELL,
        api_key="key_test_123",
        base_url="https://api.retell.test",
    )


@pytest.fixture
def call_request() -> PhoneCallRequest:
    return PhoneCallRequest(
        to_number="+15551234567",
        from_number="+15550001111",
        agent_id="agent_test",
        variables={"first_name": "Jane", "is_minor": False, "visit_count": 2},
        metadata={"row_id": "row-1", "run_id": "run-1"},
    )


def make_provider(config: TelephonyConfig, handler: Handler) -> RetellProvider:
    client = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
    return RetellProvider(config=config, http_client=client)


class TestRetellCreatePhoneCall:
    @pytest.mark.asyncio
    async def test_create_phone_call_success(
        self, retell_config: TelephonyConfig, call_request: PhoneCallRequest
    ) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"call_id": "call_abc", "call_status": "registered"})

        provider = make_provider(retell_config, handler)
        response = await provider.create_phone_call(call_request)

        assert response.call_id == "call_abc"
        assert response.status == "registered"

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v2/create-phone-call"
        assert request.headers["Authorization"] == "Bearer key_test_123"
        body = json.loads(request.content)
        assert body["override_agent_id"] == "agent_test"
        assert body["metadata"] == {"row_id": "row-1", "run_id": "run-1"}
        assert body["retell_llm_dynamic_variables"] == {
            "first_name": "Jane",
            "is_minor": "FALSE",
            "visit_count": "2",
        }

    @pytest.mark.asyncio
    async def test_missing_call_id(self, retell_config: TelephonyConfig, call_request: PhoneCallRequest) -> None:
        provider = make_provider(retell_config, lambda request: httpx.Response(201, json={"call_status": "registered"}))

        with pytest.raises(CallInitiationError) as exc_info:
            await provider.create_phone_call(call_request)

        assert exc_info.value.error_code == "MISSING_CALL_ID"

    @pytest.mark.asyncio
    async def test_provider_error_message(
        self, retell_config: TelephonyConfig, call_request: PhoneCallRequest
    ) -> None:
        provider = make_provider(
            retell_config,
            lambda request: httpx.Response(400, json={"error_message": "Invalid from_number"}),
        )

        with pytest.raises(CallInitiationError) as exc_info:
            await provider.create_phone_call(call_request)

        assert exc_info.value.message == "Invalid from_number"
        assert exc_info.value.error_code == "400"
        assert exc_info.value.provider_response == {"error_message": "Invalid from_number"}

    @pytest.mark.asyncio
    async def test_network_error(self, retell_config: TelephonyConfig, call_request: PhoneCallRequest) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = make_provider(retell_config, handler)

        with pytest.raises(CallInitiationError) as exc_info:
            await provider.create_phone_call(call_request)

        assert exc_info.value.error_code == "HTTP_ERROR"


class TestRetellAgents:
    @pytest.mark.asyncio
    async def test_list_agents(self, retell_config: TelephonyConfig) -> None:
        provider = make_provider(
            retell_config,
            lambda request: httpx.Response(200, json=[{"agent_id": "agent_1"}, {"agent_id": "agent_2"}]),
        )

        agents = await provider.list_agents()

        assert [a["agent_id"] for a in agents] == ["agent_1", "agent_2"]

    @pytest.mark.asyncio
    async def test_get_agent_complete(self, retell_config: TelephonyConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/get-agent/agent_1":
                return httpx.Response(
                    200,
                    json={
                        "agent_id": "agent_1",
                        "agent_name": "Confirmations",
                        "response_engine": {"type": "retell-llm", "llm_id": "llm_1"},
                        "voicemail_message": "Please call back",
                    },
                )
            if request.url.path == "/get-retell-llm/llm_1":
                return httpx.Response(200, json={"llm_id": "llm_1", "general_prompt": "Be kind"})
            return httpx.Response(404, json={"message": "not found"})

        provider = make_provider(retell_config, handler)
        complete = await provider.get_agent_complete("agent_1")

        assert complete["combined"]["general_prompt"] == "Be kind"
        assert complete["combined"]["voicemail_message"] == "Please call back"

    @pytest.mark.asyncio
    async def test_update_llm_uses_patch(self, retell_config: TelephonyConfig) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"llm_id": "llm_1", "general_prompt": "New"})

        provider = make_provider(retell_config, handler)
        updated = await provider.update_llm("llm_1", {"general_prompt": "New"})

        assert updated["general_prompt"] == "New"
        assert seen[0].method == "PATCH"
        assert seen[0].url.path == "/update-retell-llm/llm_1"

    @pytest.mark.asyncio
    async def test_not_found(self, retell_config: TelephonyConfig) -> None:
        provider = make_provider(retell_config, lambda request: httpx.Response(404, json={"message": "Agent not found"}))

        with pytest.raises(TelephonyProviderError) as exc_info:
            await provider.get_agent("missing")

        assert exc_info.value.message == "Agent not found"
        assert exc_info.value.error_code == "404"
