"""
Unit tests for the OpenAI-compatible LLM gateway.

HTTP traffic goes through ``httpx.MockTransport``; no network access.
"""

import json
from collections.abc import Callable

import httpx
import pytest

from rivvi.ai.config import LLMConfig
from rivvi.ai.models import (
    ChatMessage,
    ChatRequest,
    LLMAuthenticationError,
    LLMProvider,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
    MessageRole,
)
from rivvi.ai.openai_adapter import OpenAIAdapter

BASE_URL = "https://llm.test/v1"


def completion(content: str = '{"new_prompt": "Hello there, friend."}') -> dict:
    return {
        "id": "chatcmpl-1",
        "model": "gpt-4.1-mini-2025-04-14",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 40, "total_tokens": 160, "details": {"cached": 0}},
    }


def make_adapter(
    handler: Callable[[httpx.Request], httpx.Response],
    api_key: str = "sk-test",
) -> OpenAIAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return OpenAIAdapter(LLMConfig(api_key=api_key, base_url=BASE_URL), http_client=client)


def chat_request(**kwargs) -> ChatRequest:
    return ChatRequest(
        messages=[
            ChatMessage(role=MessageRole.SYSTEM, content="You enhance prompts."),
            ChatMessage(role=MessageRole.USER, content="Make it friendlier."),
        ],
        **kwargs,
    )


class TestChatModels:
    def test_message_is_frozen(self) -> None:
        msg = ChatMessage(role=MessageRole.USER, content="Hello")
        with pytest.raises(Exception):
            msg.content = "Changed"  # type: ignore[misc]

    def test_request_gets_correlation_id(self) -> None:
        assert chat_request().correlation_id != chat_request().correlation_id


class TestOpenAIAdapter:
    @pytest.mark.asyncio
    async def test_successful_completion(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=completion())

        adapter = make_adapter(handler)

        response = await adapter.chat_completion(chat_request(json_response=True))

        assert response.content == '{"new_prompt": "Hello there, friend."}'
        assert response.model == "gpt-4.1-mini-2025-04-14"
        assert response.provider == LLMProvider.OPENAI
        assert response.usage == {"prompt_tokens": 120, "completion_tokens": 40, "total_tokens": 160}

        sent = captured[0]
        assert sent.url.path == "/v1/chat/completions"
        assert sent.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(sent.content)
        assert body["model"] == "gpt-4.1-mini"
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 4000
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][0] == {"role": "system", "content": "You enhance prompts."}

    @pytest.mark.asyncio
    async def test_request_overrides_config(self) -> None:
        captured: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(json.loads(request.content))
            return httpx.Response(200, json=completion("plain text"))

        adapter = make_adapter(handler)

        await adapter.chat_completion(chat_request(model="gpt-4o", temperature=0.0, max_tokens=256))

        assert captured[0]["model"] == "gpt-4o"
        assert captured[0]["temperature"] == 0.0
        assert captured[0]["max_tokens"] == 256
        assert "response_format" not in captured[0]

    @pytest.mark.asyncio
    async def test_missing_api_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        adapter = make_adapter(handler, api_key="")

        with pytest.raises(LLMAuthenticationError, match="not configured"):
            await adapter.chat_completion(chat_request())

    @pytest.mark.asyncio
    async def test_unauthorized(self) -> None:
        adapter = make_adapter(lambda request: httpx.Response(401, json={"error": "bad key"}))

        with pytest.raises(LLMAuthenticationError):
            await adapter.chat_completion(chat_request())

    @pytest.mark.asyncio
    async def test_rate_limited(self) -> None:
        adapter = make_adapter(lambda request: httpx.Response(429, headers={"retry-after": "7"}))

        with pytest.raises(LLMRateLimitError) as exc_info:
            await adapter.chat_completion(chat_request())

        assert exc_info.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        adapter = make_adapter(lambda request: httpx.Response(500, text="upstream exploded"))

        with pytest.raises(LLMProviderError) as exc_info:
            await adapter.chat_completion(chat_request())

        assert exc_info.value.message == "LLM error 500"
        assert exc_info.value.details == {"response": "upstream exploded"}

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        adapter = make_adapter(handler)

        with pytest.raises(LLMTimeoutError) as exc_info:
            await adapter.chat_completion(chat_request())

        assert isinstance(exc_info.value.original_error, httpx.ReadTimeout)

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        adapter = make_adapter(handler)

        with pytest.raises(LLMProviderError, match="HTTP error"):
            await adapter.chat_completion(chat_request())

    @pytest.mark.asyncio
    async def test_malformed_response(self) -> None:
        adapter = make_adapter(lambda request: httpx.Response(200, json={"choices": []}))

        with pytest.raises(LLMProviderError, match="Malformed"):
            await adapter.chat_completion(chat_request())
