"""
LLM gateway over an OpenAI-compatible chat completions API.
"""

import time
from abc import ABC, abstractmethod
from functools import lru_cache

import httpx

from rivvi.ai.config import LLMConfig, get_llm_config
from rivvi.ai.models import (
    ChatRequest,
    ChatResponse,
    LLMAuthenticationError,
    LLMProvider,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


class LLMGateway(ABC):
    """Abstract chat-completion client."""

    @property
    @abstractmethod
    def provider(self) -> LLMProvider: ...

    @abstractmethod
    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Run one chat completion.

        Raises:
            LLMError: On timeouts, authentication, rate limiting or any other
                provider failure.
        """

    async def close(self) -> None:
        return None


class OpenAIAdapter(LLMGateway):
    """OpenAI chat completions over httpx (bearer API key)."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_llm_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.OPENAI

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/"),
                timeout=httpx.Timeout(self._config.timeout_seconds),
            )
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        if not self._config.api_key:
            raise LLMAuthenticationError(
                "LLM API key is not configured",
                correlation_id=request.correlation_id,
                provider=self.provider,
            )

        model = request.model or self._config.model
        payload: dict = {
            "model": model,
            "messages": [{"role": m.role.value, "content": m.content} for m in request.messages],
            "temperature": request.temperature if request.temperature is not None else self._config.temperature,
            "max_tokens": request.max_tokens or self._config.max_tokens,
        }
        if request.json_response:
            payload["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }
        started = time.monotonic()
        try:
            response = await self._get_client().post("/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(
                "LLM request timed out",
                correlation_id=request.correlation_id,
                provider=self.provider,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise LLMProviderError(
                f"HTTP error: {e!s}",
                correlation_id=request.correlation_id,
                provider=self.provider,
                original_error=e,
            ) from e
        latency_ms = (time.monotonic() - started) * 1000

        if response.status_code in (401, 403):
            raise LLMAuthenticationError(
                f"LLM authentication failed ({response.status_code})",
                correlation_id=request.correlation_id,
                provider=self.provider,
            )
        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise LLMRateLimitError(
                "LLM rate limit exceeded",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                correlation_id=request.correlation_id,
                provider=self.provider,
            )
        if response.status_code != 200:
            raise LLMProviderError(
                f"LLM error {response.status_code}",
                correlation_id=request.correlation_id,
                provider=self.provider,
                details={"response": response.text[:500]},
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMProviderError(
                "Malformed LLM response",
                correlation_id=request.correlation_id,
                provider=self.provider,
                original_error=e,
            ) from e

        logger.info(
            "LLM completion finished",
            extra={
                "correlation_id": request.correlation_id,
                "model": model,
                "latency_ms": round(latency_ms, 1),
            },
        )
        return ChatResponse(
            content=content,
            model=data.get("model", model),
            provider=self.provider,
            usage={k: v for k, v in (data.get("usage") or {}).items() if isinstance(v, int)},
            correlation_id=request.correlation_id,
            latency_ms=latency_ms,
        )


@lru_cache(maxsize=1)
def get_llm_gateway() -> LLMGateway:
    """Create and cache the configured LLM gateway; also a FastAPI dependency."""
    config = get_llm_config()
    logger.info("LLM gateway configured", extra={"provider": config.provider.value, "model": config.model})
    if config.provider == LLMProvider.OPENAI:
        return OpenAIAdapter(config)
    raise ValueError(f"Unsupported LLM provider: {config.provider}")
