"""
Data models for the LLM gateway and campaign content generation.
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class LLMProvider(str, Enum):
    """Supported chat-completion APIs."""

    OPENAI = "openai"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    role: MessageRole
    content: str

    model_config = {"frozen": True}


class ChatRequest(BaseModel):
    """Request for chat completion."""

    messages: list[ChatMessage]
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    json_response: bool = False
    correlation_id: str = Field(default_factory=lambda: str(uuid4()))


class ChatResponse(BaseModel):
    content: str
    model: str
    provider: LLMProvider
    usage: dict[str, int] = Field(default_factory=dict)
    correlation_id: str
    latency_ms: float


class CampaignContext(BaseModel):
    name: str | None = None
    description: str | None = None
    type: str | None = None


class EnhancedCampaignContent(BaseModel):
    """Result of enhancing a campaign prompt and voicemail message."""

    new_prompt: str
    new_voicemail_message: str = ""
    suggested_run_name: str = Field(default="", max_length=50)
    summary: str = ""
    ai_generated: bool = True


class GenerateContentRequest(BaseModel):
    campaign_id: UUID
    natural_language_input: str = Field(..., min_length=5, max_length=5000)
    base_prompt: str | None = Field(default=None, min_length=10)
    base_voicemail_message: str | None = None


class GenerateContentResponse(EnhancedCampaignContent):
    variation_id: UUID
    campaign_id: UUID


class LLMError(Exception):
    """Base exception for LLM gateway errors."""

    def __init__(
        self,
        message: str,
        correlation_id: str | None = None,
        provider: LLMProvider | None = None,
        original_error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.provider = provider
        self.original_error = original_error
        self.details = details or {}


class LLMTimeoutError(LLMError):
    """Timeout error for LLM requests."""


class LLMRateLimitError(LLMError):
    """Rate limit error for LLM requests."""

    def __init__(self, message: str, retry_after: float | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    """Authentication error for LLM requests."""


class LLMProviderError(LLMError):
    """Generic provider error for LLM requests."""
