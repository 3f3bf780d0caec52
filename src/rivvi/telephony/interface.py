"""
Voice provider interface definition.

The provider hosts the conversational agents (agent + LLM prompt) and places
phone calls; this service drives it over REST and receives its webhooks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PhoneCallRequest:
    """Request to place an outbound phone call."""

    to_number: str
    from_number: str
    agent_id: str
    variables: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PhoneCallResponse:
    """Provider acknowledgement of a placed call."""

    call_id: str
    status: str
    raw_response: dict[str, Any] = field(default_factory=dict)


class TelephonyProviderError(Exception):
    """Base exception for voice provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CallInitiationError(TelephonyProviderError):
    """Error placing a phone call."""


class AgentConfigurationError(TelephonyProviderError):
    """Agent is not usable (e.g. its response engine is not a provider-hosted LLM)."""


class TelephonyProvider(ABC):
    """Abstract interface for voice providers."""

    @abstractmethod
    async def create_phone_call(self, request: PhoneCallRequest) -> PhoneCallResponse:
        """Place an outbound call with the given agent and dynamic variables."""
        ...

    @abstractmethod
    async def list_agents(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def get_agent(self, agent_id: str) -> dict[str, Any]: ...

    @abstractmethod
    async def update_agent(self, agent_id: str, data: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    async def get_llm(self, llm_id: str) -> dict[str, Any]: ...

    @abstractmethod
    async def update_llm(self, llm_id: str, data: dict[str, Any]) -> dict[str, Any]: ...

    async def get_agent_complete(self, agent_id: str) -> dict[str, Any]:
        """Fetch an agent together with the LLM that backs it.

        Raises:
            AgentConfigurationError: If the agent does not use a provider-hosted LLM.
        """
        agent = await self.get_agent(agent_id)
        engine = agent.get("response_engine") or {}
        if engine.get("type") != "retell-llm" or not engine.get("llm_id"):
            raise AgentConfigurationError(
                f"Agent {agent_id} does not use a retell-llm response engine",
                error_code="UNSUPPORTED_RESPONSE_ENGINE",
                provider_response=agent,
            )
        llm = await self.get_llm(engine["llm_id"])
        return {
            "agent": agent,
            "llm": llm,
            "combined": {
                "agent_id": agent.get("agent_id", agent_id),
                "agent_name": agent.get("agent_name"),
                "voice_id": agent.get("voice_id"),
                "llm_id": engine["llm_id"],
                "general_prompt": llm.get("general_prompt"),
                "begin_message": llm.get("begin_message"),
                "voicemail_message": agent.get("voicemail_message"),
                "webhook_url": agent.get("webhook_url"),
                "inbound_dynamic_variables_webhook_url": llm.get(
                    "inbound_dynamic_variables_webhook_url"
                ),
            },
        }

    async def update_agent_webhooks(
        self,
        agent_id: str,
        org_id: str,
        campaign_id: str,
        base_url: str,
    ) -> dict[str, str]:
        """Point the agent's post-call and inbound webhooks at this service."""
        urls = build_webhook_urls(base_url, org_id, campaign_id)
        complete = await self.get_agent_complete(agent_id)
        await self.update_agent(agent_id, {"webhook_url": urls["post_call_webhook_url"]})
        await self.update_llm(
            complete["combined"]["llm_id"],
            {"inbound_dynamic_variables_webhook_url": urls["inbound_webhook_url"]},
        )
        return urls

    async def close(self) -> None:
        """Release network resources."""


def build_webhook_urls(base_url: str, org_id: str, campaign_id: str) -> dict[str, str]:
    base = base_url.rstrip("/")
    return {
        "post_call_webhook_url": f"{base}/api/webhooks/retell/{org_id}/post-call/{campaign_id}",
        "inbound_webhook_url": f"{base}/api/webhooks/retell/{org_id}/inbound",
    }
