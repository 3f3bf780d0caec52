"""
In-memory voice provider for local development and tests.
"""

from typing import Any

from rivvi.telephony.interface import (
    CallInitiationError,
    PhoneCallRequest,
    PhoneCallResponse,
    TelephonyProvider,
    TelephonyProviderError,
)
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


class MockTelephonyProvider(TelephonyProvider):
    """Records placed calls and serves agents/LLMs from dictionaries."""

    def __init__(self) -> None:
        self._calls: list[PhoneCallRequest] = []
        self._next_call_id = 1
        self._should_fail = False
        self._fail_error = "Mock failure"
        self._fail_code = "MOCK_ERROR"
        self.agents: dict[str, dict[str, Any]] = {}
        self.llms: dict[str, dict[str, Any]] = {}

    def reset(self) -> None:
        self._calls.clear()
        self._next_call_id = 1
        self._should_fail = False
        self.agents.clear()
        self.llms.clear()

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
    ) -> None:
        self._should_fail = should_fail
        self._fail_error = error_message
        self._fail_code = error_code

    def add_agent(self, agent_id: str, llm_id: str, prompt: str = "", voicemail: str = "") -> None:
        self.agents[agent_id] = {
            "agent_id": agent_id,
            "agent_name": f"Agent {agent_id}",
            "response_engine": {"type": "retell-llm", "llm_id": llm_id},
            "voicemail_message": voicemail,
        }
        self.llms[llm_id] = {"llm_id": llm_id, "general_prompt": prompt}

    @property
    def calls(self) -> list[PhoneCallRequest]:
        return self._calls.copy()

    def get_last_call(self) -> PhoneCallRequest | None:
        return self._calls[-1] if self._calls else None

    async def create_phone_call(self, request: PhoneCallRequest) -> PhoneCallResponse:
        if self._should_fail:
            raise CallInitiationError(self._fail_error, error_code=self._fail_code)
        self._calls.append(request)
        call_id = f"mock_call_{self._next_call_id:06d}"
        self._next_call_id += 1
        logger.debug("Mock call placed", extra={"call_id": call_id, "to_number": request.to_number})
        return PhoneCallResponse(call_id=call_id, status="registered", raw_response={"call_id": call_id})

    async def list_agents(self) -> list[dict[str, Any]]:
        return list(self.agents.values())

    async def get_agent(self, agent_id: str) -> dict[str, Any]:
        if agent_id not in self.agents:
            raise TelephonyProviderError(f"Agent {agent_id} not found", error_code="404")
        return self.agents[agent_id]

    async def update_agent(self, agent_id: str, data: dict[str, Any]) -> dict[str, Any]:
        agent = await self.get_agent(agent_id)
        agent.update(data)
        return agent

    async def get_llm(self, llm_id: str) -> dict[str, Any]:
        if llm_id not in self.llms:
            raise TelephonyProviderError(f"LLM {llm_id} not found", error_code="404")
        return self.llms[llm_id]

    async def update_llm(self, llm_id: str, data: dict[str, Any]) -> dict[str, Any]:
        llm = await self.get_llm(llm_id)
        llm.update(data)
        return llm
