"""
Retell voice provider adapter.
"""

from typing import Any

import httpx

from rivvi.telephony.config import TelephonyConfig, get_telephony_config
from rivvi.telephony.interface import (
    CallInitiationError,
    PhoneCallRequest,
    PhoneCallResponse,
    TelephonyProvider,
    TelephonyProviderError,
)
from rivvi.telephony.mapping import stringify_variables
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


class RetellProvider(TelephonyProvider):
    """Retell REST API client (bearer API key)."""

    def __init__(
        self,
        config: TelephonyConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_telephony_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=httpx.Timeout(self._config.timeout_seconds),
            )
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        error_cls: type[TelephonyProviderError] = TelephonyProviderError,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._get_client().request(method, path, json=json_body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(
                "HTTP error calling voice provider",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise error_cls(f"HTTP error: {e!s}", error_code="HTTP_ERROR") from e

        if response.status_code >= 400:
            try:
                error_data = response.json() if response.content else {}
            except ValueError:
                error_data = {"raw": response.text}
            if not isinstance(error_data, dict):
                error_data = {"raw": error_data}
            logger.error(
                "Voice provider request failed",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "error": error_data,
                },
            )
            message = error_data.get("error_message") or error_data.get("message") or (
                f"Provider returned HTTP {response.status_code}"
            )
            raise error_cls(
                message,
                error_code=str(response.status_code),
                provider_response=error_data,
            )

        return response.json() if response.content else {}

    async def create_phone_call(self, request: PhoneCallRequest) -> PhoneCallResponse:
        payload = {
            "to_number": request.to_number,
            "from_number": request.from_number,
            "override_agent_id": request.agent_id,
            "metadata": request.metadata,
            "retell_llm_dynamic_variables": stringify_variables(request.variables),
        }

        logger.info(
            "Creating phone call",
            extra={
                "to_number": request.to_number,
                "agent_id": request.agent_id,
                "row_id": request.metadata.get("row_id"),
            },
        )

        data = await self._request(
            "POST", "/v2/create-phone-call", payload, error_cls=CallInitiationError
        )
        call_id = data.get("call_id") or data.get("id") or data.get("callId")
        if not call_id:
            raise CallInitiationError(
                "Provider response did not include a call id",
                error_code="MISSING_CALL_ID",
                provider_response=data,
            )
        return PhoneCallResponse(
            call_id=call_id,
            status=data.get("call_status", "registered"),
            raw_response=data,
        )

    async def list_agents(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/list-agents")
        return data if isinstance(data, list) else data.get("agents", [])

    async def get_agent(self, agent_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/get-agent/{agent_id}")

    async def update_agent(self, agent_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/update-agent/{agent_id}", data)

    async def get_llm(self, llm_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/get-retell-llm/{llm_id}")

    async def update_llm(self, llm_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/update-retell-llm/{llm_id}", data)
