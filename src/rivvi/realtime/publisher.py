"""
Publisher for live call and run events.

Events go to the managed pub/sub REST API as signed HTTP requests. Publishing
is best effort: an unconfigured publisher is a no-op and delivery failures are
logged, never raised to the caller.
"""

import hashlib
import hmac
import json
import time
from enum import Enum
from functools import lru_cache
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import httpx

from rivvi.realtime.config import RealtimeConfig, get_realtime_config
from rivvi.shared.clock import iso_now
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


class RealtimeEvent(str, Enum):
    RUN_UPDATED = "run-updated"
    RUN_STATUS_CHANGED = "run-status-changed"
    ROW_UPDATED = "row-updated"
    CALL_STARTED = "call-started"
    CALL_UPDATED = "call-updated"
    CALL_COMPLETED = "call-completed"
    METRICS_UPDATED = "metrics-updated"
    INBOUND_CALL = "inbound-call"


def org_channel(org_id: UUID | str) -> str:
    return f"org-{org_id}"


def run_channel(run_id: UUID | str) -> str:
    return f"run-{run_id}"


def campaign_channel(campaign_id: UUID | str) -> str:
    return f"campaign-{campaign_id}"


def user_channel(user_id: UUID | str) -> str:
    return f"user-{user_id}"


def sign_request(
    secret: str,
    method: str,
    path: str,
    params: dict[str, str],
) -> str:
    """HMAC-SHA256 signature over ``METHOD\\npath\\nsorted-query``."""
    query = "&".join(f"{k}={params[k]}" for k in sorted(params))
    to_sign = f"{method}\n{path}\n{query}"
    return hmac.new(secret.encode(), to_sign.encode(), hashlib.sha256).hexdigest()


class RealtimePublisher:
    """Publish events to org, run, campaign and user channels."""

    def __init__(
        self,
        config: RealtimeConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_realtime_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def enabled(self) -> bool:
        return self._config.is_configured

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def trigger(self, channel: str, event: RealtimeEvent | str, data: dict[str, Any]) -> bool:
        """Publish one event. Returns whether the provider accepted it."""
        event_name = event.value if isinstance(event, RealtimeEvent) else event
        if not self.enabled:
            logger.debug(
                "Realtime publishing disabled, dropping event",
                extra={"channel": channel, "event": event_name},
            )
            return False

        body = json.dumps(
            {
                "name": event_name,
                "channels": [channel],
                "data": json.dumps(data, default=str),
            }
        )
        path = f"/apps/{self._config.app_id}/events"
        params = {
            "auth_key": self._config.key,
            "auth_timestamp": str(int(time.time())),
            "auth_version": "1.0",
            "body_md5": hashlib.md5(body.encode()).hexdigest(),
        }
        params["auth_signature"] = sign_request(self._config.secret, "POST", path, params)

        try:
            response = await self._client().post(
                f"{path}?{urlencode(params)}",
                content=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(
                "Realtime publish failed",
                extra={"channel": channel, "event": event_name, "error": str(e)},
            )
            return False

        if response.status_code >= 400:
            logger.error(
                "Realtime publish rejected",
                extra={
                    "channel": channel,
                    "event": event_name,
                    "status_code": response.status_code,
                    "response": response.text[:500],
                },
            )
            return False
        return True

    async def publish_run_updated(
        self,
        org_id: UUID,
        run_id: UUID,
        status: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.trigger(
            org_channel(org_id),
            RealtimeEvent.RUN_UPDATED,
            {"run_id": run_id, "status": status, "metadata": metadata or {}, "updated_at": iso_now()},
        )

    async def publish_run_status_changed(self, run_id: UUID, status: str) -> None:
        await self.trigger(
            run_channel(run_id),
            RealtimeEvent.RUN_STATUS_CHANGED,
            {"run_id": run_id, "status": status, "updated_at": iso_now()},
        )

    async def publish_row_updated(
        self,
        run_id: UUID,
        row_id: UUID,
        status: str,
        **extra: Any,
    ) -> None:
        await self.trigger(
            run_channel(run_id),
            RealtimeEvent.ROW_UPDATED,
            {"run_id": run_id, "row_id": row_id, "status": status, "updated_at": iso_now(), **extra},
        )

    async def publish_call_started(self, org_id: UUID, data: dict[str, Any]) -> None:
        await self.trigger(org_channel(org_id), RealtimeEvent.CALL_STARTED, data)

    async def publish_call_updated(self, org_id: UUID, data: dict[str, Any]) -> None:
        await self.trigger(org_channel(org_id), RealtimeEvent.CALL_UPDATED, data)

    async def publish_call_completed(
        self,
        campaign_id: UUID | None,
        run_id: UUID | None,
        data: dict[str, Any],
    ) -> None:
        if campaign_id is not None:
            await self.trigger(campaign_channel(campaign_id), RealtimeEvent.CALL_COMPLETED, data)
        if run_id is not None:
            await self.trigger(run_channel(run_id), RealtimeEvent.CALL_COMPLETED, data)

    async def publish_metrics_updated(self, run_id: UUID, metrics: dict[str, Any]) -> None:
        await self.trigger(
            run_channel(run_id),
            RealtimeEvent.METRICS_UPDATED,
            {"run_id": run_id, "metrics": metrics, "updated_at": iso_now()},
        )

    async def publish_inbound_call(self, org_id: UUID, data: dict[str, Any]) -> None:
        await self.trigger(org_channel(org_id), RealtimeEvent.INBOUND_CALL, data)


@lru_cache(maxsize=1)
def get_realtime_publisher() -> RealtimePublisher:
    """Process-wide publisher; also used as a FastAPI dependency."""
    config = get_realtime_config()
    logger.info(
        "Realtime publisher configured",
        extra={"enabled": config.is_configured, "cluster": config.cluster},
    )
    return RealtimePublisher(config)
