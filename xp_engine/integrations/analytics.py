"""
Analytics collector client.

Posts ActivityCompleted and TimeSpent events over HTTP. Timeouts, transport
errors and 5xx responses are retried with exponential backoff; 4xx
responses are not. When every attempt fails the client raises
AnalyticsDispatchError.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from config import Settings, get_settings
from xp_engine.core.errors import AnalyticsDispatchError
from xp_engine.ports import ActivityCompletedEvent, TimeSpentEvent


class AnalyticsClient:
    """HTTP client for the analytics event collector."""

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        timeout_ms: int = 10000,
        retry_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
    ):
        """
        Initialize analytics client.

        Args:
            api_url: Base URL of the collector
            api_key: Bearer token, omitted when empty
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts per event
            backoff_base_seconds: First retry delay, doubled per attempt
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_base_seconds = backoff_base_seconds
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            headers=headers,
            follow_redirects=True,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> AnalyticsClient:
        settings = settings or get_settings()
        return cls(
            api_url=settings.analytics_api_url,
            api_key=settings.analytics_api_key,
            timeout_ms=settings.analytics_timeout_ms,
            retry_attempts=settings.analytics_retry_attempts,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def send_activity_completed_event(self, event: ActivityCompletedEvent) -> None:
        await self._post("/events/activity-completed", event.to_payload())

    async def send_time_spent_event(self, event: TimeSpentEvent) -> None:
        await self._post("/events/time-spent", event.to_payload())

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            wait_time = self.backoff_base_seconds * (2 ** attempt)
            try:
                response = await self.client.post(f"{self.api_url}{path}", json=payload)
                response.raise_for_status()
                logger.debug("Analytics event {} accepted by {}", payload.get("id"), path)
                return

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    logger.error("Analytics client error {} on {}", e.response.status_code, path)
                    raise AnalyticsDispatchError(
                        f"collector rejected event with {e.response.status_code}",
                        operation="analytics_post",
                    ) from e
                logger.warning(
                    "Analytics server error {} on attempt {}/{}. Retrying in {}s...",
                    e.response.status_code, attempt + 1, self.retry_attempts, wait_time,
                )

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    "Analytics timeout on attempt {}/{}. Retrying in {}s...",
                    attempt + 1, self.retry_attempts, wait_time,
                )

            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Analytics request error on attempt {}/{}: {}. Retrying in {}s...",
                    attempt + 1, self.retry_attempts, e, wait_time,
                )

            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(wait_time)

        logger.error("Analytics event failed after {} attempts: {}", self.retry_attempts, last_error)
        raise AnalyticsDispatchError(
            f"event not delivered after {self.retry_attempts} attempts",
            operation="analytics_post",
        ) from last_error
