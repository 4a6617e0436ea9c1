from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from libs.observability.metrics import record_upstream_attempt

from .context import SyncContext
from .errors import (
    UpstreamError,
    UpstreamRequestError,
    UpstreamResponseError,
    UpstreamRetriesExhausted,
    UpstreamUnavailableError,
)
from .schemas import ExternalAlert, ExternalAlertsEnvelope

logger = logging.getLogger("alert-sync.upstream")

_RETRY_AFTER_STATUSES = frozenset({429, 503})


def format_cursor(cursor: datetime) -> str:
    """Render ``cursor`` as an RFC 3339 UTC timestamp for the ``since`` parameter."""

    if cursor.tzinfo is None:
        cursor = cursor.replace(tzinfo=timezone.utc)
    return cursor.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


@dataclass(slots=True)
class RetryPolicy:
    """Bounded exponential backoff applied to upstream requests."""

    max_retries: int = 3
    wait_min: float = 1.0
    wait_max: float = 30.0

    @property
    def max_attempts(self) -> int:
        return max(0, self.max_retries) + 1

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    def backoff(self, retry_index: int, response: httpx.Response | None = None) -> float:
        if response is not None and response.status_code in _RETRY_AFTER_STATUSES:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None:
                return min(retry_after, self.wait_max)
        return min(self.wait_min * (2**retry_index), self.wait_max)


class UpstreamAlertsClient:
    """Client used to pull alerts from the upstream alert source."""

    def __init__(
        self,
        base_url: str,
        *,
        policy: RetryPolicy | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._own_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._policy = policy or RetryPolicy()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def check_health(self, ctx: SyncContext) -> None:
        """Call ``GET /health`` under the same retry policy as the fetches."""

        try:
            await self._get_with_retry(ctx, "/health", {})
        except UpstreamError as exc:
            raise UpstreamUnavailableError(f"health check failed: {exc}") from exc

    async def fetch_all(self, ctx: SyncContext) -> list[ExternalAlert]:
        return await self._fetch_alerts(ctx, {})

    async def fetch_alerts_since(self, ctx: SyncContext, since: datetime) -> list[ExternalAlert]:
        return await self._fetch_alerts(ctx, {"since": format_cursor(since)})

    async def fetch_since(self, ctx: SyncContext, cursor: datetime | None) -> list[ExternalAlert]:
        """Return upstream alerts newer than ``cursor``, or the full history when it is ``None``."""

        if cursor is None:
            return await self.fetch_all(ctx)
        return await self.fetch_alerts_since(ctx, cursor)

    async def _fetch_alerts(self, ctx: SyncContext, params: dict[str, Any]) -> list[ExternalAlert]:
        response = await self._get_with_retry(ctx, "/alerts", params)
        try:
            envelope = ExternalAlertsEnvelope.model_validate(response.json())
        except ValueError as exc:
            raise UpstreamResponseError(f"error decoding upstream alerts: {exc}") from exc
        return envelope.alerts

    async def _get_with_retry(
        self, ctx: SyncContext, path: str, params: dict[str, Any]
    ) -> httpx.Response:
        attempts = self._policy.max_attempts
        last_status: int | None = None
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            response: httpx.Response | None = None
            try:
                response = await ctx.guard(self._client.get(path, params=params))
            except httpx.TransportError as exc:
                last_status, last_error = None, exc
                record_upstream_attempt(path, "error")
                logger.warning(
                    "Upstream connection error on %s (attempt %s/%s): %s",
                    path,
                    attempt,
                    attempts,
                    exc,
                    extra={"attempt": attempt, "outcome": "error"},
                )
            else:
                status_code = response.status_code
                record_upstream_attempt(path, str(status_code))
                if status_code == httpx.codes.OK:
                    logger.debug(
                        "Upstream %s answered on attempt %s",
                        path,
                        attempt,
                        extra={"attempt": attempt, "outcome": "ok"},
                    )
                    return response
                if not self._policy.is_retryable_status(status_code):
                    raise UpstreamRequestError(status_code, response.text[:512])
                last_status, last_error = status_code, None
                logger.warning(
                    "Upstream %s returned status %s (attempt %s/%s)",
                    path,
                    status_code,
                    attempt,
                    attempts,
                    extra={"attempt": attempt, "outcome": str(status_code)},
                )
            if attempt == attempts:
                break
            delay = self._policy.backoff(attempt - 1, response)
            logger.info(
                "Retrying upstream %s in %.2fs",
                path,
                delay,
                extra={"attempt": attempt, "retry_delay": delay},
            )
            await ctx.sleep(delay)
        raise UpstreamRetriesExhausted(attempts, status_code=last_status, last_error=last_error)

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()


__all__ = ["RetryPolicy", "UpstreamAlertsClient", "format_cursor"]
