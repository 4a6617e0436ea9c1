from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from services.alert_sync.app.clients import RetryPolicy, UpstreamAlertsClient
from services.alert_sync.app.context import SyncContext
from services.alert_sync.app.models import Alert
from services.alert_sync.app.repository import AlertRepository
from services.alert_sync.app.schemas import ExternalAlert


def make_external_alert(
    created_at: datetime,
    *,
    source: str = "firewall",
    severity: str = "high",
    description: str = "Blocked outbound connection",
) -> ExternalAlert:
    return ExternalAlert(
        source=source,
        severity=severity,
        description=description,
        created_at=created_at,
    )


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class FakeUpstreamClient(UpstreamAlertsClient):
    def __init__(
        self,
        alerts: list[ExternalAlert] | None = None,
        *,
        fetch_error: Exception | None = None,
        health_error: Exception | None = None,
    ) -> None:
        self._own_client = False
        self._client = None
        self._policy = RetryPolicy()
        self.alerts = list(alerts or [])
        self.fetch_error = fetch_error
        self.health_error = health_error
        self.fetch_calls: list[datetime | None] = []
        self.health_calls = 0

    async def check_health(self, ctx: SyncContext) -> None:
        self.health_calls += 1
        if self.health_error is not None:
            raise self.health_error

    async def fetch_since(self, ctx: SyncContext, cursor: datetime | None) -> list[ExternalAlert]:
        self.fetch_calls.append(cursor)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.alerts)

    async def aclose(self) -> None:  # pragma: no cover - interface requirement
        return None


class RecordingRepository(AlertRepository):
    """Real repository that records calls and can inject storage failures."""

    def __init__(
        self,
        *,
        fail_on: set[int] | None = None,
        failure: Exception | None = None,
        watermark_error: Exception | None = None,
        on_create: Callable[[Alert], None] | None = None,
    ) -> None:
        self.create_calls: list[dict[str, Any]] = []
        self.advanced: list[datetime] = []
        self.fail_on = fail_on or set()
        self.failure = failure or SQLAlchemyError("insert failed")
        self.watermark_error = watermark_error
        self.on_create = on_create

    async def create_alert(self, session: Session, **fields: Any) -> Alert:  # type: ignore[override]
        index = len(self.create_calls)
        self.create_calls.append(fields)
        if index in self.fail_on:
            raise self.failure
        alert = await super().create_alert(session, **fields)
        if self.on_create is not None:
            self.on_create(alert)
        return alert

    async def read_watermark(self, session: Session) -> datetime | None:
        if self.watermark_error is not None:
            raise self.watermark_error
        return await super().read_watermark(session)

    async def advance_watermark(self, session: Session, value: datetime) -> None:
        self.advanced.append(value)
        await super().advance_watermark(session, value)
