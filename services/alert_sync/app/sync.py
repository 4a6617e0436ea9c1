"""Alert synchronisation pass: pull upstream alerts, enrich them and persist them."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from libs.observability.logging import bind_sync_pass
from libs.observability.metrics import record_ingested

from .clients import UpstreamAlertsClient, format_cursor
from .context import SyncContext
from .enrichment import AlertEnricher
from .errors import SyncFailedError, UpstreamError
from .repository import AlertRepository
from .schemas import ExternalAlert

logger = logging.getLogger("alert-sync.sync")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SyncReport:
    """Summary of a pass that ran to completion."""

    pass_id: str
    started_at: datetime
    cursor: datetime | None = None
    fetched: int = 0
    persisted: int = 0
    failed: int = 0
    finished_at: datetime | None = None


class AlertSynchronizer:
    """Run sync passes against the upstream alert source.

    A pass checks upstream health, derives its cursor from the watermark,
    fetches newer alerts and persists them one by one. Only a failed fetch or
    a cancellation ends a pass with an error; everything else degrades and is
    logged.
    """

    def __init__(
        self,
        client: UpstreamAlertsClient,
        repository: AlertRepository,
        session_factory: sessionmaker[Session],
        enricher: AlertEnricher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._repository = repository
        self._session_factory = session_factory
        self._enricher = enricher or AlertEnricher()
        self._clock = clock

    async def perform_sync(self, ctx: SyncContext, *, pass_id: str | None = None) -> SyncReport:
        pass_id = pass_id or uuid.uuid4().hex[:12]
        with bind_sync_pass(pass_id):
            report = SyncReport(pass_id=pass_id, started_at=self._clock())
            logger.info("Starting sync pass")
            async with self._session_context() as session:
                await self._run(ctx, session, report)
            report.finished_at = self._clock()
            return report

    async def _run(self, ctx: SyncContext, session: Session, report: SyncReport) -> None:
        await self._check_upstream_health(ctx)

        report.cursor = await self._read_cursor(ctx, session)
        alerts = await self._fetch(ctx, report.cursor)
        report.fetched = len(alerts)
        logger.info("Fetched %s alerts from upstream", len(alerts))
        if not alerts:
            logger.info("No new alerts to sync")
            return

        newest: datetime | None = None
        try:
            for alert in alerts:
                if ctx.cancelled:
                    logger.warning(
                        "Sync cancelled after processing %s/%s alerts",
                        report.persisted + report.failed,
                        len(alerts),
                    )
                    ctx.raise_if_cancelled()
                if await self._persist(session, alert):
                    report.persisted += 1
                    if newest is None or alert.created_at > newest:
                        newest = alert.created_at
                else:
                    report.failed += 1
        finally:
            record_ingested(report.persisted, report.failed)

        await self._advance_watermark(session, newest or report.cursor)
        logger.info(
            "Synced %s/%s alerts",
            report.persisted,
            len(alerts),
            extra={"persisted": report.persisted, "failed": report.failed},
        )

    async def _check_upstream_health(self, ctx: SyncContext) -> None:
        try:
            await self._client.check_health(ctx)
        except UpstreamError as exc:
            logger.warning("Upstream health check failed, proceeding anyway: %s", exc)

    async def _read_cursor(self, ctx: SyncContext, session: Session) -> datetime | None:
        ctx.raise_if_cancelled()
        try:
            cursor = await self._repository.read_watermark(session)
        except SQLAlchemyError as exc:
            logger.warning("Could not read sync watermark, fetching full history: %s", exc)
            return None
        if cursor is None:
            logger.info("No watermark yet, fetching full history")
        else:
            logger.info("Fetching alerts since %s", format_cursor(cursor))
        return cursor

    async def _fetch(self, ctx: SyncContext, cursor: datetime | None) -> list[ExternalAlert]:
        try:
            return await self._client.fetch_since(ctx, cursor)
        except UpstreamError as exc:
            raise SyncFailedError(f"failed to fetch alerts from upstream: {exc}") from exc

    async def _persist(self, session: Session, alert: ExternalAlert) -> bool:
        try:
            await self._repository.create_alert(
                session,
                source=alert.source,
                severity=alert.severity,
                description=alert.description,
                raw_event=self._enricher.raw_event(alert, self._clock()),
                enrichment_type=self._enricher.enrichment_type(),
                origin_address=self._enricher.origin_address(),
                created_at=alert.created_at,
            )
        except Exception as exc:  # noqa: BLE001
            # Drivers raise some rejections (NUL bytes) unwrapped; skip only this record.
            logger.error("Error storing alert from %s: %s", alert.source, exc)
            return False
        return True

    async def _advance_watermark(self, session: Session, value: datetime | None) -> None:
        if value is None:
            return
        try:
            await self._repository.advance_watermark(session, value)
        except SQLAlchemyError as exc:
            logger.warning("Failed to advance sync watermark: %s", exc)

    @asynccontextmanager
    async def _session_context(self):
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()


__all__ = ["AlertSynchronizer", "SyncReport"]
