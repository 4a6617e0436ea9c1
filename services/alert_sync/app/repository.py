from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import AlertNotFoundError, InvalidWindowError
from .models import Alert


def to_storage_time(value: datetime) -> datetime:
    """Convert ``value`` to the naive UTC representation stored in ``created_at``."""

    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AlertRepository:
    """Repository handling persistence for synchronised alerts.

    The sync watermark is not stored on its own: it is derived from the newest
    ``created_at`` among persisted alerts. :meth:`advance_watermark` therefore
    has nothing to write, but keeps the read/advance pair symmetric for
    backends that track the cursor independently.
    """

    async def create_alert(
        self,
        session: Session,
        *,
        source: str,
        severity: str,
        description: str,
        raw_event: bytes,
        enrichment_type: str | None,
        origin_address: str | None,
        created_at: datetime,
    ) -> Alert:
        def _create() -> Alert:
            alert = Alert(
                source=source,
                severity=severity,
                description=description,
                raw_event=raw_event,
                enrichment_type=enrichment_type,
                origin_address=origin_address,
                created_at=to_storage_time(created_at),
            )
            session.add(alert)
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise
            session.refresh(alert)
            return alert

        return await asyncio.to_thread(_create)

    async def list_alerts(self, session: Session) -> Sequence[Alert]:
        def _query() -> Sequence[Alert]:
            stmt = select(Alert).order_by(Alert.created_at.desc())
            return session.execute(stmt).scalars().all()

        return await asyncio.to_thread(_query)

    async def get_alert(self, session: Session, alert_id: str) -> Alert:
        def _get() -> Alert | None:
            return session.get(Alert, alert_id)

        alert = await asyncio.to_thread(_get)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def list_recent_alerts(
        self,
        session: Session,
        days: int,
        *,
        now: datetime | None = None,
    ) -> Sequence[Alert]:
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise InvalidWindowError("days must be a positive integer")
        reference = to_storage_time(now or datetime.now(timezone.utc))
        try:
            cutoff = reference - timedelta(days=days)
        except OverflowError:
            # The window reaches past year 1, so every stored alert is inside it.
            cutoff = datetime.min

        def _query() -> Sequence[Alert]:
            stmt = (
                select(Alert)
                .where(Alert.created_at >= cutoff)
                .order_by(Alert.created_at.desc())
            )
            return session.execute(stmt).scalars().all()

        return await asyncio.to_thread(_query)

    async def read_watermark(self, session: Session) -> datetime | None:
        def _query() -> datetime | None:
            return session.execute(select(func.max(Alert.created_at))).scalar_one_or_none()

        latest = await asyncio.to_thread(_query)
        if latest is None:
            return None
        return from_storage_time(latest)

    async def advance_watermark(self, session: Session, value: datetime) -> None:
        return None
