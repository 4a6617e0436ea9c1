from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def _new_alert_id() -> str:
    return str(uuid.uuid4())


class Alert(Base):
    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_alert_id)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    raw_event: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"{}")
    enrichment_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    origin_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    # Upstream event time (naive UTC); drives ordering, windows and the watermark.
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
