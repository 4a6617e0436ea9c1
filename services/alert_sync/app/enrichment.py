"""Synthetic enrichment applied to alerts before they are persisted.

The enrichment type and origin address only simulate what a downstream
enrichment stage would attach; they are not derived from the alert content.
"""

from __future__ import annotations

import json
import logging
import random
from datetime import datetime

from .schemas import ExternalAlert

logger = logging.getLogger(__name__)

ENRICHMENT_TYPES: tuple[str, ...] = (
    "geo_location",
    "threat_intel",
    "user_context",
    "network_analysis",
    "behavioral_analysis",
)
EMPTY_RAW_EVENT = b"{}"


class AlertEnricher:
    """Attach enrichment metadata using an injectable pseudo-random source."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def enrichment_type(self) -> str:
        return self._rng.choice(ENRICHMENT_TYPES)

    def origin_address(self) -> str:
        return ".".join(str(self._rng.randrange(256)) for _ in range(4))

    def raw_event(self, alert: ExternalAlert, synced_at: datetime) -> bytes:
        """Serialise the inbound record and its ingestion time.

        Falls back to an empty JSON object so the alert is still stored when
        the snapshot cannot be produced.
        """

        try:
            return json.dumps(
                {
                    "source": alert.source,
                    "severity": alert.severity,
                    "description": alert.description,
                    "created_at": alert.created_at.isoformat(),
                    "synced_at": synced_at.isoformat(),
                }
            ).encode("utf-8")
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning("Failed to serialise raw event for alert: %s", exc)
            return EMPTY_RAW_EVENT


__all__ = ["AlertEnricher", "EMPTY_RAW_EVENT", "ENRICHMENT_TYPES"]
