"""Logging and Prometheus helpers for the alert sync service."""

from .logging import (
    RequestContextMiddleware,
    bind_sync_pass,
    configure_logging,
    get_sync_pass_id,
)
from .metrics import (
    observe_sync_pass,
    record_ingested,
    record_upstream_attempt,
    setup_metrics,
)

__all__ = [
    "RequestContextMiddleware",
    "bind_sync_pass",
    "configure_logging",
    "get_sync_pass_id",
    "observe_sync_pass",
    "record_ingested",
    "record_upstream_attempt",
    "setup_metrics",
]
