from __future__ import annotations

import json
import logging

from prometheus_client import REGISTRY

from libs.observability.logging import (
    ContextFilter,
    JsonLogFormatter,
    bind_sync_pass,
    get_sync_pass_id,
)
from libs.observability.metrics import observe_sync_pass, record_ingested


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="alert-sync.sync",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_sync_pass_id() -> None:
    formatter = JsonLogFormatter("alert-sync")
    context_filter = ContextFilter("alert-sync")

    with bind_sync_pass("abc123"):
        assert get_sync_pass_id() == "abc123"
        record = _record("Synced 2/2 alerts", persisted=2)
        context_filter.filter(record)

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "Synced 2/2 alerts"
    assert payload["service"] == "alert-sync"
    assert payload["logger"] == "alert-sync.sync"
    assert payload["sync_pass_id"] == "abc123"
    assert payload["persisted"] == 2
    assert "correlation_id" not in payload
    assert get_sync_pass_id() is None


def test_json_formatter_stringifies_unserialisable_extras() -> None:
    record = _record("Upstream attempt", endpoint=object())

    payload = json.loads(JsonLogFormatter("alert-sync").format(record))

    assert payload["endpoint"].startswith("<object object")


def test_sync_metrics_are_recorded() -> None:
    before = REGISTRY.get_sample_value(
        "alert_sync_passes_total", {"trigger": "manual", "outcome": "success"}
    ) or 0.0
    persisted_before = REGISTRY.get_sample_value(
        "alert_sync_alerts_total", {"result": "persisted"}
    ) or 0.0

    observe_sync_pass("manual", "success", 0.2)
    record_ingested(3, 1)

    assert REGISTRY.get_sample_value(
        "alert_sync_passes_total", {"trigger": "manual", "outcome": "success"}
    ) == before + 1
    assert REGISTRY.get_sample_value(
        "alert_sync_alerts_total", {"result": "persisted"}
    ) == persisted_before + 3
