"""JSON logging for the alert sync service.

Every record is tagged with the identifiers bound in the current context: the
correlation and request ids of an HTTP request, and the id of the sync pass
that emitted it. Passes run as background tasks, so the pass id is the only
way to stitch together the lines of one pass when several overlap.
"""

from __future__ import annotations

import contextvars
import json
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.types import ASGIApp

_CORRELATION_ID_CTX: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)
_REQUEST_ID_CTX: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)
_SYNC_PASS_ID_CTX: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "sync_pass_id", default=None
)
_CONTEXT_VARS = (_CORRELATION_ID_CTX, _REQUEST_ID_CTX, _SYNC_PASS_ID_CTX)

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message",
    "asctime",
    "taskName",
    "service",
}
_CONTEXT_KEYS = frozenset(var.name for var in _CONTEXT_VARS)

_THIRD_PARTY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")
_configured_service: Optional[str] = None


class ContextFilter(logging.Filter):
    """Copy the service name and bound identifiers onto each record."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self._service_name
        for var in _CONTEXT_VARS:
            setattr(record, var.name, var.get())
        return True


class JsonLogFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "service": getattr(record, "service", self._service_name),
            "message": record.getMessage(),
        }
        for key in sorted(_CONTEXT_KEYS):
            value = getattr(record, key, None)
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info
        payload.update(_extra_fields(record, payload))
        return json.dumps(payload, default=str)


def _extra_fields(record: logging.LogRecord, taken: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key in _CONTEXT_KEYS or key in taken:
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        fields[key] = value
    return fields


@contextmanager
def _bound(var: contextvars.ContextVar[Optional[str]], value: str) -> Iterator[str]:
    token = var.set(value)
    try:
        yield value
    finally:
        var.reset(token)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind correlation and request ids for the duration of each request.

    An incoming ``X-Correlation-ID`` (or ``X-Request-ID``) is reused so callers
    can follow a ``POST /sync`` into the logs; both ids are echoed back.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        service_name: str,
        correlation_header: str = "X-Correlation-ID",
    ) -> None:
        super().__init__(app)
        self._service_name = service_name
        self._correlation_header = correlation_header

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = (
            request.headers.get(self._correlation_header)
            or request.headers.get("X-Request-ID")
            or uuid.uuid4().hex
        )
        request_id = uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        request.state.request_id = request_id

        with _bound(_CORRELATION_ID_CTX, correlation_id), _bound(_REQUEST_ID_CTX, request_id):
            response = await call_next(request)
        response.headers.setdefault(self._correlation_header, correlation_id)
        response.headers.setdefault("X-Request-ID", request_id)
        return response


def bind_sync_pass(pass_id: str):
    """Tag every record emitted inside the block with ``pass_id``."""

    return _bound(_SYNC_PASS_ID_CTX, pass_id)


def configure_logging(service_name: str, level: str | int = logging.INFO) -> None:
    """Route the root, uvicorn and fastapi loggers through one JSON handler.

    Calling it again for the same service is a no-op, so ``run()`` can be
    re-entered by a process manager without stacking handlers.
    """

    global _configured_service
    if _configured_service == service_name:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter(service_name))
    handler.addFilter(ContextFilter(service_name))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    for logger_name in _THIRD_PARTY_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.handlers = [handler]
        logger.setLevel(level)
        logger.propagate = False

    # httpx logs every request at INFO; the upstream client logs its own attempts.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured_service = service_name


def get_sync_pass_id() -> Optional[str]:
    """Return the id of the sync pass running in this context, if any."""

    return _SYNC_PASS_ID_CTX.get()
