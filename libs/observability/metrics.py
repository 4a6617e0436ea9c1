"""Prometheus instruments for the HTTP surface and the sync pipeline."""

from __future__ import annotations

import time

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

_HTTP_REQUESTS = Counter(
    "http_requests_total",
    "HTTP requests served, by route template and status",
    labelnames=("service", "method", "path", "status"),
)
_HTTP_LATENCY = Histogram(
    "http_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("service", "method", "path"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
_SYNC_PASSES = Counter(
    "alert_sync_passes_total",
    "Sync passes by trigger and outcome",
    labelnames=("trigger", "outcome"),
)
_SYNC_PASS_DURATION = Histogram(
    "alert_sync_pass_duration_seconds",
    "Wall-clock duration of sync passes",
    labelnames=("trigger",),
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)
_ALERTS_PROCESSED = Counter(
    "alert_sync_alerts_total",
    "Upstream alerts processed, by persistence result",
    labelnames=("result",),
)
_UPSTREAM_ATTEMPTS = Counter(
    "alert_sync_upstream_attempts_total",
    "Requests sent to the upstream alert source, by endpoint and outcome",
    labelnames=("endpoint", "outcome"),
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count and time requests against their route template."""

    def __init__(self, app: ASGIApp, *, service_name: str) -> None:
        super().__init__(app)
        self._service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # The route is only resolved once routing ran, so read it afterwards.
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            method = request.method.upper()
            _HTTP_REQUESTS.labels(self._service_name, method, path, str(status_code)).inc()
            _HTTP_LATENCY.labels(self._service_name, method, path).observe(
                time.perf_counter() - started
            )


def observe_sync_pass(trigger: str, outcome: str, duration: float | None = None) -> None:
    """Record how a pass ended; skipped passes carry no duration."""

    _SYNC_PASSES.labels(trigger, outcome).inc()
    if duration is not None:
        _SYNC_PASS_DURATION.labels(trigger).observe(duration)


def record_ingested(persisted: int, failed: int) -> None:
    if persisted:
        _ALERTS_PROCESSED.labels("persisted").inc(persisted)
    if failed:
        _ALERTS_PROCESSED.labels("failed").inc(failed)


def record_upstream_attempt(endpoint: str, outcome: str) -> None:
    _UPSTREAM_ATTEMPTS.labels(endpoint, outcome).inc()


def setup_metrics(app: FastAPI, *, service_name: str) -> None:
    """Install the request middleware and expose ``GET /metrics``."""

    if getattr(app.state, "metrics_enabled", False):
        return
    app.add_middleware(MetricsMiddleware, service_name=service_name)

    @app.get("/metrics", include_in_schema=False, name="metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.state.metrics_enabled = True
