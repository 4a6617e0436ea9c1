from __future__ import annotations

import logging
import random

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from libs.observability.logging import RequestContextMiddleware, configure_logging
from libs.observability.metrics import setup_metrics

from .clients import RetryPolicy, UpstreamAlertsClient
from .config import AlertSyncSettings, get_settings
from .database import create_session_factory, get_session, verify_connection
from .enrichment import AlertEnricher
from .errors import AlertNotFoundError, InvalidWindowError
from .repository import AlertRepository
from .scheduler import SyncScheduler
from .schemas import AlertRead, AlertResponse, AlertsResponse, ErrorResponse, SyncAccepted
from .sync import AlertSynchronizer

logger = logging.getLogger("alert-sync")

BOTH_PARAMETERS_ERROR = "Cannot specify both 'id' and 'days' parameters at the same time"
INVALID_DAYS_ERROR = "Invalid 'days' parameter. Must be a positive integer"
NOT_FOUND_ERROR = "Alert not found"
RETRIEVAL_ERROR = "Failed to retrieve alerts"


def create_app(
    settings: AlertSyncSettings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    upstream_client: UpstreamAlertsClient | None = None,
    synchronizer: AlertSynchronizer | None = None,
    scheduler: SyncScheduler | None = None,
    rng: random.Random | None = None,
    start_background_tasks: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    session_factory = session_factory or create_session_factory(settings)
    upstream_client = upstream_client or UpstreamAlertsClient(
        settings.upstream_url,
        policy=RetryPolicy(
            max_retries=settings.retry_max,
            wait_min=settings.retry_wait_min_seconds,
            wait_max=settings.retry_wait_max_seconds,
        ),
        timeout=settings.http_timeout_seconds,
    )
    repository = AlertRepository()
    synchronizer = synchronizer or AlertSynchronizer(
        client=upstream_client,
        repository=repository,
        session_factory=session_factory,
        enricher=AlertEnricher(rng),
    )
    scheduler = scheduler or SyncScheduler(
        synchronizer,
        interval=settings.sync_interval_seconds,
        pass_timeout=settings.sync_timeout_seconds,
        shutdown_grace=settings.shutdown_grace_seconds,
        exclusive=settings.exclusive_passes,
    )

    app = FastAPI(title="Alert Sync Service", version="0.1.0")
    app.add_middleware(RequestContextMiddleware, service_name=settings.service_name)
    setup_metrics(app, service_name=settings.service_name)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.synchronizer = synchronizer
    app.state.scheduler = scheduler
    app.state.upstream_client = upstream_client

    if start_background_tasks:

        @app.on_event("startup")
        async def _startup() -> None:  # pragma: no cover - FastAPI wiring
            await scheduler.start()

        @app.on_event("shutdown")
        async def _shutdown() -> None:  # pragma: no cover - FastAPI wiring
            await scheduler.stop()
            await upstream_client.aclose()

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            message = "Method not allowed"
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=str(message)).model_dump(),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(error="Invalid request").model_dump(),
        )

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error="Internal server error").model_dump(),
        )

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    def get_session_dep() -> Session:
        yield from get_session(app.state.session_factory)

    def get_repository() -> AlertRepository:
        return repository

    @app.get("/alerts", response_model=None)
    async def list_alerts(
        alert_id: str | None = Query(None, alias="id"),
        days: str | None = Query(None),
        session: Session = Depends(get_session_dep),
        repository: AlertRepository = Depends(get_repository),
    ) -> JSONResponse:
        alert_id = alert_id or None
        days = days or None
        if alert_id is not None and days is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=BOTH_PARAMETERS_ERROR)

        if alert_id is not None:
            try:
                alert = await repository.get_alert(session, alert_id)
            except AlertNotFoundError as error:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_ERROR) from error
            except SQLAlchemyError as error:
                logger.error("Error getting alert %s: %s", alert_id, error)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=RETRIEVAL_ERROR
                ) from error
            body = AlertResponse(alert=AlertRead.model_validate(alert))
            return JSONResponse(content=body.model_dump(mode="json"))

        try:
            if days is not None:
                alerts = await repository.list_recent_alerts(session, _parse_days(days))
            else:
                alerts = await repository.list_alerts(session)
        except InvalidWindowError as error:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_DAYS_ERROR) from error
        except SQLAlchemyError as error:
            logger.error("Error listing alerts: %s", error)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=RETRIEVAL_ERROR
            ) from error
        body = AlertsResponse(alerts=[AlertRead.model_validate(alert) for alert in alerts])
        return JSONResponse(content=body.model_dump(mode="json"))

    @app.post("/sync", response_model=SyncAccepted, status_code=status.HTTP_202_ACCEPTED)
    async def trigger_sync() -> SyncAccepted:
        app.state.scheduler.trigger_now()
        return SyncAccepted()

    return app


def _parse_days(value: str) -> int:
    # Plain ASCII digits only; int() would also take signs, spaces and underscores.
    if not (value.isascii() and value.isdigit()):
        raise InvalidWindowError(f"invalid days value {value!r}")
    days = int(value)
    if days <= 0:
        raise InvalidWindowError(f"days must be positive, got {days}")
    return days


def run() -> None:  # pragma: no cover - process entrypoint
    settings = get_settings()
    configure_logging(settings.service_name, settings.log_level.upper())
    logger.info(
        "Alert sync configuration",
        extra={
            "database": settings.describe_database(),
            "upstream_url": settings.upstream_url,
            "sync_interval_seconds": settings.sync_interval_seconds,
        },
    )
    try:
        session_factory = create_session_factory(settings)
        verify_connection(session_factory)
    except SQLAlchemyError as exc:
        logger.critical("Failed to connect to database: %s", exc)
        raise SystemExit(1) from exc
    logger.info("Successfully connected to database")

    app = create_app(settings=settings, session_factory=session_factory)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        timeout_graceful_shutdown=int(settings.shutdown_grace_seconds),
    )


if __name__ == "__main__":  # pragma: no cover
    run()
