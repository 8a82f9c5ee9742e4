"""Main FastAPI application for the step rewards engine."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .config import Settings, settings as default_settings
from .engine import RewardsEngine
from .errors import (
    DaySealedError,
    MalformedSampleError,
    PrimaryDeviceRequiredError,
    RewardsEngineError,
    StorageUnavailable,
    UnknownDeviceError,
)
from .health import HealthChecker, create_health_router, storage_health_check
from .logging import setup_logging
from .notifications import KafkaNotificationDispatcher, LoggingDispatcher, NotificationDispatcher
from .phases import PhaseTable
from .routers import admin, devices, ledger, phase, samples
from .storage import InMemoryStore, PostgresStore, RewardsStore

logger = structlog.get_logger(__name__)

STORAGE_RETRY_AFTER_SECONDS = 2


def build_store(settings: Settings) -> RewardsStore:
    if settings.database_url:
        return PostgresStore(
            settings.database_url,
            min_pool_size=settings.database_min_pool_size,
            max_pool_size=settings.database_max_pool_size,
            application_name=settings.service_name,
        )
    logger.warning("No database URL configured, using in-memory storage")
    return InMemoryStore()


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    if settings.kafka_bootstrap_servers:
        return KafkaNotificationDispatcher(
            settings.kafka_bootstrap_servers, settings.kafka_notification_topic
        )
    return LoggingDispatcher()


def _error_body(error: Exception, code: str) -> dict:
    return {"error": code, "detail": str(error)}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=_error_body(exc, "storage_unavailable"),
            headers={"Retry-After": str(STORAGE_RETRY_AFTER_SECONDS)},
        )

    @app.exception_handler(RewardsEngineError)
    async def engine_error(request: Request, exc: RewardsEngineError) -> JSONResponse:
        if isinstance(exc, UnknownDeviceError):
            code, status_code = "unknown_device", status.HTTP_404_NOT_FOUND
        elif isinstance(exc, PrimaryDeviceRequiredError):
            code, status_code = "primary_device_required", status.HTTP_409_CONFLICT
        elif isinstance(exc, DaySealedError):
            code, status_code = "day_sealed", status.HTTP_409_CONFLICT
        elif isinstance(exc, MalformedSampleError):
            code, status_code = "malformed_sample", status.HTTP_422_UNPROCESSABLE_ENTITY
        else:
            code, status_code = "rewards_error", status.HTTP_400_BAD_REQUEST
        return JSONResponse(status_code=status_code, content=_error_body(exc, code))


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RewardsStore] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """Build the application. ``store`` and ``dispatcher`` override the configured ones."""
    settings = settings or default_settings
    store = store or build_store(settings)
    dispatcher = dispatcher or build_dispatcher(settings)
    health_checker = HealthChecker()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting step rewards service", environment=settings.environment)

        phases = PhaseTable.from_file(settings.phases_file) if settings.phases_file else PhaseTable()

        await store.start()
        await dispatcher.start()

        engine = RewardsEngine(store, settings, phases=phases, dispatcher=dispatcher)
        health_checker.add_check("storage", storage_health_check(engine.store))
        app.state.engine = engine

        if settings.rollover_enabled:
            engine.rollover.start()

        yield

        logger.info("Shutting down step rewards service")
        await engine.close()
        await dispatcher.stop()
        await store.stop()

    app = FastAPI(
        title="Step Rewards Engine",
        description="Step validation, fraud scoring and phase-based rewards",
        version="0.1.0",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(create_health_router(health_checker))
    app.include_router(samples.router)
    app.include_router(ledger.router)
    app.include_router(phase.router)
    app.include_router(devices.router)
    app.include_router(admin.router)

    @app.get("/", status_code=status.HTTP_200_OK)
    async def root() -> dict:
        return {"service": settings.service_name, "version": "0.1.0"}

    return app


def main() -> None:
    setup_logging(default_settings.service_name, default_settings)
    uvicorn.run(
        create_app(),
        host=default_settings.host,
        port=default_settings.port,
        log_level=default_settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
