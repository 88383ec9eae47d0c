from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deadman.api.v1 import alerts, checks, notifications, ping
from deadman.channels.registry import build_channel_registry
from deadman.config import get_settings
from deadman.database import close_db, init_db
from deadman.services.retry_policy import RetryPolicy
from deadman.utils.exceptions import (
    AlertNotFoundError,
    CheckNotFoundError,
    ConcurrencyConflictError,
    DeadmanException,
    InvalidTransitionError,
    NotificationNotFoundError,
    ScheduleValidationError,
    StoreUnavailableError,
)
from deadman.utils.logging import get_logger, setup_logging
from deadman.workers.delivery_pool import DeliveryWorkerPool
from deadman.workers.sweeper import StatusSweeper

# Setup logging
setup_logging()
logger = get_logger(__name__)

settings = get_settings()

ERROR_STATUS_CODES: dict[type[DeadmanException], int] = {
    CheckNotFoundError: status.HTTP_404_NOT_FOUND,
    NotificationNotFoundError: status.HTTP_404_NOT_FOUND,
    AlertNotFoundError: status.HTTP_404_NOT_FOUND,
    ScheduleValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    ConcurrencyConflictError: status.HTTP_409_CONFLICT,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan events.

    Handles startup and shutdown tasks. When ``run_background_jobs`` is set
    the sweeper and the delivery pool run inside the API process.
    """
    logger.info("application_startup")

    # Initialize database (development only - use Alembic in production)
    await init_db()

    sweeper: StatusSweeper | None = None
    pool: DeliveryWorkerPool | None = None
    tasks: list[asyncio.Task] = []

    if settings.run_background_jobs:
        sweeper = StatusSweeper(
            interval_seconds=settings.sweep_interval_seconds,
            batch_size=settings.sweep_batch_size,
            max_attempts=settings.transition_max_attempts,
        )
        pool = DeliveryWorkerPool(
            registry=build_channel_registry(settings),
            size=settings.delivery_workers,
            retry_policy=RetryPolicy.from_settings(settings),
            poll_interval_seconds=settings.delivery_poll_interval_seconds,
            delivery_timeout_seconds=settings.delivery_timeout_seconds,
            lease_timeout_seconds=settings.alert_lease_timeout_seconds,
            reaper_interval_seconds=settings.reaper_interval_seconds,
        )
        tasks = [asyncio.create_task(sweeper.start()), asyncio.create_task(pool.start())]
        logger.info("background_jobs_started")

    yield

    # Cleanup
    if sweeper is not None:
        await sweeper.stop()
    if pool is not None:
        await pool.stop()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)

    await close_db()
    logger.info("application_shutdown")


# Create FastAPI app
app = FastAPI(
    title="Dead Man's Switch API",
    description="Heartbeat monitoring for scheduled jobs and services",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DeadmanException)
async def domain_exception_handler(request: Request, exc: DeadmanException) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# Include routers
app.include_router(
    ping.router,
    prefix="/ping",
    tags=["ping"],
)
app.include_router(
    checks.router,
    prefix="/api/v1/checks",
    tags=["checks"],
)
app.include_router(
    notifications.router,
    prefix="/api/v1/notifications",
    tags=["notifications"],
)
app.include_router(
    alerts.router,
    prefix="/api/v1/alerts",
    tags=["alerts"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "Dead Man's Switch API",
        "version": "1.0.0",
        "docs": "/docs",
    }
