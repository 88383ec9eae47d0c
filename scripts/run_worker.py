#!/usr/bin/env python3
"""Run the status sweeper and the alert delivery pool."""
from __future__ import annotations

import asyncio

from deadman.channels.registry import build_channel_registry
from deadman.config import get_settings
from deadman.database import close_db
from deadman.services.retry_policy import RetryPolicy
from deadman.utils.logging import get_logger, setup_logging
from deadman.workers.delivery_pool import DeliveryWorkerPool
from deadman.workers.sweeper import StatusSweeper

setup_logging()
logger = get_logger(__name__)

settings = get_settings()


async def main() -> None:
    """Run the sweeper and the delivery pool until interrupted."""
    logger.info("starting_workers")

    sweeper = StatusSweeper(
        interval_seconds=settings.sweep_interval_seconds,
        batch_size=settings.sweep_batch_size,
        max_attempts=settings.transition_max_attempts,
    )

    registry = build_channel_registry(settings)
    if not settings.smtp_host:
        logger.warning("email_channel_unconfigured")

    pool = DeliveryWorkerPool(
        registry=registry,
        size=settings.delivery_workers,
        retry_policy=RetryPolicy.from_settings(settings),
        poll_interval_seconds=settings.delivery_poll_interval_seconds,
        delivery_timeout_seconds=settings.delivery_timeout_seconds,
        lease_timeout_seconds=settings.alert_lease_timeout_seconds,
        reaper_interval_seconds=settings.reaper_interval_seconds,
    )

    try:
        await asyncio.gather(sweeper.start(), pool.start())
    except asyncio.CancelledError:
        logger.info("shutdown_requested")
        await sweeper.stop()
        await pool.stop()
    except Exception as exc:
        logger.error("worker_error", error=str(exc), exc_info=True)
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("workers_stopped")
