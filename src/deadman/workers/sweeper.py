from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime

import structlog
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deadman.database import get_background_session_factory
from deadman.services.check_store import store_guard
from deadman.services.status_evaluator import StatusEvaluator, SweepReport
from deadman.utils.exceptions import StoreUnavailableError

logger = structlog.get_logger(__name__)


class StatusSweeper:
    """Periodically moves overdue checks to DOWN."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        interval_seconds: float = 5.0,
        batch_size: int = 500,
        max_attempts: int = 5,
    ):
        self.session_factory = session_factory or get_background_session_factory()
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.running = False
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the sweep loop."""
        self.running = True
        self._stopping.clear()
        logger.info("sweeper_started", interval_seconds=self.interval_seconds)

        while self.running:
            try:
                await self.run_once()
            except (StoreUnavailableError, DBAPIError) as exc:
                logger.warning("sweep_store_unavailable", error=str(exc))
            except Exception as exc:
                logger.error("sweeper_error", error=str(exc), exc_info=True)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self.interval_seconds
                )

    async def stop(self) -> None:
        """Stop the sweep loop after the current pass."""
        self.running = False
        self._stopping.set()
        logger.info("sweeper_stopped")

    async def run_once(self, now: datetime | None = None) -> SweepReport:
        """Run one sweep pass in a fresh session."""
        async with self.session_factory() as db:
            evaluator = StatusEvaluator(
                db,
                max_attempts=self.max_attempts,
                batch_size=self.batch_size,
            )
            with store_guard("sweep"):
                report = await evaluator.sweep(now)
                await db.commit()
        return report
