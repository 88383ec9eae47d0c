from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from deadman.channels.base import (
    AlertSnapshot,
    ChannelConfig,
    CheckSnapshot,
    DeliveryOutcome,
    PermanentFailure,
    TransientFailure,
)
from deadman.channels.registry import ChannelRegistry
from deadman.database import get_background_session_factory
from deadman.models.enums import DeliveryStatus
from deadman.services.check_store import CheckStore, store_guard, utcnow
from deadman.services.retry_policy import RetryPolicy
from deadman.utils.exceptions import StoreUnavailableError

logger = structlog.get_logger(__name__)


class DeliveryWorkerPool:
    """
    Fixed-size pool of delivery workers plus a lease reaper.

    Workers share nothing but the store: each one claims a QUEUED alert,
    delivers it outside any transaction and records the outcome under the
    lease it claimed. Alerts whose worker disappeared are returned to the
    queue by the reaper once their lease expires.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        size: int = 4,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        retry_policy: RetryPolicy | None = None,
        poll_interval_seconds: float = 5.0,
        delivery_timeout_seconds: float = 10.0,
        lease_timeout_seconds: float = 120.0,
        reaper_interval_seconds: float = 30.0,
        name: str = "delivery",
    ):
        if size < 1:
            raise ValueError("pool size must be at least 1")

        self.registry = registry
        self.size = size
        self.session_factory = session_factory or get_background_session_factory()
        self.retry_policy = retry_policy or RetryPolicy()
        self.poll_interval_seconds = poll_interval_seconds
        self.delivery_timeout_seconds = delivery_timeout_seconds
        self.lease_timeout = timedelta(seconds=lease_timeout_seconds)
        self.reaper_interval_seconds = reaper_interval_seconds
        self.name = name
        self.running = False

        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Run all workers and the reaper until ``stop`` is called."""
        self.running = True
        self._stopping.clear()
        logger.info(
            "delivery_pool_started",
            size=self.size,
            channels=len(self.registry),
            lease_timeout_seconds=self.lease_timeout.total_seconds(),
        )

        self._tasks = [
            asyncio.create_task(self._worker_loop(f"{self.name}-{index}"))
            for index in range(self.size)
        ]
        self._tasks.append(asyncio.create_task(self._reaper_loop()))

        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self, grace_seconds: float = 30.0) -> None:
        """
        Stop claiming new alerts and wait for in-flight deliveries.

        Workers still busy after ``grace_seconds`` are cancelled; their alerts
        stay RUNNING until the reaper requeues them.
        """
        self.running = False
        self._stopping.set()

        pending = [task for task in self._tasks if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning("delivery_workers_cancelled", count=len(still_running))

        logger.info("delivery_pool_stopped")

    async def _sleep(self, seconds: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)

    async def _worker_loop(self, worker_id: str) -> None:
        logger.debug("delivery_worker_started", worker_id=worker_id)

        while self.running:
            try:
                status = await self.run_once(worker_id)
                if status is None:
                    await self._sleep(self.poll_interval_seconds)
            except (StoreUnavailableError, DBAPIError) as exc:
                logger.warning(
                    "delivery_store_unavailable",
                    worker_id=worker_id,
                    error=str(exc),
                )
                await self._sleep(self.poll_interval_seconds)
            except Exception as exc:
                logger.error(
                    "delivery_worker_error",
                    worker_id=worker_id,
                    error=str(exc),
                    exc_info=True,
                )
                await self._sleep(self.poll_interval_seconds)

        logger.debug("delivery_worker_stopped", worker_id=worker_id)

    async def _reaper_loop(self) -> None:
        while self.running:
            try:
                await self.reap_once()
            except (StoreUnavailableError, DBAPIError) as exc:
                logger.warning("reaper_store_unavailable", error=str(exc))
            except Exception as exc:
                logger.error("reaper_error", error=str(exc), exc_info=True)
            await self._sleep(self.reaper_interval_seconds)

    async def run_once(
        self,
        worker_id: str,
        now: datetime | None = None,
    ) -> DeliveryStatus | None:
        """
        Claim and deliver a single alert.

        Args:
            worker_id: Lease holder identity
            now: Clock override for claim and completion

        Returns:
            The alert's resulting delivery status, or None when nothing was
            ready or the lease was lost before the outcome was recorded
        """
        async with self.session_factory() as db:
            store = CheckStore(db)

            with store_guard("claim_alert"):
                alert = await store.claim_next_queued_alert(worker_id, now=now)
                if alert is None:
                    await db.commit()
                    return None

                config = ChannelConfig.from_notification(alert.notification)
                check = CheckSnapshot.from_check(alert.check)
                snapshot = AlertSnapshot.from_alert(alert)
                inactive_reason = None
                if alert.notification.deleted:
                    inactive_reason = "notification_deleted"
                elif alert.check.deleted:
                    inactive_reason = "check_deleted"
                await db.commit()

            logger.info(
                "alert_delivery_started",
                alert_id=snapshot.alert_id,
                worker_id=worker_id,
                attempt=snapshot.attempt,
                notification_type=config.notification_type.value,
            )

            if inactive_reason is not None:
                outcome: DeliveryOutcome = PermanentFailure(inactive_reason)
            else:
                outcome = await self._deliver(config, check, snapshot)

            finished_at = now or utcnow()
            retry_at = None
            if isinstance(outcome, TransientFailure):
                retry_at = self.retry_policy.next_retry_at(snapshot.attempt, finished_at)

            with store_guard("finish_alert"):
                status = await store.finish_alert(
                    snapshot.alert_id,
                    outcome,
                    worker_id=worker_id,
                    attempt=snapshot.attempt,
                    retry_at=retry_at,
                    now=finished_at,
                )
                await db.commit()

        if status is None:
            logger.warning(
                "alert_lease_lost",
                alert_id=snapshot.alert_id,
                worker_id=worker_id,
                attempt=snapshot.attempt,
            )
        elif status == DeliveryStatus.DELIVERED:
            logger.info(
                "alert_delivered",
                alert_id=snapshot.alert_id,
                check_id=check.check_id,
                check_status=snapshot.check_status.value,
                attempt=snapshot.attempt,
            )
        elif status == DeliveryStatus.QUEUED:
            logger.warning(
                "alert_delivery_retry_scheduled",
                alert_id=snapshot.alert_id,
                attempt=snapshot.attempt,
                retry_at=retry_at.isoformat() if retry_at else None,
                reason=getattr(outcome, "reason", None),
            )
        else:
            logger.error(
                "alert_delivery_failed",
                alert_id=snapshot.alert_id,
                attempt=snapshot.attempt,
                reason=getattr(outcome, "reason", None),
            )
        return status

    async def _deliver(
        self,
        config: ChannelConfig,
        check: CheckSnapshot,
        alert: AlertSnapshot,
    ) -> DeliveryOutcome:
        channel = self.registry.get(config.notification_type)
        if channel is None:
            logger.error(
                "no_channel_for_notification_type",
                notification_type=config.notification_type.value,
                alert_id=alert.alert_id,
            )
            return PermanentFailure(
                f"unsupported_notification_type: {config.notification_type.value}"
            )

        try:
            return await asyncio.wait_for(
                channel.send(config, check, alert),
                timeout=self.delivery_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "alert_delivery_timeout",
                alert_id=alert.alert_id,
                timeout_seconds=self.delivery_timeout_seconds,
            )
            return TransientFailure("delivery_timeout")
        except Exception as exc:
            logger.error(
                "alert_delivery_error",
                alert_id=alert.alert_id,
                channel=channel.__class__.__name__,
                error=str(exc),
                exc_info=True,
            )
            return TransientFailure(f"channel_error: {exc}")

    async def reap_once(self, now: datetime | None = None) -> list[int]:
        """
        Requeue or fail RUNNING alerts whose lease has expired.

        Requeued alerts back off through the retry policy like any other
        transient failure.
        """
        async with self.session_factory() as db:
            store = CheckStore(db)
            with store_guard("reclaim_stale_running"):
                reclaimed = await store.reclaim_stale_running(
                    self.lease_timeout,
                    now=now,
                    retry_at=self.retry_policy.next_retry_at,
                )
                await db.commit()
        return reclaimed
