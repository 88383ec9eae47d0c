from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from deadman.models.check import Check
from deadman.models.enums import CheckStatus, requires_alert
from deadman.services.alert_dispatcher import AlertDispatcher
from deadman.services.check_store import (
    CheckStore,
    PingResult,
    retry_on_conflict,
    utcnow,
)
from deadman.services.schedule import Schedule, compute_overdue_at, is_overdue
from deadman.utils.exceptions import CheckNotFoundError, InvalidTransitionError

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    """Counters for one sweep pass."""

    scanned: int = 0
    transitioned: int = 0
    conflicts: int = 0
    alerts_enqueued: int = 0


class StatusEvaluator:
    """
    Drives check status transitions from pings, sweeps and management calls.

    Both the ping path and the sweep path move a check only through a
    version-guarded conditional update, so whichever commits first wins and
    the other observes the new state.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: AlertDispatcher | None = None,
        max_attempts: int = 5,
        batch_size: int = 500,
    ):
        self.db = db
        self.store = CheckStore(db, max_attempts=max_attempts)
        self.dispatcher = dispatcher or AlertDispatcher(self.store)
        self.max_attempts = max_attempts
        self.batch_size = batch_size

    async def handle_ping(
        self,
        ping_key: str,
        at: datetime | None = None,
    ) -> PingResult | None:
        """
        Record a ping and enqueue the recovery alert when a DOWN check comes back.

        The caller owns the transaction; the status change and the recovery
        alerts are committed together.

        Args:
            ping_key: Public ping key from the request path
            at: Ping instant, defaults to now

        Returns:
            PingResult, or None if the key does not belong to a live check
        """
        at = at or utcnow()
        result = await self.store.record_ping(ping_key, at)
        if result is None:
            logger.warning("ping_unknown_key")
            return None

        logger.info(
            "ping_received",
            check_id=result.check.id,
            previous_status=result.previous_status.value,
            status=result.status.value,
            applied=result.applied,
        )

        if result.applied and requires_alert(result.previous_status, result.status):
            await self.dispatcher.dispatch(result.check, result.status, now=at)

        return result

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """
        Move every overdue UP check to DOWN and enqueue its alerts.

        Checks are paged by id. Each transition and its alerts are committed
        before the next check is evaluated; a lost conditional update means
        another writer already changed the check and is counted as a conflict.

        Args:
            now: Evaluation instant, defaults to now

        Returns:
            SweepReport with per-pass counters
        """
        now = now or utcnow()
        report = SweepReport()
        cursor: int | None = None

        while True:
            page = await self.store.get_due_checks(
                now,
                statuses=(CheckStatus.UP,),
                limit=self.batch_size,
                after_id=cursor,
            )
            if not page:
                break

            for check in page:
                report.scanned += 1
                cursor = check.id
                await self._evaluate(check, now, report)

            if len(page) < self.batch_size:
                break

        if report.transitioned or report.conflicts:
            logger.info(
                "sweep_completed",
                scanned=report.scanned,
                transitioned=report.transitioned,
                conflicts=report.conflicts,
                alerts_enqueued=report.alerts_enqueued,
            )
        return report

    async def _evaluate(self, check: Check, now: datetime, report: SweepReport) -> None:
        schedule = Schedule.from_check(check)
        if not is_overdue(schedule, check.last_ping_at, now, check.resumed_at):
            return

        won = await self.store.try_transition(
            check.id,
            CheckStatus.UP,
            CheckStatus.DOWN,
            expected_version=check.version,
            now=now,
        )
        if not won:
            report.conflicts += 1
            logger.debug("sweep_transition_skipped", check_id=check.id)
            return

        dispatched = await self.dispatcher.dispatch(check, CheckStatus.DOWN, now=now)
        await self.db.commit()

        report.transitioned += 1
        report.alerts_enqueued += len(dispatched.created)

    async def pause(self, check_id: int, now: datetime | None = None) -> Check:
        """
        Pause a check. Pausing an already paused check is a no-op.

        Raises:
            CheckNotFoundError: If the check does not exist
            ConcurrencyConflictError: If the check kept changing underneath us
        """
        now = now or utcnow()

        async def attempt() -> Check | None:
            check = await self._require(check_id)
            current = CheckStatus(check.status)
            if current == CheckStatus.PAUSED:
                return check
            won = await self.store.try_transition(
                check.id,
                current,
                CheckStatus.PAUSED,
                expected_version=check.version,
                now=now,
                overdue_at=None,
            )
            if not won:
                return None
            return await self._require(check_id)

        return await retry_on_conflict(
            attempt, check_id=check_id, max_attempts=self.max_attempts
        )

    async def resume(self, check_id: int, now: datetime | None = None) -> Check:
        """
        Resume a paused check.

        The overdue baseline restarts at the resume instant so that the time
        spent paused never counts against the check. A check that was never
        pinged returns to CREATED, otherwise it returns to UP. Resuming does
        not enqueue any alert.

        Raises:
            CheckNotFoundError: If the check does not exist
            InvalidTransitionError: If the check is not paused
            ConcurrencyConflictError: If the check kept changing underneath us
        """
        now = now or utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        async def attempt() -> Check | None:
            check = await self._require(check_id)
            current = CheckStatus(check.status)
            if current != CheckStatus.PAUSED:
                raise InvalidTransitionError(
                    check_id, current.value, CheckStatus.UP.value
                )

            target = (
                CheckStatus.CREATED if check.last_ping_at is None else CheckStatus.UP
            )
            overdue_at = compute_overdue_at(
                Schedule.from_check(check), check.last_ping_at, now
            )
            won = await self.store.try_transition(
                check.id,
                current,
                target,
                expected_version=check.version,
                now=now,
                resumed_at=now,
                overdue_at=overdue_at,
            )
            if not won:
                return None
            return await self._require(check_id)

        return await retry_on_conflict(
            attempt, check_id=check_id, max_attempts=self.max_attempts
        )

    async def _require(self, check_id: int) -> Check:
        check = await self.store.get_check(check_id)
        if check is None:
            raise CheckNotFoundError(check_id)
        return check
