from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TypeVar

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from deadman.channels.base import (
    Delivered,
    DeliveryOutcome,
    PermanentFailure,
    TransientFailure,
)
from deadman.models.check import Check, check_notifications
from deadman.models.enums import (
    EVALUATED_STATUSES,
    CheckStatus,
    DeliveryStatus,
    can_transition,
)
from deadman.models.notification import Notification
from deadman.models.notification_alert import IN_FLIGHT_PREDICATE, NotificationAlert
from deadman.services.schedule import Schedule, compute_overdue_at
from deadman.utils.exceptions import (
    CheckNotFoundError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    StoreUnavailableError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LEASE_EXPIRED_REASON = "lease_expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EnqueueResult(str, Enum):
    """Outcome of an idempotent alert insert."""

    CREATED = "CREATED"
    ALREADY_EXISTS = "ALREADY_EXISTS"


@dataclass
class PingResult:
    """What a ping did to its check."""

    check: Check
    previous_status: CheckStatus
    status: CheckStatus
    applied: bool

    @property
    def transitioned(self) -> bool:
        return self.applied and self.previous_status != self.status


@contextmanager
def store_guard(operation: str) -> Iterator[None]:
    """Translate driver-level connectivity failures into StoreUnavailableError."""
    try:
        yield
    except DBAPIError as exc:
        if exc.connection_invalidated or isinstance(exc.orig, OSError):
            raise StoreUnavailableError(operation, str(exc)) from exc
        raise
    except (OSError, ConnectionError) as exc:
        raise StoreUnavailableError(operation, str(exc)) from exc


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T | None]],
    *,
    check_id: int | str,
    max_attempts: int = 5,
) -> T:
    """
    Run an optimistic operation until it wins its conditional update.

    ``operation`` re-reads current state and returns None when its conditional
    update matched no rows.

    Raises:
        ConcurrencyConflictError: If every attempt lost the race
    """
    for attempt in range(1, max_attempts + 1):
        result = await operation()
        if result is not None:
            return result
        logger.debug(
            "optimistic_update_conflict",
            check_id=check_id,
            attempt=attempt,
            max_attempts=max_attempts,
        )
    raise ConcurrencyConflictError(check_id, max_attempts)


class CheckStore:
    """
    Atomic conditional primitives over checks and notification alerts.

    Every state change is a single conditional UPDATE or an
    INSERT ... ON CONFLICT DO NOTHING; callers own the transaction and commit.
    """

    def __init__(self, db: AsyncSession, max_attempts: int = 5):
        self.db = db
        self.max_attempts = max_attempts

    @property
    def dialect_name(self) -> str:
        bind = self.db.get_bind()
        return bind.dialect.name if bind is not None else ""

    # ── Checks ────────────────────────────────────────────────────────────

    async def get_check(self, check_id: int) -> Check | None:
        stmt = (
            select(Check)
            .where(Check.id == check_id, Check.deleted == False)  # noqa: E712
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_check_by_ping_key(self, ping_key: str) -> Check | None:
        stmt = (
            select(Check)
            .where(Check.ping_key == ping_key, Check.deleted == False)  # noqa: E712
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_due_checks(
        self,
        now: datetime,
        statuses: Sequence[CheckStatus] = EVALUATED_STATUSES,
        limit: int | None = None,
        after_id: int | None = None,
    ) -> list[Check]:
        """
        Return live checks whose stored overdue instant is at or before ``now``.

        Args:
            now: Evaluation instant
            statuses: Statuses to include
            limit: Maximum number of checks to return
            after_id: Keyset cursor, only checks with a larger id are returned

        Returns:
            Due checks ordered by id
        """
        stmt = (
            select(Check)
            .where(
                Check.deleted == False,  # noqa: E712
                Check.status.in_(list(statuses)),
                Check.overdue_at.is_not(None),
                Check.overdue_at <= now,
            )
            .order_by(Check.id.asc())
            .execution_options(populate_existing=True)
        )
        if after_id is not None:
            stmt = stmt.where(Check.id > after_id)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def try_transition(
        self,
        check_id: int,
        from_status: CheckStatus,
        to_status: CheckStatus,
        expected_version: int,
        now: datetime | None = None,
        **values: object,
    ) -> bool:
        """
        Move a check between statuses if nobody changed it since it was read.

        Args:
            check_id: Internal check ID
            from_status: Status the caller observed
            to_status: Target status
            expected_version: Version the caller observed
            now: Timestamp recorded as ``updated_at``
            **values: Extra columns written in the same statement

        Returns:
            True if this call won the conditional update
        """
        if not can_transition(from_status, to_status):
            raise InvalidTransitionError(check_id, from_status.value, to_status.value)

        stmt = (
            update(Check)
            .where(
                Check.id == check_id,
                Check.status == from_status,
                Check.version == expected_version,
                Check.deleted == False,  # noqa: E712
            )
            .values(
                status=to_status,
                version=Check.version + 1,
                updated_at=now or utcnow(),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        won = result.rowcount == 1

        if won:
            logger.info(
                "check_status_changed",
                check_id=check_id,
                from_status=from_status.value,
                to_status=to_status.value,
                version=expected_version + 1,
            )
        return won

    async def update_check_fields(
        self,
        check_id: int,
        expected_version: int,
        **values: object,
    ) -> bool:
        """Write non-status columns under the same version guard."""
        stmt = (
            update(Check)
            .where(
                Check.id == check_id,
                Check.version == expected_version,
                Check.deleted == False,  # noqa: E712
            )
            .values(version=Check.version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def record_ping(self, ping_key: str, at: datetime) -> PingResult | None:
        """
        Apply an inbound ping.

        A ping not newer than the stored ``last_ping_at`` is ignored. Otherwise
        ``last_ping_at`` moves forward and CREATED/UP/DOWN checks become UP; a
        PAUSED check only records the ping.

        Args:
            ping_key: Public ping key
            at: Ping timestamp

        Returns:
            PingResult, or None if no live check uses ``ping_key``

        Raises:
            ConcurrencyConflictError: If the check kept changing underneath us
        """
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)

        check_id: int | None = None
        for attempt in range(1, self.max_attempts + 1):
            check = await self.get_check_by_ping_key(ping_key)
            if check is None:
                return None
            check_id = check.id

            previous = CheckStatus(check.status)
            if check.last_ping_at is not None and at <= check.last_ping_at:
                logger.debug(
                    "stale_ping_ignored",
                    check_id=check.id,
                    ping_at=at.isoformat(),
                    last_ping_at=check.last_ping_at.isoformat(),
                )
                return PingResult(
                    check=check,
                    previous_status=previous,
                    status=previous,
                    applied=False,
                )

            new_status = previous if previous == CheckStatus.PAUSED else CheckStatus.UP
            overdue_at = None
            if new_status != CheckStatus.PAUSED:
                overdue_at = compute_overdue_at(
                    Schedule.from_check(check), at, check.resumed_at
                )

            stmt = (
                update(Check)
                .where(
                    Check.id == check.id,
                    Check.version == check.version,
                    Check.deleted == False,  # noqa: E712
                )
                .values(
                    status=new_status,
                    last_ping_at=at,
                    overdue_at=overdue_at,
                    version=Check.version + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            if result.rowcount == 1:
                refreshed = await self.get_check(check.id)
                if refreshed is None:
                    raise CheckNotFoundError(check.id)
                return PingResult(
                    check=refreshed,
                    previous_status=previous,
                    status=new_status,
                    applied=True,
                )

            logger.debug(
                "ping_update_conflict",
                check_id=check.id,
                attempt=attempt,
            )

        raise ConcurrencyConflictError(check_id, self.max_attempts)

    # ── Notifications ─────────────────────────────────────────────────────

    async def get_bound_notifications(self, check: Check) -> list[Notification]:
        """
        List live notifications for a check.

        Includes notifications bound to the check directly and project-wide
        notifications of the check's project.
        """
        bound_ids = select(check_notifications.c.notification_id).where(
            check_notifications.c.check_id == check.id
        )
        conditions = [Notification.id.in_(bound_ids)]
        if check.project_id is not None:
            conditions.append(Notification.project_id == check.project_id)

        stmt = (
            select(Notification)
            .where(Notification.deleted == False, or_(*conditions))  # noqa: E712
            .order_by(Notification.id.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ── Alerts ────────────────────────────────────────────────────────────

    async def try_enqueue_alert(
        self,
        check_id: int,
        notification_id: int,
        check_status: CheckStatus,
        retries: int,
        now: datetime | None = None,
    ) -> EnqueueResult:
        """
        Insert a QUEUED alert unless one is already in flight.

        The partial unique index on (check, notification, check_status) over
        QUEUED/RUNNING rows makes this safe under concurrent dispatch.
        """
        now = now or utcnow()
        values = dict(
            check_id=check_id,
            notification_id=notification_id,
            check_status=check_status,
            delivery_status=DeliveryStatus.QUEUED,
            retries_remaining=retries,
            attempts=0,
            available_at=now,
            created_at=now,
        )
        insert_fn = pg_insert if self.dialect_name == "postgresql" else sqlite_insert
        stmt = (
            insert_fn(NotificationAlert)
            .values(**values)
            .on_conflict_do_nothing(
                index_elements=["check_id", "notification_id", "check_status"],
                index_where=IN_FLIGHT_PREDICATE,
            )
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 1:
            return EnqueueResult.CREATED
        return EnqueueResult.ALREADY_EXISTS

    async def get_alert(self, alert_id: int) -> NotificationAlert | None:
        stmt = (
            select(NotificationAlert)
            .options(
                joinedload(NotificationAlert.check),
                joinedload(NotificationAlert.notification),
            )
            .where(NotificationAlert.id == alert_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def claim_next_queued_alert(
        self,
        worker_id: str,
        now: datetime | None = None,
    ) -> NotificationAlert | None:
        """
        Claim the oldest QUEUED alert that is ready, moving it to RUNNING.

        Args:
            worker_id: Identity recorded as the lease holder
            now: Claim instant; alerts backing off past it are skipped

        Returns:
            The claimed alert with its check and notification loaded, or None
        """
        now = now or utcnow()

        for _ in range(self.max_attempts):
            candidate = (
                select(NotificationAlert.id)
                .where(
                    NotificationAlert.delivery_status == DeliveryStatus.QUEUED,
                    NotificationAlert.available_at <= now,
                )
                .order_by(NotificationAlert.created_at.asc(), NotificationAlert.id.asc())
                .limit(1)
            )
            if self.dialect_name == "postgresql":
                candidate = candidate.with_for_update(skip_locked=True)

            alert_id = (await self.db.execute(candidate)).scalar_one_or_none()
            if alert_id is None:
                return None

            claim = (
                update(NotificationAlert)
                .where(
                    NotificationAlert.id == alert_id,
                    NotificationAlert.delivery_status == DeliveryStatus.QUEUED,
                )
                .values(
                    delivery_status=DeliveryStatus.RUNNING,
                    claimed_by=worker_id,
                    claimed_at=now,
                    attempts=NotificationAlert.attempts + 1,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(claim)
            if result.rowcount == 1:
                logger.debug("alert_claimed", alert_id=alert_id, worker_id=worker_id)
                return await self.get_alert(alert_id)

            logger.debug("alert_claim_lost", alert_id=alert_id, worker_id=worker_id)

        return None

    async def finish_alert(
        self,
        alert_id: int,
        outcome: DeliveryOutcome,
        *,
        worker_id: str,
        attempt: int,
        retry_at: datetime | None = None,
        now: datetime | None = None,
    ) -> DeliveryStatus | None:
        """
        Record the outcome of a delivery attempt.

        The update is fenced on the lease (RUNNING, worker, attempt number) so a
        worker whose lease was reclaimed cannot overwrite a newer attempt.

        Returns:
            The resulting delivery status, or None if the lease was lost
        """
        now = now or utcnow()
        fence = (
            NotificationAlert.id == alert_id,
            NotificationAlert.delivery_status == DeliveryStatus.RUNNING,
            NotificationAlert.claimed_by == worker_id,
            NotificationAlert.attempts == attempt,
        )

        if isinstance(outcome, Delivered):
            won = await self._update_alert(
                fence,
                delivery_status=DeliveryStatus.DELIVERED,
                finished_at=now,
                last_error=None,
            )
            return DeliveryStatus.DELIVERED if won else None

        if isinstance(outcome, PermanentFailure):
            won = await self._update_alert(
                fence,
                delivery_status=DeliveryStatus.FAILED,
                finished_at=now,
                last_error=outcome.reason[:1000],
            )
            return DeliveryStatus.FAILED if won else None

        if isinstance(outcome, TransientFailure):
            requeued = await self._update_alert(
                (*fence, NotificationAlert.retries_remaining > 0),
                delivery_status=DeliveryStatus.QUEUED,
                retries_remaining=NotificationAlert.retries_remaining - 1,
                available_at=retry_at or now,
                claimed_by=None,
                claimed_at=None,
                last_error=outcome.reason[:1000],
            )
            if requeued:
                return DeliveryStatus.QUEUED

            exhausted = await self._update_alert(
                (*fence, NotificationAlert.retries_remaining <= 0),
                delivery_status=DeliveryStatus.FAILED,
                finished_at=now,
                last_error=outcome.reason[:1000],
            )
            return DeliveryStatus.FAILED if exhausted else None

        raise TypeError(f"Unknown delivery outcome: {outcome!r}")

    async def reclaim_stale_running(
        self,
        lease_timeout: timedelta,
        now: datetime | None = None,
        retry_at: Callable[[int, datetime], datetime] | None = None,
    ) -> list[int]:
        """
        Recover alerts whose worker vanished mid-attempt.

        The lost attempt counts like a transient failure: the alert returns to
        QUEUED with one retry fewer, or becomes FAILED when none remain.

        Args:
            lease_timeout: How long a RUNNING alert may go without finishing
            now: Reclaim instant
            retry_at: Maps (attempt, now) to when a requeued alert becomes
                claimable again; immediately if omitted

        Returns:
            IDs of every reclaimed alert
        """
        now = now or utcnow()
        cutoff = now - lease_timeout
        stale = (
            NotificationAlert.delivery_status == DeliveryStatus.RUNNING,
            NotificationAlert.claimed_at < cutoff,
        )

        candidates = await self.db.execute(
            select(NotificationAlert.id, NotificationAlert.attempts)
            .where(*stale, NotificationAlert.retries_remaining > 0)
            .order_by(NotificationAlert.id.asc())
        )
        requeued: list[int] = []
        for alert_id, attempts in candidates.all():
            # Fenced on the attempt read above.
            won = await self._update_alert(
                (
                    *stale,
                    NotificationAlert.id == alert_id,
                    NotificationAlert.attempts == attempts,
                    NotificationAlert.retries_remaining > 0,
                ),
                delivery_status=DeliveryStatus.QUEUED,
                retries_remaining=NotificationAlert.retries_remaining - 1,
                available_at=retry_at(attempts, now) if retry_at else now,
                claimed_by=None,
                claimed_at=None,
                last_error=LEASE_EXPIRED_REASON,
            )
            if won:
                requeued.append(alert_id)

        fail = (
            update(NotificationAlert)
            .where(*stale, NotificationAlert.retries_remaining <= 0)
            .values(
                delivery_status=DeliveryStatus.FAILED,
                finished_at=now,
                last_error=LEASE_EXPIRED_REASON,
            )
            .returning(NotificationAlert.id)
            .execution_options(synchronize_session=False)
        )
        failed = list((await self.db.execute(fail)).scalars().all())

        if requeued or failed:
            logger.warning(
                "stale_alerts_reclaimed",
                requeued=requeued,
                failed=failed,
                lease_timeout_seconds=lease_timeout.total_seconds(),
            )
        return requeued + failed

    async def list_alerts(
        self,
        skip: int = 0,
        limit: int = 100,
        check_id: int | None = None,
        delivery_status: DeliveryStatus | None = None,
    ) -> tuple[list[NotificationAlert], int]:
        """
        List alerts with pagination and filters.

        Returns:
            A tuple containing the list of alerts and the total count
        """
        base_stmt = select(NotificationAlert)

        if check_id is not None:
            base_stmt = base_stmt.where(NotificationAlert.check_id == check_id)

        if delivery_status is not None:
            base_stmt = base_stmt.where(
                NotificationAlert.delivery_status == delivery_status
            )

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            base_stmt.order_by(
                NotificationAlert.created_at.desc(), NotificationAlert.id.desc()
            )
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def _update_alert(self, conditions: Sequence, **values: object) -> bool:
        stmt = (
            update(NotificationAlert)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1
