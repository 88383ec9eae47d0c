from __future__ import annotations

import secrets
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from deadman.models.check import Check, RetiredPingKey
from deadman.models.enums import CheckStatus, DeliveryStatus, PeriodUnits, ScheduleType
from deadman.models.notification_alert import NotificationAlert
from deadman.services.check_store import CheckStore, retry_on_conflict, utcnow
from deadman.services.schedule import Schedule, compute_overdue_at, validate_schedule
from deadman.services.status_evaluator import StatusEvaluator
from deadman.utils.exceptions import CheckNotFoundError

if TYPE_CHECKING:
    from deadman.schemas.check import CheckCreate, CheckUpdate

logger = structlog.get_logger(__name__)

PING_KEY_BYTES = 24

SCHEDULE_FIELDS = frozenset(
    {
        "schedule_type",
        "ping_period",
        "ping_period_units",
        "ping_cron_expression",
        "grace_period",
        "grace_period_units",
    }
)


class CheckService:
    """Business logic for check management."""

    def __init__(self, db: AsyncSession, max_attempts: int = 5):
        self.db = db
        self.store = CheckStore(db, max_attempts=max_attempts)
        self.evaluator = StatusEvaluator(db, max_attempts=max_attempts)
        self.max_attempts = max_attempts

    async def create_check(self, data: CheckCreate) -> Check:
        """
        Create a new check in CREATED state with a fresh ping key.

        Args:
            data: Check creation data, schedule already validated

        Returns:
            Created check
        """
        check = Check(
            **data.model_dump(),
            ping_key=await self._generate_ping_key(),
            status=CheckStatus.CREATED,
            version=1,
        )
        self.db.add(check)
        await self.db.flush()
        await self.db.refresh(check)

        logger.info(
            "check_created",
            check_id=check.id,
            check_uuid=str(check.uuid),
            schedule_type=check.schedule_type.value,
        )
        return check

    async def get_check(self, check_uuid: uuid.UUID) -> Check | None:
        """
        Get a live check by public UUID.

        Args:
            check_uuid: Check public UUID

        Returns:
            Check if found, None otherwise
        """
        stmt = (
            select(Check)
            .where(Check.uuid == check_uuid, Check.deleted == False)  # noqa: E712
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def require_check(self, check_uuid: uuid.UUID) -> Check:
        check = await self.get_check(check_uuid)
        if check is None:
            raise CheckNotFoundError(check_uuid)
        return check

    async def list_checks(
        self,
        skip: int = 0,
        limit: int = 100,
        project_id: int | None = None,
        status: CheckStatus | None = None,
    ) -> tuple[list[Check], int]:
        """
        List live checks with pagination and total count.

        Returns:
            A tuple containing the list of checks and the total count
        """
        base_stmt = select(Check).where(Check.deleted == False)  # noqa: E712
        if project_id is not None:
            base_stmt = base_stmt.where(Check.project_id == project_id)
        if status is not None:
            base_stmt = base_stmt.where(Check.status == status)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = base_stmt.order_by(Check.id.asc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def update_check(
        self,
        check_uuid: uuid.UUID,
        data: CheckUpdate,
    ) -> Check | None:
        """
        Update a check's descriptive and schedule fields.

        Schedule changes are validated against the merged configuration and
        the stored overdue instant is recomputed in the same guarded update.

        Returns:
            Updated check if found, None otherwise

        Raises:
            ScheduleValidationError: If the merged schedule is invalid
        """
        existing = await self.get_check(check_uuid)
        if existing is None:
            return None

        changes = data.model_dump(exclude_unset=True)
        check_id = existing.id

        async def attempt() -> Check | None:
            check = await self.store.get_check(check_id)
            if check is None:
                raise CheckNotFoundError(check_uuid)

            values = dict(changes)
            if SCHEDULE_FIELDS & values.keys():
                schedule = _merged_schedule(check, values)
                validate_schedule(schedule)
                if check.status in (CheckStatus.UP, CheckStatus.DOWN):
                    values["overdue_at"] = compute_overdue_at(
                        schedule, check.last_ping_at, check.resumed_at
                    )

            won = await self.store.update_check_fields(
                check.id, check.version, **values
            )
            if not won:
                return None
            return await self.store.get_check(check.id)

        check = await retry_on_conflict(
            attempt, check_id=check_id, max_attempts=self.max_attempts
        )
        logger.info("check_updated", check_id=check.id, fields=sorted(changes))
        return check

    async def delete_check(self, check_uuid: uuid.UUID) -> bool:
        """
        Soft-delete a check.

        A deleted check no longer accepts pings and is skipped by the sweep;
        its in-flight alerts fail permanently when claimed.

        Returns:
            True if deleted, False if not found
        """
        existing = await self.get_check(check_uuid)
        if existing is None:
            return False

        check_id = existing.id

        async def attempt() -> bool | None:
            check = await self.store.get_check(check_id)
            if check is None:
                return True
            won = await self.store.update_check_fields(
                check.id,
                check.version,
                deleted=True,
                deleted_at=utcnow(),
                overdue_at=None,
            )
            return True if won else None

        await retry_on_conflict(
            attempt, check_id=check_id, max_attempts=self.max_attempts
        )
        logger.info("check_deleted", check_id=check_id)
        return True

    async def rotate_ping_key(self, check_uuid: uuid.UUID) -> Check:
        """
        Replace the check's ping key. The old key is retired permanently.

        Raises:
            CheckNotFoundError: If the check does not exist
        """
        check_id = (await self.require_check(check_uuid)).id

        async def attempt() -> Check | None:
            check = await self.store.get_check(check_id)
            if check is None:
                raise CheckNotFoundError(check_uuid)

            old_key = check.ping_key
            won = await self.store.update_check_fields(
                check.id,
                check.version,
                ping_key=await self._generate_ping_key(),
            )
            if not won:
                return None

            self.db.add(RetiredPingKey(ping_key=old_key, check_id=check.id))
            await self.db.flush()
            return await self.store.get_check(check.id)

        check = await retry_on_conflict(
            attempt, check_id=check_id, max_attempts=self.max_attempts
        )
        logger.info("ping_key_rotated", check_id=check.id)
        return check

    async def pause_check(
        self, check_uuid: uuid.UUID, now: datetime | None = None
    ) -> Check:
        check = await self.require_check(check_uuid)
        return await self.evaluator.pause(check.id, now=now)

    async def resume_check(
        self, check_uuid: uuid.UUID, now: datetime | None = None
    ) -> Check:
        check = await self.require_check(check_uuid)
        return await self.evaluator.resume(check.id, now=now)

    async def list_check_alerts(
        self,
        check_uuid: uuid.UUID,
        skip: int = 0,
        limit: int = 100,
        delivery_status: DeliveryStatus | None = None,
    ) -> tuple[list[NotificationAlert], int]:
        check = await self.require_check(check_uuid)
        return await self.store.list_alerts(
            skip=skip,
            limit=limit,
            check_id=check.id,
            delivery_status=delivery_status,
        )

    async def _generate_ping_key(self) -> str:
        """Generate a ping key never used by any check, live, deleted or retired."""
        while True:
            candidate = secrets.token_urlsafe(PING_KEY_BYTES)
            in_use = await self.db.execute(
                select(Check.id).where(Check.ping_key == candidate)
            )
            if in_use.first() is not None:
                continue
            retired = await self.db.execute(
                select(RetiredPingKey.id).where(RetiredPingKey.ping_key == candidate)
            )
            if retired.first() is None:
                return candidate


def _merged_schedule(check: Check, values: dict) -> Schedule:
    def pick(field: str):
        return values[field] if field in values else getattr(check, field)

    period_units = pick("ping_period_units")
    return Schedule(
        schedule_type=ScheduleType(pick("schedule_type")),
        grace_period=pick("grace_period"),
        grace_units=PeriodUnits(pick("grace_period_units")),
        period=pick("ping_period"),
        period_units=PeriodUnits(period_units) if period_units is not None else None,
        cron_expression=pick("ping_cron_expression"),
    )
