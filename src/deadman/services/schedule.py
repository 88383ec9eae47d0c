"""Schedule calculator.

Pure functions that turn a check's schedule configuration and last ping into
the instant after which the check is overdue. All instants are UTC.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

from deadman.models.enums import PeriodUnits, ScheduleType
from deadman.utils.exceptions import ScheduleValidationError

if TYPE_CHECKING:
    from deadman.models.check import Check


@dataclass(frozen=True)
class Schedule:
    """Schedule and grace configuration of a single check."""

    schedule_type: ScheduleType
    grace_period: int
    grace_units: PeriodUnits
    period: int | None = None
    period_units: PeriodUnits | None = None
    cron_expression: str | None = None

    @classmethod
    def from_check(cls, check: Check) -> Schedule:
        return cls(
            schedule_type=ScheduleType(check.schedule_type),
            grace_period=check.grace_period,
            grace_units=PeriodUnits(check.grace_period_units),
            period=check.ping_period,
            period_units=(
                PeriodUnits(check.ping_period_units)
                if check.ping_period_units is not None
                else None
            ),
            cron_expression=check.ping_cron_expression,
        )

    @property
    def grace(self) -> timedelta:
        return self.grace_units.to_timedelta(self.grace_period)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_cron(expression: str) -> CronTrigger:
    """
    Parse a standard five-field crontab expression.

    Raises:
        ScheduleValidationError: If the expression is not valid
    """
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone.utc)
    except (ValueError, TypeError) as exc:
        raise ScheduleValidationError(
            f"invalid cron expression {expression!r}: {exc}"
        ) from exc


def validate_schedule(schedule: Schedule) -> None:
    """
    Reject incomplete or malformed schedules before they are persisted.

    Args:
        schedule: Schedule to validate

    Raises:
        ScheduleValidationError: If any field is missing or invalid
    """
    if schedule.grace_period is None or schedule.grace_period < 0:
        raise ScheduleValidationError("grace period must be zero or positive")
    if schedule.grace_units is None:
        raise ScheduleValidationError("grace period units are required")

    if schedule.schedule_type == ScheduleType.SIMPLE:
        if schedule.period is None or schedule.period_units is None:
            raise ScheduleValidationError(
                "SIMPLE schedules require a period and period units"
            )
        if schedule.period <= 0:
            raise ScheduleValidationError("period must be positive")
        return

    if schedule.schedule_type == ScheduleType.CRON:
        if not schedule.cron_expression or not schedule.cron_expression.strip():
            raise ScheduleValidationError("CRON schedules require a cron expression")
        parse_cron(schedule.cron_expression)
        return

    raise ScheduleValidationError(f"unknown schedule type {schedule.schedule_type!r}")


def next_expected_ping(schedule: Schedule, after: datetime) -> datetime:
    """
    Compute when the next ping is expected.

    For SIMPLE schedules this is ``after + period``. For CRON schedules it is
    the first occurrence strictly after ``after``.
    """
    after = _as_utc(after)

    if schedule.schedule_type == ScheduleType.SIMPLE:
        if schedule.period is None or schedule.period_units is None:
            raise ScheduleValidationError(
                "SIMPLE schedules require a period and period units"
            )
        return after + schedule.period_units.to_timedelta(schedule.period)

    trigger = parse_cron(schedule.cron_expression or "")
    # CronTrigger returns the first fire time >= now; nudge past ``after``.
    fire_time = trigger.get_next_fire_time(None, after + timedelta(microseconds=1))
    if fire_time is None:
        raise ScheduleValidationError(
            f"cron expression {schedule.cron_expression!r} never fires"
        )
    return _as_utc(fire_time)


def compute_overdue_at(
    schedule: Schedule,
    last_ping_at: datetime | None,
    resumed_at: datetime | None = None,
) -> datetime | None:
    """
    Compute the overdue instant for a check.

    Args:
        schedule: Check schedule
        last_ping_at: Time of the most recent accepted ping
        resumed_at: Time the check was last resumed from PAUSED

    Returns:
        The overdue instant, or None for a check that was never pinged
    """
    if last_ping_at is None:
        return None

    baseline = _as_utc(last_ping_at)
    if resumed_at is not None and _as_utc(resumed_at) > baseline:
        baseline = _as_utc(resumed_at)

    return next_expected_ping(schedule, baseline) + schedule.grace


def is_overdue(
    schedule: Schedule,
    last_ping_at: datetime | None,
    now: datetime,
    resumed_at: datetime | None = None,
) -> bool:
    """Return True when ``now`` is strictly past the overdue instant."""
    overdue_at = compute_overdue_at(schedule, last_ping_at, resumed_at)
    if overdue_at is None:
        return False
    return _as_utc(now) > overdue_at
