"""Closed status types and the transition tables built on them."""
from __future__ import annotations

from datetime import timedelta
from enum import Enum


class CheckStatus(str, Enum):
    """Liveness state of a check."""

    CREATED = "CREATED"
    UP = "UP"
    DOWN = "DOWN"
    PAUSED = "PAUSED"


class ScheduleType(str, Enum):
    """How the expected ping instant is derived."""

    SIMPLE = "SIMPLE"
    CRON = "CRON"


class PeriodUnits(str, Enum):
    """Units for ping and grace periods."""

    MINUTES = "MINUTES"
    HOURS = "HOURS"
    DAYS = "DAYS"

    def to_timedelta(self, value: int) -> timedelta:
        if self is PeriodUnits.MINUTES:
            return timedelta(minutes=value)
        if self is PeriodUnits.HOURS:
            return timedelta(hours=value)
        if self is PeriodUnits.DAYS:
            return timedelta(days=value)
        raise ValueError(f"Unknown period unit: {self!r}")


class NotificationType(str, Enum):
    """Delivery channel kinds."""

    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"


class DeliveryStatus(str, Enum):
    """Lifecycle of a single notification alert."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


# Allowed check status edges. UP -> UP is the ping refresh.
CHECK_TRANSITIONS: dict[CheckStatus, frozenset[CheckStatus]] = {
    CheckStatus.CREATED: frozenset({CheckStatus.UP, CheckStatus.PAUSED}),
    CheckStatus.UP: frozenset({CheckStatus.UP, CheckStatus.DOWN, CheckStatus.PAUSED}),
    CheckStatus.DOWN: frozenset({CheckStatus.UP, CheckStatus.PAUSED}),
    CheckStatus.PAUSED: frozenset({CheckStatus.CREATED, CheckStatus.UP}),
}

# Statuses the sweep and ping paths consider "live".
EVALUATED_STATUSES: tuple[CheckStatus, ...] = (CheckStatus.UP, CheckStatus.DOWN)

ACTIVE_DELIVERY_STATUSES: frozenset[DeliveryStatus] = frozenset(
    {DeliveryStatus.QUEUED, DeliveryStatus.RUNNING}
)
TERMINAL_DELIVERY_STATUSES: frozenset[DeliveryStatus] = frozenset(
    {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED}
)


def can_transition(from_status: CheckStatus, to_status: CheckStatus) -> bool:
    """Return True if ``from_status -> to_status`` is a legal edge."""
    return to_status in CHECK_TRANSITIONS[from_status]


def requires_alert(from_status: CheckStatus, to_status: CheckStatus) -> bool:
    """Only UP -> DOWN and the DOWN -> UP recovery produce alerts."""
    return (from_status, to_status) in {
        (CheckStatus.UP, CheckStatus.DOWN),
        (CheckStatus.DOWN, CheckStatus.UP),
    }
