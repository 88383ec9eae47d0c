from __future__ import annotations

from deadman.services.alert_dispatcher import AlertDispatcher, DispatchReport
from deadman.services.check_service import CheckService
from deadman.services.check_store import (
    CheckStore,
    EnqueueResult,
    PingResult,
    retry_on_conflict,
)
from deadman.services.notification_service import NotificationService
from deadman.services.retry_policy import RetryPolicy
from deadman.services.schedule import (
    Schedule,
    compute_overdue_at,
    is_overdue,
    next_expected_ping,
    validate_schedule,
)
from deadman.services.status_evaluator import StatusEvaluator, SweepReport

__all__ = [
    "CheckStore",
    "EnqueueResult",
    "PingResult",
    "retry_on_conflict",
    "StatusEvaluator",
    "SweepReport",
    "AlertDispatcher",
    "DispatchReport",
    "RetryPolicy",
    "CheckService",
    "NotificationService",
    "Schedule",
    "compute_overdue_at",
    "is_overdue",
    "next_expected_ping",
    "validate_schedule",
]
