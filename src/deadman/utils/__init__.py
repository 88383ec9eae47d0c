from __future__ import annotations

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

__all__ = [
    "setup_logging",
    "get_logger",
    "DeadmanException",
    "CheckNotFoundError",
    "NotificationNotFoundError",
    "AlertNotFoundError",
    "ScheduleValidationError",
    "InvalidTransitionError",
    "ConcurrencyConflictError",
    "StoreUnavailableError",
]
