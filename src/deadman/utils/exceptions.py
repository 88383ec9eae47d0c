from __future__ import annotations


class DeadmanException(Exception):
    """Base exception for the dead man's switch service."""

    pass


class CheckNotFoundError(DeadmanException):
    """Raised when a check cannot be found."""

    def __init__(self, check_id: int | str):
        self.check_id = check_id
        super().__init__(f"Check {check_id} not found")


class NotificationNotFoundError(DeadmanException):
    """Raised when a notification cannot be found."""

    def __init__(self, notification_id: int | str):
        self.notification_id = notification_id
        super().__init__(f"Notification {notification_id} not found")


class AlertNotFoundError(DeadmanException):
    """Raised when a notification alert cannot be found."""

    def __init__(self, alert_id: int):
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} not found")


class ScheduleValidationError(DeadmanException):
    """Raised when a check schedule is incomplete or malformed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid schedule: {reason}")


class InvalidTransitionError(DeadmanException):
    """Raised when a requested status change is not allowed."""

    def __init__(self, check_id: int | str, from_status: str, to_status: str):
        self.check_id = check_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Check {check_id} cannot move from {from_status} to {to_status}"
        )


class ConcurrencyConflictError(DeadmanException):
    """Raised when an optimistic update keeps losing races."""

    def __init__(self, check_id: int | str, attempts: int):
        self.check_id = check_id
        self.attempts = attempts
        super().__init__(
            f"Check {check_id} changed concurrently {attempts} times, giving up"
        )


class StoreUnavailableError(DeadmanException):
    """Raised when the backing store cannot be reached."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store unavailable during {operation}: {reason}")
