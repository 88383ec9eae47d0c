from __future__ import annotations

from deadman.models.base import Base
from deadman.models.check import Check, RetiredPingKey, check_notifications
from deadman.models.enums import (
    CheckStatus,
    DeliveryStatus,
    NotificationType,
    PeriodUnits,
    ScheduleType,
)
from deadman.models.notification import Notification
from deadman.models.notification_alert import NotificationAlert

__all__ = [
    "Base",
    "Check",
    "RetiredPingKey",
    "check_notifications",
    "Notification",
    "NotificationAlert",
    "CheckStatus",
    "DeliveryStatus",
    "NotificationType",
    "PeriodUnits",
    "ScheduleType",
]
