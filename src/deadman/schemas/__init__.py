from __future__ import annotations

from deadman.schemas.alert import AlertList, AlertResponse
from deadman.schemas.check import CheckCreate, CheckList, CheckResponse, CheckUpdate
from deadman.schemas.notification import (
    NotificationCreate,
    NotificationList,
    NotificationResponse,
    NotificationUpdate,
)
from deadman.schemas.ping import PingResponse

__all__ = [
    # Check
    "CheckCreate",
    "CheckUpdate",
    "CheckResponse",
    "CheckList",
    # Notification
    "NotificationCreate",
    "NotificationUpdate",
    "NotificationResponse",
    "NotificationList",
    # Alert
    "AlertResponse",
    "AlertList",
    # Ping
    "PingResponse",
]
