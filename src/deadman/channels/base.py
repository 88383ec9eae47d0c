from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Union

from deadman.models.enums import CheckStatus, NotificationType

if TYPE_CHECKING:
    import uuid

    from deadman.models.check import Check
    from deadman.models.notification import Notification
    from deadman.models.notification_alert import NotificationAlert


@dataclass(frozen=True)
class ChannelConfig:
    """Destination details copied from a Notification."""

    notification_id: int
    notification_type: NotificationType
    name: str
    email: str | None = None
    url: str | None = None

    @classmethod
    def from_notification(cls, notification: Notification) -> ChannelConfig:
        return cls(
            notification_id=notification.id,
            notification_type=NotificationType(notification.notification_type),
            name=notification.name,
            email=notification.email,
            url=notification.url,
        )


@dataclass(frozen=True)
class CheckSnapshot:
    """Check state as seen when the alert was claimed."""

    check_id: int
    uuid: uuid.UUID
    name: str
    status: CheckStatus
    last_ping_at: datetime | None

    @classmethod
    def from_check(cls, check: Check) -> CheckSnapshot:
        return cls(
            check_id=check.id,
            uuid=check.uuid,
            name=check.name,
            status=CheckStatus(check.status),
            last_ping_at=check.last_ping_at,
        )


@dataclass(frozen=True)
class AlertSnapshot:
    """The delivery obligation being attempted."""

    alert_id: int
    check_status: CheckStatus
    attempt: int
    retries_remaining: int
    created_at: datetime

    @classmethod
    def from_alert(cls, alert: NotificationAlert) -> AlertSnapshot:
        return cls(
            alert_id=alert.id,
            check_status=CheckStatus(alert.check_status),
            attempt=alert.attempts,
            retries_remaining=alert.retries_remaining,
            created_at=alert.created_at,
        )


@dataclass(frozen=True)
class Delivered:
    """The channel accepted the notification."""


@dataclass(frozen=True)
class TransientFailure:
    """Delivery failed in a way that may succeed on retry."""

    reason: str


@dataclass(frozen=True)
class PermanentFailure:
    """Delivery can never succeed for this destination."""

    reason: str


DeliveryOutcome = Union[Delivered, TransientFailure, PermanentFailure]


def alert_subject(check: CheckSnapshot, alert: AlertSnapshot) -> str:
    """Short human-readable subject, e.g. ``[DOWN] nightly-backup``."""
    return f"[{alert.check_status.value}] {check.name or check.uuid}"


def alert_message(check: CheckSnapshot, alert: AlertSnapshot) -> str:
    last_ping = check.last_ping_at.isoformat() if check.last_ping_at else "never"
    if alert.check_status == CheckStatus.DOWN:
        return f"Check '{check.name}' is overdue. Last ping: {last_ping}."
    return f"Check '{check.name}' has recovered. Last ping: {last_ping}."


class NotificationChannel(ABC):
    """Abstract base class for notification delivery channels."""

    @abstractmethod
    async def send(
        self,
        config: ChannelConfig,
        check: CheckSnapshot,
        alert: AlertSnapshot,
    ) -> DeliveryOutcome:
        """
        Deliver one alert.

        Args:
            config: Destination of the notification
            check: Check the alert is about
            alert: Alert being delivered

        Returns:
            Delivered, TransientFailure or PermanentFailure
        """
        pass

    @abstractmethod
    def validate_config(self, config: ChannelConfig) -> bool:
        """
        Validate a destination for this channel.

        Returns:
            True if the destination can be used, False otherwise
        """
        pass
