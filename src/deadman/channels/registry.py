from __future__ import annotations

from typing import TYPE_CHECKING

from deadman.channels.base import NotificationChannel
from deadman.channels.email import EmailChannel
from deadman.channels.webhook import WebhookChannel
from deadman.models.enums import NotificationType

if TYPE_CHECKING:
    from deadman.config import Settings


class ChannelRegistry:
    """Maps each notification type to the channel that delivers it."""

    def __init__(self, channels: dict[NotificationType, NotificationChannel]):
        self._channels = dict(channels)

    def get(self, notification_type: NotificationType | str) -> NotificationChannel | None:
        return self._channels.get(NotificationType(notification_type))

    def __contains__(self, notification_type: object) -> bool:
        return notification_type in self._channels

    def __len__(self) -> int:
        return len(self._channels)


def build_channel_registry(settings: Settings) -> ChannelRegistry:
    """Create the production channels from settings."""
    return ChannelRegistry(
        {
            NotificationType.WEBHOOK: WebhookChannel(
                timeout=settings.delivery_timeout_seconds,
            ),
            NotificationType.EMAIL: EmailChannel(
                smtp_host=settings.smtp_host,
                smtp_port=settings.smtp_port,
                from_email=str(settings.from_email),
                smtp_user=settings.smtp_user,
                smtp_password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                timeout=settings.delivery_timeout_seconds,
            ),
        }
    )
