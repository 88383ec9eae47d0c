from __future__ import annotations

from deadman.channels.base import (
    AlertSnapshot,
    ChannelConfig,
    CheckSnapshot,
    Delivered,
    DeliveryOutcome,
    NotificationChannel,
    PermanentFailure,
    TransientFailure,
)
from deadman.channels.email import EmailChannel
from deadman.channels.registry import ChannelRegistry, build_channel_registry
from deadman.channels.webhook import WebhookChannel

__all__ = [
    "NotificationChannel",
    "ChannelConfig",
    "CheckSnapshot",
    "AlertSnapshot",
    "Delivered",
    "TransientFailure",
    "PermanentFailure",
    "DeliveryOutcome",
    "EmailChannel",
    "WebhookChannel",
    "ChannelRegistry",
    "build_channel_registry",
]
