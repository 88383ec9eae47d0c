from __future__ import annotations

from deadman.api.v1 import alerts, checks, notifications, ping

__all__ = [
    "checks",
    "notifications",
    "alerts",
    "ping",
]
