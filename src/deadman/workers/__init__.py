from __future__ import annotations

from deadman.workers.delivery_pool import DeliveryWorkerPool
from deadman.workers.sweeper import StatusSweeper

__all__ = [
    "StatusSweeper",
    "DeliveryWorkerPool",
]
