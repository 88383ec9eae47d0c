from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deadman.config import Settings

# Keeps 2 ** n finite for absurd attempt counts; the cap applies long before.
_MAX_EXPONENT = 32


@dataclass
class RetryPolicy:
    """Capped exponential backoff with jitter for delivery retries."""

    base_seconds: float = 30.0
    max_seconds: float = 3600.0
    jitter: float = 0.5
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self):
        if self.base_seconds <= 0:
            raise ValueError("base_seconds must be positive")
        if self.max_seconds < self.base_seconds:
            raise ValueError("max_seconds must be >= base_seconds")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            base_seconds=settings.retry_backoff_base_seconds,
            max_seconds=settings.retry_backoff_max_seconds,
            jitter=settings.retry_backoff_jitter,
        )

    def ceiling(self, attempt: int) -> float:
        """Un-jittered delay in seconds after the given attempt (1-based)."""
        exponent = min(max(0, attempt - 1), _MAX_EXPONENT)
        return min(self.max_seconds, self.base_seconds * (2**exponent))

    def delay(self, attempt: int) -> timedelta:
        """
        Backoff before the next attempt.

        The delay is drawn uniformly from ``[ceiling * (1 - jitter), ceiling]``.
        """
        ceiling = self.ceiling(attempt)
        spread = ceiling * self.jitter
        return timedelta(seconds=ceiling - spread + self.rng.uniform(0.0, spread))

    def next_retry_at(self, attempt: int, now: datetime) -> datetime:
        return now + self.delay(attempt)
