from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from deadman.models.enums import CheckStatus


class PingResponse(BaseModel):
    """Result of an inbound ping."""

    status: CheckStatus
    applied: bool
    last_ping_at: datetime | None
