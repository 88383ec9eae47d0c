from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from deadman.models.enums import CheckStatus, DeliveryStatus


class AlertResponse(BaseModel):
    """Schema for notification alert response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    check_id: int
    notification_id: int
    check_status: CheckStatus
    delivery_status: DeliveryStatus
    retries_remaining: int
    attempts: int
    last_error: str | None
    available_at: datetime
    claimed_by: str | None
    claimed_at: datetime | None
    created_at: datetime
    finished_at: datetime | None


class AlertList(BaseModel):
    """Schema for list of alerts."""

    alerts: list[AlertResponse]
    total: int
