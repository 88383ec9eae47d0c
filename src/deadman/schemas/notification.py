from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, model_validator

from deadman.models.enums import NotificationType


class NotificationCreate(BaseModel):
    """Schema for creating a notification."""

    name: str = Field(default="", max_length=255)
    notification_type: NotificationType
    email: EmailStr | None = None
    url: HttpUrl | None = None
    project_id: int | None = None
    max_retries: int | None = Field(default=None, ge=0, le=50)

    @model_validator(mode="after")
    def check_destination(self) -> NotificationCreate:
        if self.notification_type == NotificationType.EMAIL and self.email is None:
            raise ValueError("EMAIL notifications require an email address")
        if self.notification_type == NotificationType.WEBHOOK and self.url is None:
            raise ValueError("WEBHOOK notifications require a url")
        return self


class NotificationUpdate(BaseModel):
    """
    Schema for updating a notification.

    A new ``max_retries`` applies only to alerts enqueued afterwards.
    """

    name: str | None = Field(None, max_length=255)
    email: EmailStr | None = None
    url: HttpUrl | None = None
    max_retries: int | None = Field(None, ge=0, le=50)


class NotificationResponse(BaseModel):
    """Schema for notification response."""

    model_config = ConfigDict(from_attributes=True)

    uuid: uuid.UUID
    name: str
    notification_type: NotificationType
    email: str | None
    url: str | None
    project_id: int | None
    max_retries: int
    created_at: datetime
    updated_at: datetime


class NotificationList(BaseModel):
    """Schema for list of notifications."""

    notifications: list[NotificationResponse]
    total: int
