from __future__ import annotations

import uuid

from fastapi import APIRouter, HTTPException, Query, status

from deadman.dependencies import DbSession, SettingsDep
from deadman.schemas.notification import (
    NotificationCreate,
    NotificationList,
    NotificationResponse,
    NotificationUpdate,
)
from deadman.services.notification_service import NotificationService

router = APIRouter()


@router.post(
    "/",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_notification(
    notification_in: NotificationCreate,
    db: DbSession,
    settings: SettingsDep,
) -> NotificationResponse:
    """Create a new notification. ``max_retries`` defaults to the configured value."""
    service = NotificationService(db, default_max_retries=settings.default_max_retries)
    notification = await service.create_notification(notification_in)
    return NotificationResponse.model_validate(notification)


@router.get("/", response_model=NotificationList)
async def list_notifications(
    db: DbSession,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    project_id: int | None = None,
) -> NotificationList:
    """List notifications."""
    service = NotificationService(db)
    notifications, total = await service.list_notifications(
        skip=skip, limit=limit, project_id=project_id
    )
    return NotificationList(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
    )


@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(
    notification_id: uuid.UUID,
    db: DbSession,
) -> NotificationResponse:
    """Get a notification by ID."""
    service = NotificationService(db)
    notification = await service.get_notification(notification_id)

    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} not found",
        )

    return NotificationResponse.model_validate(notification)


@router.patch("/{notification_id}", response_model=NotificationResponse)
async def update_notification(
    notification_id: uuid.UUID,
    notification_in: NotificationUpdate,
    db: DbSession,
) -> NotificationResponse:
    """Update a notification."""
    service = NotificationService(db)
    notification = await service.update_notification(notification_id, notification_in)

    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} not found",
        )

    return NotificationResponse.model_validate(notification)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: uuid.UUID,
    db: DbSession,
):
    """Delete a notification."""
    service = NotificationService(db)
    deleted = await service.delete_notification(notification_id)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} not found",
        )
