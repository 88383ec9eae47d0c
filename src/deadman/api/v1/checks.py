from __future__ import annotations

import uuid

from fastapi import APIRouter, HTTPException, Query, status

from deadman.dependencies import DbSession, SettingsDep
from deadman.models.enums import CheckStatus, DeliveryStatus
from deadman.schemas.alert import AlertList, AlertResponse
from deadman.schemas.check import CheckCreate, CheckList, CheckResponse, CheckUpdate
from deadman.services.check_service import CheckService
from deadman.services.notification_service import NotificationService

router = APIRouter()


@router.post(
    "/",
    response_model=CheckResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_check(
    check_in: CheckCreate,
    db: DbSession,
    settings: SettingsDep,
) -> CheckResponse:
    """Create a new check."""
    service = CheckService(db, max_attempts=settings.transition_max_attempts)
    check = await service.create_check(check_in)
    return CheckResponse.model_validate(check)


@router.get("/", response_model=CheckList)
async def list_checks(
    db: DbSession,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    project_id: int | None = None,
    check_status: CheckStatus | None = Query(None, alias="status"),
) -> CheckList:
    """List checks with optional project and status filters."""
    service = CheckService(db)
    checks, total = await service.list_checks(
        skip=skip,
        limit=limit,
        project_id=project_id,
        status=check_status,
    )
    return CheckList(
        checks=[CheckResponse.model_validate(c) for c in checks],
        total=total,
    )


@router.get("/{check_id}", response_model=CheckResponse)
async def get_check(
    check_id: uuid.UUID,
    db: DbSession,
) -> CheckResponse:
    """Get a check by ID."""
    service = CheckService(db)
    check = await service.get_check(check_id)

    if check is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Check {check_id} not found",
        )

    return CheckResponse.model_validate(check)


@router.patch("/{check_id}", response_model=CheckResponse)
async def update_check(
    check_id: uuid.UUID,
    check_in: CheckUpdate,
    db: DbSession,
    settings: SettingsDep,
) -> CheckResponse:
    """Update a check. Schedule changes move the overdue deadline."""
    service = CheckService(db, max_attempts=settings.transition_max_attempts)
    check = await service.update_check(check_id, check_in)

    if check is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Check {check_id} not found",
        )

    return CheckResponse.model_validate(check)


@router.delete("/{check_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_check(
    check_id: uuid.UUID,
    db: DbSession,
    settings: SettingsDep,
):
    """Delete a check."""
    service = CheckService(db, max_attempts=settings.transition_max_attempts)
    deleted = await service.delete_check(check_id)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Check {check_id} not found",
        )


@router.post("/{check_id}/pause", response_model=CheckResponse)
async def pause_check(
    check_id: uuid.UUID,
    db: DbSession,
    settings: SettingsDep,
) -> CheckResponse:
    """Pause a check. Paused checks never go DOWN."""
    service = CheckService(db, max_attempts=settings.transition_max_attempts)
    check = await service.pause_check(check_id)
    return CheckResponse.model_validate(check)


@router.post("/{check_id}/resume", response_model=CheckResponse)
async def resume_check(
    check_id: uuid.UUID,
    db: DbSession,
    settings: SettingsDep,
) -> CheckResponse:
    """Resume a paused check."""
    service = CheckService(db, max_attempts=settings.transition_max_attempts)
    check = await service.resume_check(check_id)
    return CheckResponse.model_validate(check)


@router.post("/{check_id}/rotate-key", response_model=CheckResponse)
async def rotate_ping_key(
    check_id: uuid.UUID,
    db: DbSession,
    settings: SettingsDep,
) -> CheckResponse:
    """Issue a new ping key. The previous key stops working immediately."""
    service = CheckService(db, max_attempts=settings.transition_max_attempts)
    check = await service.rotate_ping_key(check_id)
    return CheckResponse.model_validate(check)


@router.get("/{check_id}/alerts", response_model=AlertList)
async def list_check_alerts(
    check_id: uuid.UUID,
    db: DbSession,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    delivery_status: DeliveryStatus | None = None,
) -> AlertList:
    """List notification alerts raised for a check."""
    service = CheckService(db)
    alerts, total = await service.list_check_alerts(
        check_id,
        skip=skip,
        limit=limit,
        delivery_status=delivery_status,
    )
    return AlertList(
        alerts=[AlertResponse.model_validate(a) for a in alerts],
        total=total,
    )


@router.put(
    "/{check_id}/notifications/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def bind_notification(
    check_id: uuid.UUID,
    notification_id: uuid.UUID,
    db: DbSession,
):
    """Attach a notification to a check."""
    service = NotificationService(db)
    await service.bind(check_id, notification_id)


@router.delete(
    "/{check_id}/notifications/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def unbind_notification(
    check_id: uuid.UUID,
    notification_id: uuid.UUID,
    db: DbSession,
):
    """Detach a notification from a check."""
    service = NotificationService(db)
    removed = await service.unbind(check_id, notification_id)

    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} is not bound to check {check_id}",
        )
