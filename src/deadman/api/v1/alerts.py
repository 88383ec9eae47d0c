from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from deadman.dependencies import DbSession
from deadman.models.enums import DeliveryStatus
from deadman.schemas.alert import AlertList, AlertResponse
from deadman.services.check_store import CheckStore

router = APIRouter()


@router.get("/", response_model=AlertList)
async def list_alerts(
    db: DbSession,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    check_id: int | None = None,
    delivery_status: DeliveryStatus | None = None,
) -> AlertList:
    """List notification alerts, newest first."""
    store = CheckStore(db)
    alerts, total = await store.list_alerts(
        skip=skip,
        limit=limit,
        check_id=check_id,
        delivery_status=delivery_status,
    )
    return AlertList(
        alerts=[AlertResponse.model_validate(a) for a in alerts],
        total=total,
    )


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: int,
    db: DbSession,
) -> AlertResponse:
    """Get a notification alert by ID."""
    store = CheckStore(db)
    alert = await store.get_alert(alert_id)

    if alert is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Alert {alert_id} not found",
        )

    return AlertResponse.model_validate(alert)
