from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from deadman.dependencies import DbSession, SettingsDep
from deadman.schemas.ping import PingResponse
from deadman.services.status_evaluator import StatusEvaluator

router = APIRouter()


@router.api_route("/{ping_key}", methods=["GET", "POST"], response_model=PingResponse)
async def ping(
    ping_key: str,
    db: DbSession,
    settings: SettingsDep,
) -> PingResponse:
    """Record a ping for the check owning ``ping_key``."""
    evaluator = StatusEvaluator(db, max_attempts=settings.transition_max_attempts)
    result = await evaluator.handle_ping(ping_key)

    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown ping key",
        )

    return PingResponse(
        status=result.status,
        applied=result.applied,
        last_ping_at=result.check.last_ping_at,
    )
