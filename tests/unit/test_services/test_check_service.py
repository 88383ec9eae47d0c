"""Unit tests for CheckService."""
from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import NOW
from deadman.models.check import RetiredPingKey
from deadman.models.enums import CheckStatus, PeriodUnits, ScheduleType
from deadman.schemas.check import CheckCreate, CheckUpdate
from deadman.services.check_service import CheckService
from deadman.services.check_store import CheckStore
from deadman.utils.exceptions import CheckNotFoundError, ScheduleValidationError


@pytest.mark.unit
async def test_create_check(test_db: AsyncSession) -> None:
    service = CheckService(test_db)
    check = await service.create_check(
        CheckCreate(
            name="nightly-backup",
            ping_period=1,
            ping_period_units=PeriodUnits.DAYS,
            grace_period=2,
            grace_period_units=PeriodUnits.HOURS,
        )
    )
    assert check.id is not None
    assert check.uuid is not None
    assert check.status == CheckStatus.CREATED
    assert check.version == 1
    assert len(check.ping_key) >= 32
    assert check.last_ping_at is None
    assert check.overdue_at is None


@pytest.mark.unit
async def test_ping_keys_are_unique(test_db: AsyncSession) -> None:
    service = CheckService(test_db)
    keys = {
        (await service.create_check(CheckCreate(name=f"job-{i}"))).ping_key
        for i in range(5)
    }
    assert len(keys) == 5


@pytest.mark.unit
async def test_get_and_list_checks(test_db: AsyncSession, make_check) -> None:
    first = await make_check(project_id=1)
    await make_check(project_id=2)
    await make_check(project_id=1, deleted=True)
    service = CheckService(test_db)

    assert (await service.get_check(first.uuid)).id == first.id
    assert await service.get_check(uuid4()) is None

    checks, total = await service.list_checks(project_id=1)
    assert total == 1
    assert [c.id for c in checks] == [first.id]

    _, all_total = await service.list_checks()
    assert all_total == 2


@pytest.mark.unit
async def test_update_schedule_recomputes_overdue(test_db: AsyncSession, up_check) -> None:
    service = CheckService(test_db)

    updated = await service.update_check(
        up_check.uuid,
        CheckUpdate(ping_period=3, grace_period=0),
    )

    assert updated.ping_period == 3
    assert updated.overdue_at == NOW + timedelta(hours=3)
    assert updated.version == 2


@pytest.mark.unit
async def test_update_to_cron_schedule(test_db: AsyncSession, up_check) -> None:
    service = CheckService(test_db)

    updated = await service.update_check(
        up_check.uuid,
        CheckUpdate(schedule_type=ScheduleType.CRON, ping_cron_expression="0 0 * * *"),
    )

    assert updated.schedule_type == ScheduleType.CRON
    assert updated.overdue_at == NOW.replace(hour=0) + timedelta(days=1, minutes=5)


@pytest.mark.unit
async def test_update_rejects_invalid_merged_schedule(test_db: AsyncSession, up_check) -> None:
    service = CheckService(test_db)
    with pytest.raises(ScheduleValidationError):
        await service.update_check(up_check.uuid, CheckUpdate(schedule_type=ScheduleType.CRON))


@pytest.mark.unit
async def test_update_name_only(test_db: AsyncSession, up_check) -> None:
    service = CheckService(test_db)
    overdue_at = up_check.overdue_at

    updated = await service.update_check(up_check.uuid, CheckUpdate(name="renamed"))

    assert updated.name == "renamed"
    assert updated.overdue_at == overdue_at


@pytest.mark.unit
async def test_update_not_found(test_db: AsyncSession) -> None:
    assert await CheckService(test_db).update_check(uuid4(), CheckUpdate(name="x")) is None


@pytest.mark.unit
async def test_delete_check_stops_pings(test_db: AsyncSession, up_check) -> None:
    service = CheckService(test_db)

    assert await service.delete_check(up_check.uuid) is True
    assert await service.get_check(up_check.uuid) is None
    assert await CheckStore(test_db).record_ping(up_check.ping_key, NOW + timedelta(minutes=1)) is None
    assert await service.delete_check(up_check.uuid) is False


@pytest.mark.unit
async def test_rotate_ping_key_retires_old_key(test_db: AsyncSession, up_check) -> None:
    service = CheckService(test_db)
    old_key = up_check.ping_key

    rotated = await service.rotate_ping_key(up_check.uuid)

    assert rotated.ping_key != old_key
    store = CheckStore(test_db)
    assert await store.record_ping(old_key, NOW + timedelta(minutes=1)) is None
    assert await store.record_ping(rotated.ping_key, NOW + timedelta(minutes=1)) is not None

    retired = (await test_db.execute(select(RetiredPingKey.ping_key))).scalars().all()
    assert retired == [old_key]


@pytest.mark.unit
async def test_rotate_unknown_check(test_db: AsyncSession) -> None:
    with pytest.raises(CheckNotFoundError):
        await CheckService(test_db).rotate_ping_key(uuid4())


@pytest.mark.unit
async def test_pause_and_resume_by_uuid(test_db: AsyncSession, up_check) -> None:
    service = CheckService(test_db)

    paused = await service.pause_check(up_check.uuid, now=NOW)
    assert paused.status == CheckStatus.PAUSED

    resumed = await service.resume_check(up_check.uuid, now=NOW + timedelta(hours=5))
    assert resumed.status == CheckStatus.UP
