"""Unit tests for CheckStore conditional primitives."""
from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import NOW
from deadman.channels.base import Delivered, PermanentFailure, TransientFailure
from deadman.models.check import Check
from deadman.models.enums import CheckStatus, DeliveryStatus
from deadman.models.notification_alert import NotificationAlert
from deadman.services.check_store import (
    LEASE_EXPIRED_REASON,
    CheckStore,
    EnqueueResult,
    retry_on_conflict,
)
from deadman.utils.exceptions import ConcurrencyConflictError, InvalidTransitionError


async def _alert_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(NotificationAlert.id)))).scalar() or 0


@pytest.mark.unit
async def test_try_transition_requires_matching_version(test_db: AsyncSession, up_check) -> None:
    store = CheckStore(test_db)

    assert await store.try_transition(
        up_check.id, CheckStatus.UP, CheckStatus.DOWN, expected_version=up_check.version + 1
    ) is False
    assert await store.try_transition(
        up_check.id, CheckStatus.UP, CheckStatus.DOWN, expected_version=up_check.version
    ) is True

    check = await store.get_check(up_check.id)
    assert check.status == CheckStatus.DOWN
    assert check.version == 2


@pytest.mark.unit
async def test_try_transition_requires_matching_status(test_db: AsyncSession, up_check) -> None:
    store = CheckStore(test_db)
    won = await store.try_transition(
        up_check.id, CheckStatus.DOWN, CheckStatus.UP, expected_version=up_check.version
    )
    assert won is False
    assert (await store.get_check(up_check.id)).status == CheckStatus.UP


@pytest.mark.unit
async def test_try_transition_rejects_illegal_edge(test_db: AsyncSession, make_check) -> None:
    check = await make_check()
    store = CheckStore(test_db)

    with pytest.raises(InvalidTransitionError):
        await store.try_transition(
            check.id, CheckStatus.CREATED, CheckStatus.DOWN, expected_version=1
        )


@pytest.mark.unit
async def test_record_ping_moves_created_to_up(test_db: AsyncSession, make_check) -> None:
    check = await make_check()
    store = CheckStore(test_db)

    result = await store.record_ping(check.ping_key, NOW)

    assert result.applied is True
    assert result.previous_status == CheckStatus.CREATED
    assert result.status == CheckStatus.UP
    assert result.check.last_ping_at == NOW
    assert result.check.overdue_at == NOW + timedelta(hours=1, minutes=5)
    assert result.check.version == 2


@pytest.mark.unit
async def test_record_ping_ignores_stale_and_duplicate(test_db: AsyncSession, up_check) -> None:
    store = CheckStore(test_db)

    same = await store.record_ping(up_check.ping_key, NOW)
    older = await store.record_ping(up_check.ping_key, NOW - timedelta(minutes=1))

    assert same.applied is False
    assert older.applied is False
    check = await store.get_check(up_check.id)
    assert check.last_ping_at == NOW
    assert check.version == 1


@pytest.mark.unit
async def test_record_ping_on_paused_check_keeps_status(test_db: AsyncSession, make_check) -> None:
    check = await make_check(status=CheckStatus.PAUSED)
    store = CheckStore(test_db)

    result = await store.record_ping(check.ping_key, NOW)

    assert result.applied is True
    assert result.status == CheckStatus.PAUSED
    assert result.check.last_ping_at == NOW
    assert result.check.overdue_at is None


@pytest.mark.unit
async def test_record_ping_accepts_naive_timestamp(test_db: AsyncSession, make_check) -> None:
    check = await make_check()
    store = CheckStore(test_db)

    result = await store.record_ping(check.ping_key, NOW.replace(tzinfo=None))
    assert result.check.last_ping_at == NOW


@pytest.mark.unit
async def test_record_ping_unknown_or_deleted_key(test_db: AsyncSession, make_check) -> None:
    deleted = await make_check(deleted=True)
    store = CheckStore(test_db)

    assert await store.record_ping("missing", NOW) is None
    assert await store.record_ping(deleted.ping_key, NOW) is None


@pytest.mark.unit
async def test_get_due_checks_filters_and_pages(test_db: AsyncSession, make_check) -> None:
    due = [
        await make_check(status=CheckStatus.UP, last_ping_at=NOW, overdue_at=NOW)
        for _ in range(3)
    ]
    await make_check(status=CheckStatus.UP, last_ping_at=NOW, overdue_at=NOW + timedelta(minutes=1))
    await make_check(status=CheckStatus.PAUSED, overdue_at=NOW)
    await make_check(status=CheckStatus.UP, overdue_at=NOW, deleted=True)
    store = CheckStore(test_db)

    first = await store.get_due_checks(NOW, limit=2)
    rest = await store.get_due_checks(NOW, limit=2, after_id=first[-1].id)

    assert [c.id for c in first + rest] == [c.id for c in due]


@pytest.mark.unit
async def test_enqueue_is_idempotent_while_in_flight(
    test_db: AsyncSession, up_check, make_notification
) -> None:
    notification = await make_notification(up_check)
    store = CheckStore(test_db)

    first = await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 2, now=NOW)
    second = await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 2, now=NOW)
    recovery = await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.UP, 2, now=NOW)

    assert first is EnqueueResult.CREATED
    assert second is EnqueueResult.ALREADY_EXISTS
    assert recovery is EnqueueResult.CREATED
    assert await _alert_count(test_db) == 2


@pytest.mark.unit
async def test_enqueue_allowed_again_after_terminal(
    test_db: AsyncSession, up_check, make_notification
) -> None:
    notification = await make_notification(up_check)
    store = CheckStore(test_db)
    await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 0, now=NOW)

    alert = await store.claim_next_queued_alert("w1", now=NOW)
    await store.finish_alert(alert.id, Delivered(), worker_id="w1", attempt=1, now=NOW)

    again = await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 0, now=NOW)
    assert again is EnqueueResult.CREATED


@pytest.mark.unit
async def test_claim_skips_alerts_backing_off(
    test_db: AsyncSession, up_check, make_notification
) -> None:
    notification = await make_notification(up_check)
    store = CheckStore(test_db)
    await store.try_enqueue_alert(
        up_check.id, notification.id, CheckStatus.DOWN, 2, now=NOW + timedelta(minutes=5)
    )

    assert await store.claim_next_queued_alert("w1", now=NOW) is None

    alert = await store.claim_next_queued_alert("w1", now=NOW + timedelta(minutes=5))
    assert alert.delivery_status == DeliveryStatus.RUNNING
    assert alert.claimed_by == "w1"
    assert alert.attempts == 1
    assert alert.notification.id == notification.id
    assert alert.check.id == up_check.id

    assert await store.claim_next_queued_alert("w2", now=NOW + timedelta(hours=1)) is None


@pytest.mark.unit
async def test_finish_transient_requeues_then_fails(
    test_db: AsyncSession, up_check, make_notification
) -> None:
    notification = await make_notification(up_check)
    store = CheckStore(test_db)
    await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 1, now=NOW)

    alert = await store.claim_next_queued_alert("w1", now=NOW)
    retry_at = NOW + timedelta(seconds=30)
    status = await store.finish_alert(
        alert.id, TransientFailure("503"), worker_id="w1", attempt=1, retry_at=retry_at, now=NOW
    )
    assert status == DeliveryStatus.QUEUED

    alert = await store.get_alert(alert.id)
    assert alert.retries_remaining == 0
    assert alert.available_at == retry_at
    assert alert.claimed_by is None
    assert alert.last_error == "503"

    alert = await store.claim_next_queued_alert("w1", now=retry_at)
    status = await store.finish_alert(
        alert.id, TransientFailure("503"), worker_id="w1", attempt=2, now=retry_at
    )
    assert status == DeliveryStatus.FAILED
    assert (await store.get_alert(alert.id)).finished_at == retry_at


@pytest.mark.unit
async def test_finish_permanent_fails_immediately(
    test_db: AsyncSession, up_check, make_notification
) -> None:
    notification = await make_notification(up_check)
    store = CheckStore(test_db)
    await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 5, now=NOW)

    alert = await store.claim_next_queued_alert("w1", now=NOW)
    status = await store.finish_alert(
        alert.id, PermanentFailure("http_status=404"), worker_id="w1", attempt=1, now=NOW
    )

    assert status == DeliveryStatus.FAILED
    alert = await store.get_alert(alert.id)
    assert alert.retries_remaining == 5
    assert alert.last_error == "http_status=404"


@pytest.mark.unit
async def test_reclaim_requeues_stale_lease_and_fences_old_worker(
    test_db: AsyncSession, up_check, make_notification
) -> None:
    notification = await make_notification(up_check)
    store = CheckStore(test_db)
    await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 2, now=NOW)
    alert = await store.claim_next_queued_alert("w1", now=NOW)

    lease = timedelta(minutes=2)
    assert await store.reclaim_stale_running(lease, now=NOW + lease) == []

    reclaimed = await store.reclaim_stale_running(lease, now=NOW + lease + timedelta(seconds=1))
    assert reclaimed == [alert.id]

    alert = await store.get_alert(alert.id)
    assert alert.delivery_status == DeliveryStatus.QUEUED
    assert alert.retries_remaining == 1
    assert alert.last_error == LEASE_EXPIRED_REASON

    late = await store.finish_alert(alert.id, Delivered(), worker_id="w1", attempt=1, now=NOW)
    assert late is None
    assert (await store.get_alert(alert.id)).delivery_status == DeliveryStatus.QUEUED


@pytest.mark.unit
async def test_reclaim_fails_lease_without_retries(
    test_db: AsyncSession, up_check, make_notification
) -> None:
    notification = await make_notification(up_check)
    store = CheckStore(test_db)
    await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 0, now=NOW)
    alert = await store.claim_next_queued_alert("w1", now=NOW)

    await store.reclaim_stale_running(timedelta(seconds=10), now=NOW + timedelta(minutes=1))

    alert = await store.get_alert(alert.id)
    assert alert.delivery_status == DeliveryStatus.FAILED
    assert alert.finished_at is not None


@pytest.mark.unit
async def test_bound_notifications_include_project_wide(
    test_db: AsyncSession, make_check, make_notification
) -> None:
    check = await make_check(project_id=7)
    direct = await make_notification(check)
    project_wide = await make_notification(project_id=7)
    await make_notification(project_id=8)
    await make_notification(check, deleted=True)
    store = CheckStore(test_db)

    bound = await store.get_bound_notifications(check)
    assert [n.id for n in bound] == [direct.id, project_wide.id]


@pytest.mark.unit
async def test_retry_on_conflict_gives_up() -> None:
    calls = []

    async def always_conflicts():
        calls.append(1)
        return None

    with pytest.raises(ConcurrencyConflictError):
        await retry_on_conflict(always_conflicts, check_id=1, max_attempts=3)
    assert len(calls) == 3


@pytest.mark.unit
async def test_retry_on_conflict_returns_first_success() -> None:
    results = iter([None, None, "won"])

    async def flaky():
        return next(results)

    assert await retry_on_conflict(flaky, check_id=1, max_attempts=5) == "won"


@pytest.mark.unit
async def test_record_ping_conflict_names_check_not_ping_key(
    test_db: AsyncSession, up_check, monkeypatch
) -> None:
    store = CheckStore(test_db, max_attempts=2)
    read_check = store.get_check_by_ping_key

    async def read_then_lose_race(ping_key: str):
        check = await read_check(ping_key)
        await test_db.execute(
            update(Check)
            .where(Check.id == check.id)
            .values(version=Check.version + 1)
            .execution_options(synchronize_session=False)
        )
        return check

    monkeypatch.setattr(store, "get_check_by_ping_key", read_then_lose_race)

    with pytest.raises(ConcurrencyConflictError) as exc_info:
        await store.record_ping(up_check.ping_key, NOW + timedelta(minutes=1))

    assert exc_info.value.check_id == up_check.id
    assert up_check.ping_key not in str(exc_info.value)


@pytest.mark.unit
async def test_reclaim_backs_off_requeued_alerts(
    test_db: AsyncSession, up_check, make_notification
) -> None:
    notification = await make_notification(up_check)
    store = CheckStore(test_db)
    await store.try_enqueue_alert(up_check.id, notification.id, CheckStatus.DOWN, 3, now=NOW)
    alert = await store.claim_next_queued_alert("w1", now=NOW)

    seen = []

    def retry_at(attempt, now):
        seen.append(attempt)
        return now + timedelta(minutes=5)

    reclaimed_at = NOW + timedelta(minutes=3)
    await store.reclaim_stale_running(
        timedelta(minutes=2), now=reclaimed_at, retry_at=retry_at
    )

    assert seen == [1]
    stored = await store.get_alert(alert.id)
    assert stored.delivery_status == DeliveryStatus.QUEUED
    assert stored.available_at == reclaimed_at + timedelta(minutes=5)
    assert await store.claim_next_queued_alert("w2", now=reclaimed_at) is None
    assert await store.claim_next_queued_alert(
        "w2", now=reclaimed_at + timedelta(minutes=5)
    ) is not None
