"""Integration tests for /api/v1/checks endpoints.

Uses FastAPI's async test client with the SQLite in-memory DB injected
via dependency override, no running server or PostgreSQL required.
"""
from __future__ import annotations

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from deadman.database import get_db
from deadman.main import app


async def _make_client(test_db: AsyncSession) -> AsyncClient:
    """Return an HTTPX async test client with DB overridden."""
    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.integration
async def test_create_check(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        resp = await client.post("/api/v1/checks/", json={
            "name": "nightly backup",
            "ping_period": 1,
            "ping_period_units": "DAYS",
            "grace_period": 30,
            "grace_period_units": "MINUTES",
        })
    app.dependency_overrides.clear()

    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "nightly backup"
    assert data["status"] == "CREATED"
    assert data["last_ping_at"] is None
    assert data["overdue_at"] is None
    assert len(data["ping_key"]) >= 32


@pytest.mark.integration
async def test_create_cron_check(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        resp = await client.post("/api/v1/checks/", json={
            "schedule_type": "CRON",
            "ping_cron_expression": "0 3 * * *",
            "grace_period": 1,
        })
    app.dependency_overrides.clear()

    assert resp.status_code == 201
    assert resp.json()["ping_cron_expression"] == "0 3 * * *"


@pytest.mark.integration
@pytest.mark.parametrize(
    "payload",
    [
        {"schedule_type": "CRON"},
        {"schedule_type": "CRON", "ping_cron_expression": "61 * * * *"},
        {"ping_period": 0},
        {"grace_period": -1},
    ],
)
async def test_create_check_rejects_invalid_schedule(
    test_db: AsyncSession, payload: dict
) -> None:
    async with await _make_client(test_db) as client:
        resp = await client.post("/api/v1/checks/", json=payload)
    app.dependency_overrides.clear()
    assert resp.status_code == 422


@pytest.mark.integration
async def test_list_checks_filters(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        await client.post("/api/v1/checks/", json={"name": "a", "project_id": 1})
        await client.post("/api/v1/checks/", json={"name": "b", "project_id": 2})
        all_resp = await client.get("/api/v1/checks/")
        project_resp = await client.get("/api/v1/checks/", params={"project_id": 2})
        status_resp = await client.get("/api/v1/checks/", params={"status": "UP"})
    app.dependency_overrides.clear()

    assert all_resp.json()["total"] == 2
    assert [c["name"] for c in project_resp.json()["checks"]] == ["b"]
    assert status_resp.json() == {"checks": [], "total": 0}


@pytest.mark.integration
async def test_get_check_not_found(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        resp = await client.get(f"/api/v1/checks/{uuid.uuid4()}")
    app.dependency_overrides.clear()
    assert resp.status_code == 404


@pytest.mark.integration
async def test_update_check_schedule(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        created = (await client.post("/api/v1/checks/", json={"name": "job"})).json()
        resp = await client.patch(
            f"/api/v1/checks/{created['uuid']}",
            json={"ping_period": 6, "ping_period_units": "HOURS"},
        )
        bad = await client.patch(
            f"/api/v1/checks/{created['uuid']}",
            json={"schedule_type": "CRON"},
        )
    app.dependency_overrides.clear()

    assert resp.status_code == 200
    assert resp.json()["ping_period"] == 6
    assert resp.json()["ping_period_units"] == "HOURS"
    assert bad.status_code == 422


@pytest.mark.integration
async def test_delete_check(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        created = (await client.post("/api/v1/checks/", json={"name": "job"})).json()
        resp = await client.delete(f"/api/v1/checks/{created['uuid']}")
        get_resp = await client.get(f"/api/v1/checks/{created['uuid']}")
        ping_resp = await client.post(f"/ping/{created['ping_key']}")
        again = await client.delete(f"/api/v1/checks/{created['uuid']}")
    app.dependency_overrides.clear()

    assert resp.status_code == 204
    assert get_resp.status_code == 404
    assert ping_resp.status_code == 404
    assert again.status_code == 404


@pytest.mark.integration
async def test_pause_and_resume(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        created = (await client.post("/api/v1/checks/", json={"name": "job"})).json()
        await client.post(f"/ping/{created['ping_key']}")
        paused = await client.post(f"/api/v1/checks/{created['uuid']}/pause")
        paused_again = await client.post(f"/api/v1/checks/{created['uuid']}/pause")
        resumed = await client.post(f"/api/v1/checks/{created['uuid']}/resume")
        resumed_again = await client.post(f"/api/v1/checks/{created['uuid']}/resume")
    app.dependency_overrides.clear()

    assert paused.status_code == 200
    assert paused.json()["status"] == "PAUSED"
    assert paused.json()["overdue_at"] is None
    assert paused_again.json()["status"] == "PAUSED"
    assert resumed.json()["status"] == "UP"
    assert resumed.json()["resumed_at"] is not None
    assert resumed.json()["overdue_at"] is not None
    assert resumed_again.status_code == 409


@pytest.mark.integration
async def test_resume_never_pinged_check_returns_to_created(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        created = (await client.post("/api/v1/checks/", json={"name": "job"})).json()
        await client.post(f"/api/v1/checks/{created['uuid']}/pause")
        resumed = await client.post(f"/api/v1/checks/{created['uuid']}/resume")
    app.dependency_overrides.clear()

    assert resumed.json()["status"] == "CREATED"


@pytest.mark.integration
async def test_rotate_key_retires_old_key(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        created = (await client.post("/api/v1/checks/", json={"name": "job"})).json()
        rotated = await client.post(f"/api/v1/checks/{created['uuid']}/rotate-key")
        old_ping = await client.get(f"/ping/{created['ping_key']}")
        new_ping = await client.get(f"/ping/{rotated.json()['ping_key']}")
    app.dependency_overrides.clear()

    assert rotated.status_code == 200
    assert rotated.json()["ping_key"] != created["ping_key"]
    assert old_ping.status_code == 404
    assert new_ping.status_code == 200


@pytest.mark.integration
async def test_bind_and_unbind_notification(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        check = (await client.post("/api/v1/checks/", json={"name": "job"})).json()
        notification = (await client.post("/api/v1/notifications/", json={
            "notification_type": "WEBHOOK",
            "url": "https://hooks.example.com/x",
        })).json()
        path = f"/api/v1/checks/{check['uuid']}/notifications/{notification['uuid']}"
        bound = await client.put(path)
        unbound = await client.delete(path)
        unbound_again = await client.delete(path)
        missing = await client.put(
            f"/api/v1/checks/{check['uuid']}/notifications/{uuid.uuid4()}"
        )
    app.dependency_overrides.clear()

    assert bound.status_code == 204
    assert unbound.status_code == 204
    assert unbound_again.status_code == 404
    assert missing.status_code == 404


@pytest.mark.integration
@pytest.mark.parametrize(
    "payload",
    [
        {"grace_period_units": None},
        {"schedule_type": None},
        {"name": None},
        {"ping_period": None},
        {"ping_period_units": None},
    ],
)
async def test_update_check_rejects_null_fields(
    test_db: AsyncSession, payload: dict
) -> None:
    async with await _make_client(test_db) as client:
        created = (await client.post("/api/v1/checks/", json={"name": "job"})).json()
        resp = await client.patch(f"/api/v1/checks/{created['uuid']}", json=payload)
        unchanged = await client.get(f"/api/v1/checks/{created['uuid']}")
    app.dependency_overrides.clear()

    assert resp.status_code == 422
    assert unchanged.json()["name"] == "job"
    assert unchanged.json()["ping_period_units"] == "DAYS"


@pytest.mark.integration
async def test_update_check_switches_to_cron_clearing_period(test_db: AsyncSession) -> None:
    async with await _make_client(test_db) as client:
        created = (await client.post("/api/v1/checks/", json={"name": "job"})).json()
        resp = await client.patch(f"/api/v1/checks/{created['uuid']}", json={
            "schedule_type": "CRON",
            "ping_cron_expression": "*/15 * * * *",
            "ping_period": None,
            "ping_period_units": None,
        })
    app.dependency_overrides.clear()

    assert resp.status_code == 200
    assert resp.json()["schedule_type"] == "CRON"
    assert resp.json()["ping_period"] is None
