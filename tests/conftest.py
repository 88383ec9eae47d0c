"""
Pytest configuration and shared fixtures.

Uses SQLite in-memory via aiosqlite, no running PostgreSQL required.
A StaticPool keeps every session on the same in-memory database so worker
code that opens its own sessions sees the rows a test committed.
"""
from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from deadman.channels.base import (
    AlertSnapshot,
    ChannelConfig,
    CheckSnapshot,
    Delivered,
    DeliveryOutcome,
    NotificationChannel,
)
from deadman.models import Base
from deadman.models.check import Check, check_notifications
from deadman.models.enums import CheckStatus, NotificationType, PeriodUnits, ScheduleType
from deadman.models.notification import Notification

SQLITE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed clock for tests that control time explicitly.
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a fresh in-memory SQLite engine per test function."""
    engine = create_async_engine(
        SQLITE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async session, rolled back after each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_check(test_db: AsyncSession):
    """Factory persisting checks; defaults to a 1 hour period with 5 minutes grace."""
    counter = itertools.count(1)

    async def _make(**overrides) -> Check:
        index = next(counter)
        values = dict(
            name=f"job-{index}",
            ping_key=f"ping-key-{index}",
            schedule_type=ScheduleType.SIMPLE,
            ping_period=1,
            ping_period_units=PeriodUnits.HOURS,
            grace_period=5,
            grace_period_units=PeriodUnits.MINUTES,
            status=CheckStatus.CREATED,
            version=1,
        )
        values.update(overrides)
        check = Check(**values)
        test_db.add(check)
        await test_db.commit()
        await test_db.refresh(check)
        return check

    return _make


@pytest.fixture
def make_notification(test_db: AsyncSession):
    """Factory persisting notifications, optionally bound to a check."""
    counter = itertools.count(1)

    async def _make(check: Check | None = None, **overrides) -> Notification:
        index = next(counter)
        values = dict(
            name=f"hook-{index}",
            notification_type=NotificationType.WEBHOOK,
            url=f"https://hooks.example.com/{index}",
            max_retries=2,
        )
        values.update(overrides)
        notification = Notification(**values)
        test_db.add(notification)
        await test_db.flush()
        if check is not None:
            await test_db.execute(
                insert(check_notifications).values(
                    check_id=check.id, notification_id=notification.id
                )
            )
        await test_db.commit()
        await test_db.refresh(notification)
        return notification

    return _make


@pytest_asyncio.fixture
async def up_check(make_check) -> Check:
    """A check pinged at NOW, overdue one hour and five minutes later."""
    return await make_check(
        status=CheckStatus.UP,
        last_ping_at=NOW,
        overdue_at=NOW + timedelta(hours=1, minutes=5),
    )


class FakeChannel(NotificationChannel):
    """Channel returning scripted outcomes; exceptions in the script are raised."""

    def __init__(self, outcomes: list | None = None, delay: float = 0.0):
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: list[tuple[ChannelConfig, CheckSnapshot, AlertSnapshot]] = []

    def validate_config(self, config: ChannelConfig) -> bool:
        return True

    async def send(
        self,
        config: ChannelConfig,
        check: CheckSnapshot,
        alert: AlertSnapshot,
    ) -> DeliveryOutcome:
        self.calls.append((config, check, alert))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.outcomes:
            return Delivered()
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
