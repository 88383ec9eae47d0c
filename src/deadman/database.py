"""
Engines and session factories.

The API serves requests from its own pooled engine. The sweeper and the
delivery workers share a second, smaller engine sized to the worker count,
so a burst of deliveries can never exhaust the connections requests need.
Both open one short session per sweep pass, claim or outcome; nothing holds
a session across a channel call.
"""
from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from deadman.config import Settings, get_settings
from deadman.models.base import Base

settings = get_settings()

# Connections kept for the sweeper and the reaper on top of one per worker.
BACKGROUND_EXTRA_CONNECTIONS = 2


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory whose objects stay readable after commit."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


def create_background_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        str(settings.database_url),
        echo=settings.log_level == "DEBUG",
        pool_pre_ping=True,
        pool_size=settings.delivery_workers + BACKGROUND_EXTRA_CONNECTIONS,
        max_overflow=0,
    )


engine = create_async_engine(
    str(settings.database_url),
    echo=settings.log_level == "DEBUG",
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

AsyncSessionLocal = make_session_factory(engine)

_background_engine: AsyncEngine | None = None
_background_sessions: async_sessionmaker[AsyncSession] | None = None


def get_background_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory for the sweeper and the delivery pool.

    The engine is created on first use, so API-only processes never open it.
    """
    global _background_engine, _background_sessions
    if _background_sessions is None:
        _background_engine = create_background_engine(settings)
        _background_sessions = make_session_factory(_background_engine)
    return _background_sessions


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session.

    Services flush; the request commits once the handler returns, so a ping
    and the recovery alerts it enqueues land in the same transaction.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create any missing tables. ``alembic upgrade head`` owns the real schema."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the API engine and, if it was opened, the background engine."""
    global _background_engine, _background_sessions
    await engine.dispose()
    if _background_engine is not None:
        await _background_engine.dispose()
        _background_engine = None
        _background_sessions = None
