"""Alembic environment for the deadman schema.

The database URL comes from ``Settings`` unless overridden on the command
line with ``alembic -x db_url=... upgrade head``.
"""
from __future__ import annotations

import asyncio
import sys
from logging.config import fileConfig
from pathlib import Path

_src = Path(__file__).resolve().parent.parent / "src"
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

from deadman.config import get_settings
from deadman.models.base import Base

# Every mapped table must be imported before autogenerate compares metadata.
from deadman.models import check, notification, notification_alert  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

db_url = context.get_x_argument(as_dictionary=True).get("db_url")
config.set_main_option("sqlalchemy.url", db_url or str(get_settings().database_url))

target_metadata = Base.metadata


def _skip_empty_revisions(context_, revision, directives) -> None:
    """Do not write an autogenerate revision that detected no changes."""
    if getattr(config.cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        # Enum columns are stored as VARCHAR; length changes matter.
        compare_type=True,
        process_revision_directives=_skip_empty_revisions,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for the upgrade without connecting."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    # SQLite cannot ALTER most constraints in place.
    _configure(
        connection=connection,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
