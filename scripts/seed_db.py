#!/usr/bin/env python3
"""Seed database with sample data for development."""
from __future__ import annotations

import asyncio

from deadman.database import AsyncSessionLocal, init_db
from deadman.models.enums import NotificationType, PeriodUnits, ScheduleType
from deadman.schemas.check import CheckCreate
from deadman.schemas.notification import NotificationCreate
from deadman.services.check_service import CheckService
from deadman.services.notification_service import NotificationService
from deadman.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


async def seed_database() -> None:
    """Seed database with sample checks and a webhook notification."""
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            checks = CheckService(db)
            notifications = NotificationService(db)

            webhook = await notifications.create_notification(
                NotificationCreate(
                    name="Ops webhook",
                    notification_type=NotificationType.WEBHOOK,
                    url="https://hooks.example.com/deadman",
                    max_retries=5,
                )
            )

            samples = [
                CheckCreate(
                    name="nightly-backup",
                    schedule_type=ScheduleType.SIMPLE,
                    ping_period=1,
                    ping_period_units=PeriodUnits.DAYS,
                    grace_period=1,
                    grace_period_units=PeriodUnits.HOURS,
                ),
                CheckCreate(
                    name="hourly-report",
                    schedule_type=ScheduleType.CRON,
                    ping_cron_expression="0 * * * *",
                    grace_period=10,
                    grace_period_units=PeriodUnits.MINUTES,
                ),
            ]

            for data in samples:
                check = await checks.create_check(data)
                await notifications.bind(check.uuid, webhook.uuid)
                logger.info("check_seeded", name=check.name, ping_key=check.ping_key)

            await db.commit()

            logger.info("database_seeded", check_count=len(samples))

        except Exception as exc:
            logger.error("seed_failed", error=str(exc))
            await db.rollback()
            raise


if __name__ == "__main__":
    asyncio.run(seed_database())
