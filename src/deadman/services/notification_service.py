from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from deadman.models.check import Check, check_notifications
from deadman.models.notification import Notification
from deadman.services.check_store import utcnow
from deadman.utils.exceptions import CheckNotFoundError, NotificationNotFoundError

if TYPE_CHECKING:
    from deadman.schemas.notification import NotificationCreate, NotificationUpdate

logger = structlog.get_logger(__name__)


class NotificationService:
    """Business logic for notification channels and their check bindings."""

    def __init__(self, db: AsyncSession, default_max_retries: int = 5):
        self.db = db
        self.default_max_retries = default_max_retries

    async def create_notification(self, data: NotificationCreate) -> Notification:
        """
        Create a new notification.

        Args:
            data: Notification creation data

        Returns:
            Created notification
        """
        notification_data = data.model_dump()
        # Serialize Pydantic URL and email types to plain strings
        if notification_data["url"] is not None:
            notification_data["url"] = str(notification_data["url"])
        if notification_data["email"] is not None:
            notification_data["email"] = str(notification_data["email"])
        if notification_data["max_retries"] is None:
            notification_data["max_retries"] = self.default_max_retries

        notification = Notification(**notification_data)
        self.db.add(notification)
        await self.db.flush()
        await self.db.refresh(notification)

        logger.info(
            "notification_created",
            notification_id=notification.id,
            notification_type=notification.notification_type.value,
        )
        return notification

    async def get_notification(self, notification_uuid: uuid.UUID) -> Notification | None:
        stmt = select(Notification).where(
            Notification.uuid == notification_uuid,
            Notification.deleted == False,  # noqa: E712
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_notifications(
        self,
        skip: int = 0,
        limit: int = 100,
        project_id: int | None = None,
    ) -> tuple[list[Notification], int]:
        """
        List live notifications with pagination and total count.

        Returns:
            A tuple containing the list of notifications and the total count
        """
        base_stmt = select(Notification).where(
            Notification.deleted == False  # noqa: E712
        )
        if project_id is not None:
            base_stmt = base_stmt.where(Notification.project_id == project_id)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = base_stmt.order_by(Notification.id.asc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def update_notification(
        self,
        notification_uuid: uuid.UUID,
        data: NotificationUpdate,
    ) -> Notification | None:
        """
        Update a notification.

        Alerts already queued keep the retry budget they were created with.

        Returns:
            Updated notification if found, None otherwise
        """
        notification = await self.get_notification(notification_uuid)
        if notification is None:
            return None

        for key, value in data.model_dump(exclude_unset=True).items():
            # Serialize HttpUrl and EmailStr to string if needed
            if key in ("url", "email") and value is not None:
                value = str(value)
            setattr(notification, key, value)

        await self.db.flush()
        await self.db.refresh(notification)
        return notification

    async def delete_notification(self, notification_uuid: uuid.UUID) -> bool:
        """
        Soft-delete a notification.

        Returns:
            True if deleted, False if not found
        """
        notification = await self.get_notification(notification_uuid)
        if notification is None:
            return False

        notification.deleted = True
        notification.deleted_at = utcnow()
        await self.db.flush()

        logger.info("notification_deleted", notification_id=notification.id)
        return True

    async def bind(self, check_uuid: uuid.UUID, notification_uuid: uuid.UUID) -> bool:
        """
        Attach a notification to a check.

        Returns:
            True if a new binding was created, False if it already existed

        Raises:
            CheckNotFoundError: If the check does not exist
            NotificationNotFoundError: If the notification does not exist
        """
        check_id, notification_id = await self._resolve(check_uuid, notification_uuid)

        existing = await self.db.execute(
            select(check_notifications.c.check_id).where(
                check_notifications.c.check_id == check_id,
                check_notifications.c.notification_id == notification_id,
            )
        )
        if existing.first() is not None:
            return False

        await self.db.execute(
            insert(check_notifications).values(
                check_id=check_id, notification_id=notification_id
            )
        )
        logger.info(
            "notification_bound", check_id=check_id, notification_id=notification_id
        )
        return True

    async def unbind(self, check_uuid: uuid.UUID, notification_uuid: uuid.UUID) -> bool:
        """
        Detach a notification from a check.

        Returns:
            True if a binding was removed, False if there was none
        """
        check_id, notification_id = await self._resolve(check_uuid, notification_uuid)

        result = await self.db.execute(
            delete(check_notifications).where(
                check_notifications.c.check_id == check_id,
                check_notifications.c.notification_id == notification_id,
            )
        )
        removed = result.rowcount > 0
        if removed:
            logger.info(
                "notification_unbound",
                check_id=check_id,
                notification_id=notification_id,
            )
        return removed

    async def _resolve(
        self, check_uuid: uuid.UUID, notification_uuid: uuid.UUID
    ) -> tuple[int, int]:
        check_id = (
            await self.db.execute(
                select(Check.id).where(
                    Check.uuid == check_uuid, Check.deleted == False  # noqa: E712
                )
            )
        ).scalar_one_or_none()
        if check_id is None:
            raise CheckNotFoundError(check_uuid)

        notification = await self.get_notification(notification_uuid)
        if notification is None:
            raise NotificationNotFoundError(notification_uuid)

        return check_id, notification.id
