from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Enum, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from deadman.models.base import Base
from deadman.models.check import check_notifications
from deadman.models.enums import NotificationType
from deadman.models.types import UTCDateTime

if TYPE_CHECKING:
    from deadman.models.check import Check


class Notification(Base):
    """A delivery channel bound to checks or to a whole project."""

    __tablename__ = "notifications"

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True)

    # Public UUID for API exposure
    uuid: Mapped[uuid.UUID] = mapped_column(
        default=uuid.uuid4,
        unique=True,
        index=True,
    )

    # When set, applies to every check in the project
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # Channel details
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type", native_enum=False, length=16),
        nullable=False,
    )
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Template for new alerts only
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Soft delete
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Relationships
    checks: Mapped[list[Check]] = relationship(
        secondary=check_notifications,
        back_populates="notifications",
    )

    @property
    def destination(self) -> str | None:
        if self.notification_type == NotificationType.EMAIL:
            return self.email
        return self.url

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, type='{self.notification_type}', "
            f"name='{self.name}')>"
        )
