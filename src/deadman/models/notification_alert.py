from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from deadman.models.base import Base
from deadman.models.enums import CheckStatus, DeliveryStatus
from deadman.models.types import UTCDateTime

if TYPE_CHECKING:
    from deadman.models.check import Check
    from deadman.models.notification import Notification

IN_FLIGHT_PREDICATE = text("delivery_status IN ('QUEUED', 'RUNNING')")


class NotificationAlert(Base):
    """One delivery obligation for a check transition on one channel."""

    __tablename__ = "notification_alerts"
    __table_args__ = (
        # At most one in-flight alert per (check, notification, check_status)
        Index(
            "uq_notification_alerts_in_flight",
            "check_id",
            "notification_id",
            "check_status",
            unique=True,
            postgresql_where=IN_FLIGHT_PREDICATE,
            sqlite_where=IN_FLIGHT_PREDICATE,
        ),
        Index("ix_notification_alerts_claim", "delivery_status", "available_at"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True)

    # Foreign keys
    check_id: Mapped[int] = mapped_column(
        ForeignKey("checks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    notification_id: Mapped[int] = mapped_column(
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Transition being reported
    check_status: Mapped[CheckStatus] = mapped_column(
        Enum(CheckStatus, name="check_status", native_enum=False, length=16),
        nullable=False,
    )

    # Delivery state
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, name="delivery_status", native_enum=False, length=16),
        nullable=False,
        default=DeliveryStatus.QUEUED,
    )
    retries_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Claim / lease
    available_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Relationships
    check: Mapped[Check] = relationship()
    notification: Mapped[Notification] = relationship()

    def __repr__(self) -> str:
        return (
            f"<NotificationAlert(id={self.id}, check_id={self.check_id}, "
            f"check_status='{self.check_status}', "
            f"delivery_status='{self.delivery_status}')>"
        )
