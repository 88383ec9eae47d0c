from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from deadman.models.base import Base
from deadman.models.enums import CheckStatus, PeriodUnits, ScheduleType
from deadman.models.types import UTCDateTime

if TYPE_CHECKING:
    from deadman.models.notification import Notification


check_notifications = Table(
    "check_notifications",
    Base.metadata,
    Column("check_id", ForeignKey("checks.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "notification_id",
        ForeignKey("notifications.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Check(Base):
    """A heartbeat target that clients ping on a schedule."""

    __tablename__ = "checks"

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True)

    # Public UUID for API exposure
    uuid: Mapped[uuid.UUID] = mapped_column(
        default=uuid.uuid4,
        unique=True,
        index=True,
    )

    # Owned by external project management
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # Secret used by inbound pings
    ping_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Check details
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Schedule
    schedule_type: Mapped[ScheduleType] = mapped_column(
        Enum(ScheduleType, name="schedule_type", native_enum=False, length=16),
        nullable=False,
        default=ScheduleType.SIMPLE,
    )
    ping_period: Mapped[int | None] = mapped_column(Integer, nullable=True, default=1)
    ping_period_units: Mapped[PeriodUnits | None] = mapped_column(
        Enum(PeriodUnits, name="period_units", native_enum=False, length=16),
        nullable=True,
        default=PeriodUnits.DAYS,
    )
    ping_cron_expression: Mapped[str | None] = mapped_column(String(255), nullable=True)
    grace_period: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    grace_period_units: Mapped[PeriodUnits] = mapped_column(
        Enum(PeriodUnits, name="period_units", native_enum=False, length=16),
        nullable=False,
        default=PeriodUnits.HOURS,
    )

    # Mutable state
    status: Mapped[CheckStatus] = mapped_column(
        Enum(CheckStatus, name="check_status", native_enum=False, length=16),
        nullable=False,
        default=CheckStatus.CREATED,
        index=True,
    )
    last_ping_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    resumed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    # Stored deadline used to index the sweep
    overdue_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

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
    deleted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # Relationships
    notifications: Mapped[list[Notification]] = relationship(
        secondary=check_notifications,
        back_populates="checks",
    )

    def __repr__(self) -> str:
        return f"<Check(id={self.id}, name='{self.name}', status='{self.status}')>"


class RetiredPingKey(Base):
    """A ping key that was rotated away and may never be issued again."""

    __tablename__ = "retired_ping_keys"

    id: Mapped[int] = mapped_column(primary_key=True)
    ping_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    check_id: Mapped[int] = mapped_column(
        ForeignKey("checks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    retired_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<RetiredPingKey(check_id={self.check_id})>"
