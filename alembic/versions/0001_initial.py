"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False, server_default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.text("now()") if server_default else None,
    )


def upgrade() -> None:
    op.create_table(
        "checks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("uuid", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("ping_key", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("schedule_type", sa.String(length=16), nullable=False),
        sa.Column("ping_period", sa.Integer(), nullable=True),
        sa.Column("ping_period_units", sa.String(length=16), nullable=True),
        sa.Column("ping_cron_expression", sa.String(length=255), nullable=True),
        sa.Column("grace_period", sa.Integer(), nullable=False),
        sa.Column("grace_period_units", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        _timestamp("last_ping_at", nullable=True, server_default=False),
        _timestamp("resumed_at", nullable=True, server_default=False),
        _timestamp("overdue_at", nullable=True, server_default=False),
        sa.Column("version", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("deleted_at", nullable=True, server_default=False),
        sa.PrimaryKeyConstraint("id", name="pk_checks"),
        sa.UniqueConstraint("ping_key", name="uq_checks_ping_key"),
    )
    op.create_index("ix_checks_uuid", "checks", ["uuid"], unique=True)
    op.create_index("ix_checks_project_id", "checks", ["project_id"])
    op.create_index("ix_checks_status", "checks", ["status"])
    op.create_index("ix_checks_overdue_at", "checks", ["overdue_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("uuid", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("notification_type", sa.String(length=16), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("url", sa.String(length=2048), nullable=True),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("deleted_at", nullable=True, server_default=False),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
    )
    op.create_index("ix_notifications_uuid", "notifications", ["uuid"], unique=True)
    op.create_index("ix_notifications_project_id", "notifications", ["project_id"])

    op.create_table(
        "check_notifications",
        sa.Column("check_id", sa.Integer(), nullable=False),
        sa.Column("notification_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["check_id"],
            ["checks.id"],
            name="fk_check_notifications_check_id_checks",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["notification_id"],
            ["notifications.id"],
            name="fk_check_notifications_notification_id_notifications",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint(
            "check_id", "notification_id", name="pk_check_notifications"
        ),
    )

    op.create_table(
        "retired_ping_keys",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ping_key", sa.String(length=64), nullable=False),
        sa.Column("check_id", sa.Integer(), nullable=False),
        _timestamp("retired_at"),
        sa.ForeignKeyConstraint(
            ["check_id"],
            ["checks.id"],
            name="fk_retired_ping_keys_check_id_checks",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_retired_ping_keys"),
        sa.UniqueConstraint("ping_key", name="uq_retired_ping_keys_ping_key"),
    )
    op.create_index("ix_retired_ping_keys_check_id", "retired_ping_keys", ["check_id"])

    op.create_table(
        "notification_alerts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("check_id", sa.Integer(), nullable=False),
        sa.Column("notification_id", sa.Integer(), nullable=False),
        sa.Column("check_status", sa.String(length=16), nullable=False),
        sa.Column("delivery_status", sa.String(length=16), nullable=False),
        sa.Column("retries_remaining", sa.Integer(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.String(length=1000), nullable=True),
        _timestamp("available_at"),
        sa.Column("claimed_by", sa.String(length=255), nullable=True),
        _timestamp("claimed_at", nullable=True, server_default=False),
        _timestamp("created_at"),
        _timestamp("finished_at", nullable=True, server_default=False),
        sa.ForeignKeyConstraint(
            ["check_id"],
            ["checks.id"],
            name="fk_notification_alerts_check_id_checks",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["notification_id"],
            ["notifications.id"],
            name="fk_notification_alerts_notification_id_notifications",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_notification_alerts"),
    )
    op.create_index(
        "ix_notification_alerts_check_id", "notification_alerts", ["check_id"]
    )
    op.create_index(
        "ix_notification_alerts_notification_id",
        "notification_alerts",
        ["notification_id"],
    )
    op.create_index(
        "ix_notification_alerts_created_at", "notification_alerts", ["created_at"]
    )
    op.create_index(
        "ix_notification_alerts_claim",
        "notification_alerts",
        ["delivery_status", "available_at"],
    )
    # At most one in-flight alert per (check, notification, check_status)
    op.create_index(
        "uq_notification_alerts_in_flight",
        "notification_alerts",
        ["check_id", "notification_id", "check_status"],
        unique=True,
        postgresql_where=sa.text("delivery_status IN ('QUEUED', 'RUNNING')"),
    )


def downgrade() -> None:
    op.drop_index("uq_notification_alerts_in_flight", table_name="notification_alerts")
    op.drop_index("ix_notification_alerts_claim", table_name="notification_alerts")
    op.drop_index("ix_notification_alerts_created_at", table_name="notification_alerts")
    op.drop_index(
        "ix_notification_alerts_notification_id", table_name="notification_alerts"
    )
    op.drop_index("ix_notification_alerts_check_id", table_name="notification_alerts")
    op.drop_table("notification_alerts")

    op.drop_index("ix_retired_ping_keys_check_id", table_name="retired_ping_keys")
    op.drop_table("retired_ping_keys")

    op.drop_table("check_notifications")

    op.drop_index("ix_notifications_project_id", table_name="notifications")
    op.drop_index("ix_notifications_uuid", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_checks_overdue_at", table_name="checks")
    op.drop_index("ix_checks_status", table_name="checks")
    op.drop_index("ix_checks_project_id", table_name="checks")
    op.drop_index("ix_checks_uuid", table_name="checks")
    op.drop_table("checks")
