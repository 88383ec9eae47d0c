from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from deadman.models.enums import CheckStatus, PeriodUnits, ScheduleType
from deadman.services.schedule import Schedule, validate_schedule
from deadman.utils.exceptions import ScheduleValidationError

# Fields a PATCH may omit but never clear.
NON_NULLABLE_UPDATE_FIELDS = frozenset(
    {"name", "description", "schedule_type", "grace_period", "grace_period_units"}
)


class CheckBase(BaseModel):
    """Base check schema."""

    name: str = Field(default="", max_length=255)
    description: str = Field(default="", max_length=10000)
    project_id: int | None = None
    schedule_type: ScheduleType = ScheduleType.SIMPLE
    ping_period: int | None = Field(default=1, ge=1)
    ping_period_units: PeriodUnits | None = PeriodUnits.DAYS
    ping_cron_expression: str | None = Field(None, max_length=255)
    grace_period: int = Field(default=1, ge=0)
    grace_period_units: PeriodUnits = PeriodUnits.HOURS


class CheckCreate(CheckBase):
    """Schema for creating a check."""

    @model_validator(mode="after")
    def validate_schedule_fields(self) -> CheckCreate:
        try:
            validate_schedule(self.to_schedule())
        except ScheduleValidationError as exc:
            raise ValueError(exc.reason) from exc
        return self

    def to_schedule(self) -> Schedule:
        return Schedule(
            schedule_type=self.schedule_type,
            grace_period=self.grace_period,
            grace_units=self.grace_period_units,
            period=self.ping_period,
            period_units=self.ping_period_units,
            cron_expression=self.ping_cron_expression,
        )


class CheckUpdate(BaseModel):
    """
    Schema for updating a check.

    Schedule fields are validated against the stored check when applied.
    """

    name: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=10000)
    schedule_type: ScheduleType | None = None
    ping_period: int | None = Field(None, ge=1)
    ping_period_units: PeriodUnits | None = None
    ping_cron_expression: str | None = Field(None, max_length=255)
    grace_period: int | None = Field(None, ge=0)
    grace_period_units: PeriodUnits | None = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> CheckUpdate:
        nulled = sorted(
            field
            for field in NON_NULLABLE_UPDATE_FIELDS & self.model_fields_set
            if getattr(self, field) is None
        )
        if nulled:
            raise ValueError(f"fields cannot be null: {', '.join(nulled)}")
        return self


class CheckResponse(CheckBase):
    """Schema for check response."""

    model_config = ConfigDict(from_attributes=True)

    uuid: uuid.UUID
    ping_key: str
    status: CheckStatus
    last_ping_at: datetime | None
    overdue_at: datetime | None
    resumed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class CheckList(BaseModel):
    """Schema for list of checks."""

    checks: list[CheckResponse]
    total: int
