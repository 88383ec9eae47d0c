from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import structlog

from deadman.models.check import Check
from deadman.models.enums import CheckStatus
from deadman.services.check_store import CheckStore, EnqueueResult

logger = structlog.get_logger(__name__)

ALERTABLE_STATUSES = frozenset({CheckStatus.UP, CheckStatus.DOWN})


@dataclass
class DispatchReport:
    """Which notifications received a new alert for a transition."""

    check_id: int
    check_status: CheckStatus
    created: list[int] = field(default_factory=list)
    duplicates: list[int] = field(default_factory=list)


class AlertDispatcher:
    """Turns a check status transition into queued notification alerts."""

    def __init__(self, store: CheckStore):
        self.store = store

    async def dispatch(
        self,
        check: Check,
        check_status: CheckStatus,
        now: datetime | None = None,
    ) -> DispatchReport:
        """
        Ensure one in-flight alert per bound notification for ``check_status``.

        Notifications that already have a QUEUED or RUNNING alert for the
        same (check, check_status) are skipped, so repeated transitions do not
        double-enqueue.

        Args:
            check: Check that transitioned
            check_status: Status being reported (DOWN, or UP for recovery)
            now: Creation timestamp for new alerts

        Returns:
            DispatchReport listing created and duplicate notification IDs
        """
        if check_status not in ALERTABLE_STATUSES:
            raise ValueError(f"Cannot alert on check status {check_status!r}")

        report = DispatchReport(check_id=check.id, check_status=check_status)
        notifications = await self.store.get_bound_notifications(check)

        for notification in notifications:
            result = await self.store.try_enqueue_alert(
                check_id=check.id,
                notification_id=notification.id,
                check_status=check_status,
                retries=notification.max_retries,
                now=now,
            )
            if result is EnqueueResult.CREATED:
                report.created.append(notification.id)
            else:
                report.duplicates.append(notification.id)

        if report.duplicates:
            logger.info(
                "alert_deduplicated",
                check_id=check.id,
                check_status=check_status.value,
                notification_ids=report.duplicates,
            )

        logger.info(
            "alerts_dispatched",
            check_id=check.id,
            check_status=check_status.value,
            created=len(report.created),
            duplicates=len(report.duplicates),
        )
        return report
