from __future__ import annotations

import httpx
import structlog

from deadman.channels.base import (
    AlertSnapshot,
    ChannelConfig,
    CheckSnapshot,
    Delivered,
    DeliveryOutcome,
    NotificationChannel,
    PermanentFailure,
    TransientFailure,
    alert_message,
    alert_subject,
)

logger = structlog.get_logger(__name__)

# 4xx responses worth retrying; every other 4xx is final.
RETRYABLE_CLIENT_ERRORS = frozenset({408, 425, 429})


class WebhookChannel(NotificationChannel):
    """Deliver alerts as a JSON POST to a webhook URL."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.transport = transport

    def validate_config(self, config: ChannelConfig) -> bool:
        """Validate webhook destination."""
        return bool(config.url) and config.url.startswith(("http://", "https://"))

    def _build_payload(self, check: CheckSnapshot, alert: AlertSnapshot) -> dict:
        return {
            "check_id": str(check.uuid),
            "check_name": check.name,
            "status": alert.check_status.value,
            "title": alert_subject(check, alert),
            "message": alert_message(check, alert),
            "last_ping_at": check.last_ping_at.isoformat() if check.last_ping_at else None,
            "alert_id": alert.alert_id,
            "attempt": alert.attempt,
            "created_at": alert.created_at.isoformat(),
        }

    async def send(
        self,
        config: ChannelConfig,
        check: CheckSnapshot,
        alert: AlertSnapshot,
    ) -> DeliveryOutcome:
        """
        POST the alert to the webhook.

        Returns:
            Delivered on 2xx, TransientFailure on timeouts, network errors,
            5xx and throttling, PermanentFailure otherwise
        """
        if not self.validate_config(config):
            logger.error(
                "webhook_invalid_config",
                notification_id=config.notification_id,
                url=config.url,
            )
            return PermanentFailure("invalid_webhook_url")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    config.url,
                    json=self._build_payload(check, alert),
                )
        except httpx.TimeoutException as exc:
            logger.warning("webhook_timeout", url=config.url, error=str(exc))
            return TransientFailure(f"timeout: {exc}")
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            logger.error("webhook_invalid_url", url=config.url, error=str(exc))
            return PermanentFailure(f"invalid_url: {exc}")
        except httpx.RequestError as exc:
            logger.warning("webhook_network_error", url=config.url, error=str(exc))
            return TransientFailure(f"network_error: {exc}")

        status_code = response.status_code
        if 200 <= status_code < 300:
            logger.info(
                "webhook_alert_sent",
                url=config.url,
                status_code=status_code,
                alert_id=alert.alert_id,
            )
            return Delivered()

        logger.warning(
            "webhook_alert_rejected",
            url=config.url,
            status_code=status_code,
            alert_id=alert.alert_id,
        )
        if status_code >= 500 or status_code in RETRYABLE_CLIENT_ERRORS:
            return TransientFailure(f"http_status={status_code}")
        return PermanentFailure(f"http_status={status_code}")
