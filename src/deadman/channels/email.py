from __future__ import annotations

import asyncio
import html
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

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
from deadman.models.enums import CheckStatus

logger = structlog.get_logger(__name__)


class EmailChannel(NotificationChannel):
    """Send alerts via SMTP with plain text and HTML bodies."""

    def __init__(
        self,
        smtp_host: str | None,
        smtp_port: int,
        from_email: str,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        use_tls: bool = True,
        use_html: bool = True,
        timeout: float = 30.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.from_email = from_email
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.use_html = use_html
        self.timeout = timeout

    def validate_config(self, config: ChannelConfig) -> bool:
        """Validate SMTP server settings and the recipient address."""
        if not self.smtp_host or not self.from_email:
            logger.error("email_missing_smtp_config")
            return False

        if not config.email or "@" not in config.email:
            logger.error(
                "email_invalid_recipient",
                notification_id=config.notification_id,
            )
            return False

        return True

    def _get_status_color(self, status: CheckStatus) -> str:
        if status == CheckStatus.DOWN:
            return "#dc3545"  # Red
        return "#28a745"  # Green

    def _create_html_body(self, check: CheckSnapshot, alert: AlertSnapshot) -> str:
        color = self._get_status_color(alert.check_status)
        last_ping = check.last_ping_at.isoformat() if check.last_ping_at else "never"
        # Check names are user input.
        subject = html.escape(alert_subject(check, alert))
        name = html.escape(check.name)
        message = html.escape(alert_message(check, alert))

        return f"""
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
            line-height: 1.6;
            color: #333;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
        }}
        .header {{
            background-color: {color};
            color: white;
            padding: 20px;
            text-align: center;
            border-radius: 8px 8px 0 0;
        }}
        .content {{
            border: 1px solid #dee2e6;
            border-top: none;
            padding: 30px;
        }}
        .label {{
            font-weight: 600;
            color: #6c757d;
            font-size: 14px;
            text-transform: uppercase;
        }}
        .footer {{
            padding: 15px 30px;
            font-size: 12px;
            color: #6c757d;
            text-align: center;
        }}
    </style>
</head>
<body>
    <div class="header">
        <h1>{subject}</h1>
    </div>
    <div class="content">
        <div class="label">Check</div>
        <div>{name}</div>
        <div class="label">Status</div>
        <div>{alert.check_status.value}</div>
        <div class="label">Last ping</div>
        <div>{last_ping}</div>
        <p>{message}</p>
    </div>
    <div class="footer">
        This is an automated alert from your dead man's switch monitor.
    </div>
</body>
</html>
"""

    def _create_plain_body(self, check: CheckSnapshot, alert: AlertSnapshot) -> str:
        last_ping = check.last_ping_at.isoformat() if check.last_ping_at else "never"
        return (
            f"{alert_subject(check, alert)}\n\n"
            f"Check: {check.name}\n"
            f"Status: {alert.check_status.value}\n"
            f"Last ping: {last_ping}\n\n"
            f"{alert_message(check, alert)}\n"
        )

    async def send(
        self,
        config: ChannelConfig,
        check: CheckSnapshot,
        alert: AlertSnapshot,
    ) -> DeliveryOutcome:
        """
        Send alert email without blocking the event loop.

        Returns:
            Delivery outcome classified from the SMTP exchange
        """
        if not self.validate_config(config):
            return PermanentFailure("invalid_email_config")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._send_sync, config, check, alert)

    def _send_sync(
        self,
        config: ChannelConfig,
        check: CheckSnapshot,
        alert: AlertSnapshot,
    ) -> DeliveryOutcome:
        """Synchronous email sending (called from executor)."""
        msg = MIMEMultipart("alternative")
        msg["From"] = self.from_email
        msg["To"] = config.email
        msg["Subject"] = alert_subject(check, alert)
        msg.attach(MIMEText(self._create_plain_body(check, alert), "plain"))
        if self.use_html:
            msg.attach(MIMEText(self._create_html_body(check, alert), "html"))

        try:
            with smtplib.SMTP(
                self.smtp_host, self.smtp_port, timeout=self.timeout
            ) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

        except smtplib.SMTPRecipientsRefused as exc:
            logger.error(
                "email_recipient_refused",
                notification_id=config.notification_id,
                recipients=list(exc.recipients),
            )
            return PermanentFailure("recipient_refused")

        except smtplib.SMTPAuthenticationError as exc:
            logger.error(
                "email_authentication_failed",
                smtp_host=self.smtp_host,
                smtp_user=self.smtp_user,
            )
            return PermanentFailure(f"smtp_auth_failed: {exc.smtp_code}")

        except smtplib.SMTPResponseException as exc:
            logger.error(
                "smtp_error",
                smtp_host=self.smtp_host,
                smtp_code=exc.smtp_code,
                error=str(exc),
            )
            if exc.smtp_code >= 500:
                return PermanentFailure(f"smtp_code={exc.smtp_code}")
            return TransientFailure(f"smtp_code={exc.smtp_code}")

        except (smtplib.SMTPException, OSError) as exc:
            logger.warning(
                "email_send_failed",
                smtp_host=self.smtp_host,
                error=str(exc),
            )
            return TransientFailure(f"smtp_unavailable: {exc}")

        logger.info(
            "email_alert_sent",
            to_email=config.email,
            check_name=check.name,
            check_status=alert.check_status.value,
        )
        return Delivered()
