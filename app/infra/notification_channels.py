# app/infra/notification_channels.py
"""
Notification channels for telling administrators about job edits.

Supports:
- Webhook - JSON POST to ``notification_webhook_url`` (Slack/Zapier/etc.)
- Email   - SMTP to ``admin_email``

Usage:
    channel = get_notification_channel()
    await channel.send(notification)

``send`` raises ``DeliveryFailure`` when the message does not go out.
Callers decide whether that is fatal; for job edits it never is.
"""
from __future__ import annotations

import abc
import asyncio
import smtplib
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import Any

import aiohttp

from app.config import settings
from app.core.errors import DeliveryFailure
from app.infra.http_client import get_default_session
from app.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class AdminNotification:
    """Notification data sent to administrators"""
    job_id: str  # Human-readable job code
    subject: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)


class NotificationChannel(abc.ABC):

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Channel name for logging/metrics"""

    @abc.abstractmethod
    async def send(self, notification: AdminNotification) -> None:
        """
        Deliver the notification.

        Raises:
            DeliveryFailure: channel misconfigured or remote end rejected it
        """

    @abc.abstractmethod
    def is_configured(self) -> bool:
        """Check if channel is properly configured"""


class WebhookChannel(NotificationChannel):
    """POSTs ``{"text", "subject", "job_id", ...}`` to a configured URL."""

    def __init__(self, url: str | None = None, timeout_seconds: int | None = None) -> None:
        self._url = url or settings.notification_webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds

    @property
    def name(self) -> str:
        return "webhook"

    def is_configured(self) -> bool:
        return bool(self._url)

    async def send(self, notification: AdminNotification) -> None:
        if not self.is_configured():
            raise DeliveryFailure("Webhook channel not configured")

        payload = {
            "text": f"{notification.subject}\n\n{notification.body}",
            "subject": notification.subject,
            "job_id": notification.job_id,
            **notification.metadata,
        }

        session = get_default_session()
        try:
            async with session.post(
                self._url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status >= 300:
                    raise DeliveryFailure(f"Webhook returned HTTP {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeliveryFailure(f"Webhook request failed: {type(exc).__name__}") from exc

        logger.info(
            f"Webhook notification sent: job_id={notification.job_id}",
            extra={"job_id": notification.job_id},
        )


class EmailChannel(NotificationChannel):
    """Plain-text email via SMTP with STARTTLS."""

    @property
    def name(self) -> str:
        return "email"

    def is_configured(self) -> bool:
        return settings.email_enabled

    async def send(self, notification: AdminNotification) -> None:
        if not self.is_configured():
            raise DeliveryFailure("Email channel not configured")

        msg = MIMEText(notification.body, "plain", "utf-8")
        msg["From"] = settings.smtp_user
        msg["To"] = settings.admin_email
        msg["Subject"] = notification.subject

        # smtplib is blocking; keep it off the event loop
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_smtp, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryFailure(f"SMTP send failed: {type(exc).__name__}") from exc

        logger.info(
            f"Email notification sent: job_id={notification.job_id}",
            extra={"job_id": notification.job_id},
        )

    def _send_smtp(self, msg) -> None:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.notification_timeout_seconds) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg)


class DisabledChannel(NotificationChannel):
    """Used when admin notifications are switched off"""

    @property
    def name(self) -> str:
        return "disabled"

    def is_configured(self) -> bool:
        return True

    async def send(self, notification: AdminNotification) -> None:
        logger.debug(f"Notifications disabled, skipping: job_id={notification.job_id}")


_CHANNELS: dict[str, type[NotificationChannel]] = {
    "webhook": WebhookChannel,
    "email": EmailChannel,
}


def get_notification_channel() -> NotificationChannel:
    """Return the configured admin notification channel (DisabledChannel when off)."""
    if not settings.admin_notifications_enabled:
        return DisabledChannel()

    channel_name = settings.admin_notification_channel
    channel_class = _CHANNELS.get(channel_name)
    if channel_class is None:
        logger.error(f"Unknown notification channel: {channel_name}")
        return DisabledChannel()

    channel = channel_class()
    if not channel.is_configured():
        logger.warning(
            f"Notification channel '{channel_name}' not configured, notifications will fail"
        )
    return channel
