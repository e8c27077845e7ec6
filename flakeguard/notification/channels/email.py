"""Email notification channel."""

import html
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from flakeguard.core.config import Settings, get_settings
from flakeguard.core.logging import get_logger
from flakeguard.models.notification import NotificationTask
from flakeguard.notification.channels.base import NotificationChannel

logger = get_logger(__name__)


class EmailChannel(NotificationChannel):
    """Email notification channel using SMTP."""

    def __init__(self, recipients: list[str] | None = None, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self._recipients = recipients if recipients is not None else list(self._settings.notification_emails)

    @property
    def channel_type(self) -> str:
        return "email"

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.smtp_host and self._recipients)

    def build_message(self, task: NotificationTask) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = task.title[:100]
        msg["From"] = self._settings.smtp_from or self._settings.smtp_user
        msg["To"] = ", ".join(self._recipients)
        msg.attach(MIMEText(task.message, "plain", "utf-8"))
        body = html.escape(task.message).replace("\n", "<br>")
        msg.attach(MIMEText(f"<html><body><h3>{html.escape(task.title)}</h3>{body}</body></html>", "html", "utf-8"))
        return msg

    async def send(self, task: NotificationTask) -> bool:
        if not self.is_configured:
            logger.warning("Email channel not configured")
            return False

        try:
            await aiosmtplib.send(
                self.build_message(task),
                hostname=self._settings.smtp_host,
                port=self._settings.smtp_port,
                username=self._settings.smtp_user or None,
                password=self._settings.smtp_password or None,
                use_tls=not self._settings.smtp_use_tls,
                start_tls=self._settings.smtp_use_tls,
            )
        except aiosmtplib.SMTPException as e:
            logger.error("Email send failed", task_id=task.task_id, error=str(e))
            return False

        logger.info("Email sent", recipients=self._recipients, task_id=task.task_id)
        return True
