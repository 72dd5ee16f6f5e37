"""Notifier backends: SMTP delivery and a logging backend for development."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Mapping, Optional, Sequence

from clinic.config import settings
from clinic.notifications.templates import RenderedEmail, TemplateKey, render

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised by a notifier when a message could not be delivered."""


class Notifier:
    """Send a templated message to a list of recipients."""

    async def send(
        self,
        recipients: Sequence[str],
        template_key: TemplateKey,
        data: Mapping[str, str],
    ) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes rendered messages to the log instead of sending them."""

    async def send(
        self,
        recipients: Sequence[str],
        template_key: TemplateKey,
        data: Mapping[str, str],
    ) -> None:
        message = render(template_key, data)
        logger.info(
            "Notification %s to %s: %s",
            template_key.value,
            ", ".join(recipients),
            message.subject,
        )
        logger.debug("Notification body:\n%s", message.body)


@dataclass
class SmtpConfig:
    """SMTP connection settings."""
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    from_email: Optional[str] = None

    @classmethod
    def from_settings(cls) -> SmtpConfig:
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            from_email=settings.MAIL_FROM,
        )


class SmtpNotifier(Notifier):
    """Delivers rendered templates over SMTP in a worker thread."""

    def __init__(self, config: Optional[SmtpConfig] = None) -> None:
        self.config = config or SmtpConfig.from_settings()

    def _build(self, recipients: Sequence[str], message: RenderedEmail) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.config.from_email or self.config.username
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(message.body, "plain"))
        return msg

    def _deliver(self, recipients: Sequence[str], msg: MIMEMultipart) -> None:
        try:
            with smtplib.SMTP(self.config.host, self.config.port, timeout=30) as server:
                if self.config.use_tls:
                    server.starttls()
                if self.config.username and self.config.password:
                    server.login(self.config.username, self.config.password)
                server.send_message(msg, to_addrs=list(recipients))
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"SMTP delivery failed: {exc}") from exc

    async def send(
        self,
        recipients: Sequence[str],
        template_key: TemplateKey,
        data: Mapping[str, str],
    ) -> None:
        if not recipients:
            return
        msg = self._build(recipients, render(template_key, data))
        await asyncio.to_thread(self._deliver, recipients, msg)
        logger.info(
            "Sent %s to %d recipient(s)", template_key.value, len(recipients)
        )


# ── Process-wide notifier ───────────────────────────────────────────

_notifier: Optional[Notifier] = None


def _build_default() -> Notifier:
    if settings.NOTIFIER_BACKEND == "smtp":
        return SmtpNotifier()
    return LogNotifier()


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = _build_default()
    return _notifier


def set_notifier(notifier: Optional[Notifier]) -> None:
    """Swap the process-wide notifier; ``None`` restores the configured default."""
    global _notifier
    _notifier = notifier
