"""
mailer/smtp.py -- Mailer implementations.

SmtpMailer hands plain-text messages to an SMTP relay (STARTTLS + login when
configured). Every transport failure is re-raised as auth.errors.DeliveryError
so AuthService can run its compensating write without knowing about smtplib.

LogMailer writes the message to the log instead of sending it. build_mailer()
falls back to it when SMTP_HOST is not configured, which keeps local
development working without a mail server. Settings refuses an empty
SMTP_HOST unless DEBUG=true, so reset links only reach the log in dev mode.

Sending is synchronous. The HTTP routes that send mail are plain `def`
handlers, so FastAPI runs them in its threadpool and the event loop is not
blocked while the relay answers.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText

from auth.errors import DeliveryError
from core.config import Settings

logger = logging.getLogger("preplog.mailer")


class SmtpMailer:
    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "noreply@preplog.local",
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to_address: str, subject: str, body: str) -> None:
        """Deliver one plain-text message. Raises DeliveryError on any transport failure."""
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to_address

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s via %s:%d failed: %s", to_address, self.host, self.port, exc)
            raise DeliveryError() from exc
        logger.info("Sent '%s' to %s", subject, to_address)


class LogMailer:
    """Development mailer: logs instead of sending."""

    def send(self, to_address: str, subject: str, body: str) -> None:
        logger.warning("SMTP not configured; message to %s not sent.\nSubject: %s\n\n%s", to_address, subject, body)


def build_mailer(settings: Settings) -> SmtpMailer | LogMailer:
    """Return an SmtpMailer when SMTP_HOST is set, otherwise a LogMailer."""
    if not settings.smtp_host:
        return LogMailer()
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.mail_from,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.smtp_timeout,
    )
