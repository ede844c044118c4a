"""Outgoing mail. Sending is best effort: failures are logged and reported, never raised."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    ok: bool
    error: str | None = None


class Mailer:
    """Send mail through SMTP, or log it when no SMTP host is configured."""

    def __init__(
        self,
        host: str | None = None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        sender: str = "no-reply@prowriters.local",
        timeout: float = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "Mailer":
        return cls(
            host=config.get("SMTP_HOST"),
            port=int(config.get("SMTP_PORT") or 587),
            username=config.get("SMTP_USER"),
            password=config.get("SMTP_PASS"),
            sender=config.get("EMAIL_FROM") or "no-reply@prowriters.local",
            timeout=float(config.get("SMTP_TIMEOUT") or 10),
        )

    def _build_message(self, to: str, subject: str, text: str, html: str | None) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = to
        message.attach(MIMEText(text, "plain"))
        if html:
            message.attach(MIMEText(html, "html"))
        return message

    def _deliver(self, message: MIMEMultipart) -> None:
        if self.port == 465:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            if self.port != 465:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)

    def send(self, to: str, subject: str, text: str, html: str | None = None) -> SendResult:
        if not self.host:
            logger.info("SMTP not configured; email to %s not sent.\nSubject: %s\n%s", to, subject, text)
            return SendResult(ok=True)

        try:
            self._deliver(self._build_message(to, subject, text, html))
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to, exc)
            return SendResult(ok=False, error=str(exc))

        logger.info("Email sent to %s: %s", to, subject)
        return SendResult(ok=True)


def send_verification_email(mailer: Mailer, email: str, code: str, origin: str) -> SendResult:
    text = (
        f"Your ProWriter verification code is: {code}\n\n"
        "Enter this code in the app to verify your email."
    )
    html = (
        f"<p>Your ProWriter verification code is: <strong>{code}</strong></p>"
        f"<p>Or visit <code>{origin}/login.html</code> and enter the code to verify.</p>"
    )
    return mailer.send(email, "ProWriter - Verify your email", text, html)
