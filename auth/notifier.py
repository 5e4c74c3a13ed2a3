"""
auth/notifier.py -- Outbound account email (welcome, password reset).

Two implementations behind one duck-typed interface:

  SmtpNotifier    -- smtplib, STARTTLS on 587 or implicit TLS, 30s timeout.
  LoggingNotifier -- dev mode: no SMTP_HOST configured, so log a redacted
                     summary instead of sending. The reset token is never
                     written to the log.

Failure policy differs by message:
  send_welcome()        -- failures are logged and swallowed. Registration
                           already succeeded; a missing welcome mail is cosmetic.
  send_password_reset() -- failures raise NotificationError. The reset row
                           already exists, and a silent failure would leave
                           the user waiting for a link that never comes.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol
from urllib.parse import quote

from auth.exceptions import NotificationError
from auth.models import User
from core.config import Settings

logger = logging.getLogger("authgate.notify")


class Notifier(Protocol):
    def send_welcome(self, user: User) -> None: ...

    def send_password_reset(self, user: User, token: str, ttl_hours: int) -> None: ...


def redact_email(email: str) -> str:
    """alice@example.com -> al***@example.com. Keeps logs free of full addresses."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def reset_link(app_url: str, token: str) -> str:
    return f"{app_url.rstrip('/')}/reset-password?token={quote(token)}"


def _welcome_bodies(app_name: str, app_url: str) -> tuple[str, str]:
    text_body = (
        "Hello!\n\n"
        "Your account has been created successfully.\n\n"
        f"You can now log in at {app_url}.\n\n"
        f"Best regards,\n{app_name}"
    )
    html_body = (
        f"<h2>Welcome to {app_name}!</h2>"
        "<p>Your account has been created successfully.</p>"
        f'<p>You can now <a href="{app_url.rstrip("/")}/login">log in here</a>.</p>'
        f"<p>Best regards,<br>{app_name}</p>"
    )
    return text_body, html_body


def _reset_bodies(link: str, ttl_hours: int) -> tuple[str, str]:
    text_body = (
        "You requested a password reset.\n\n"
        f"Use the link below to reset your password (valid for {ttl_hours} hour(s)):\n"
        f"{link}\n\n"
        "If you did not request a password reset, please ignore this email.\n"
        "Your password will not change until you use the link above."
    )
    html_body = (
        "<h2>Password Reset Request</h2>"
        "<p>You requested a password reset.</p>"
        f"<p>Use the link below to reset your password (valid for <strong>{ttl_hours} hour(s)</strong>):</p>"
        f'<p><a href="{link}">Reset Password</a></p>'
        f"<p>Or copy this URL: <code>{link}</code></p>"
        "<hr><p><small>If you did not request a password reset, you can safely ignore this email.</small></p>"
    )
    return text_body, html_body


class SmtpNotifier:
    """Sends account email over SMTP."""

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "noreply@example.com",
        app_name: str = "AuthGate",
        app_url: str = "http://localhost:8000",
        timeout: float = 30.0,
    ) -> None:
        if not host:
            raise ValueError("host is required")
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.app_name = app_name
        self.app_url = app_url
        self.timeout = timeout

    def _send(self, to_email: str, subject: str, text_body: str, html_body: str) -> None:
        """Deliver one message. Raises smtplib.SMTPException or OSError on failure."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.app_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        logger.info("Email sent to %s: %s", redact_email(to_email), subject)

    def send_welcome(self, user: User) -> None:
        text_body, html_body = _welcome_bodies(self.app_name, self.app_url)
        try:
            self._send(user.email, f"Welcome to {self.app_name}", text_body, html_body)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send welcome email to %s", redact_email(user.email))

    def send_password_reset(self, user: User, token: str, ttl_hours: int) -> None:
        text_body, html_body = _reset_bodies(reset_link(self.app_url, token), ttl_hours)
        try:
            self._send(user.email, "Password Reset Request", text_body, html_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send password reset email to %s: %s", redact_email(user.email), exc)
            raise NotificationError() from exc


class LoggingNotifier:
    """Dev-mode stand-in when SMTP is not configured. Logs, never sends."""

    def send_welcome(self, user: User) -> None:
        logger.info("email_dev_mode: welcome email for %s", redact_email(user.email))

    def send_password_reset(self, user: User, token: str, ttl_hours: int) -> None:
        logger.info(
            "email_dev_mode: password reset email for %s (valid %dh)",
            redact_email(user.email),
            ttl_hours,
        )


def build_notifier(settings: Settings) -> SmtpNotifier | LoggingNotifier:
    """SMTP when SMTP_HOST is set, otherwise the logging fallback."""
    if not settings.smtp_host:
        logger.warning("SMTP_HOST not set -- account emails will be logged, not sent")
        return LoggingNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        from_email=settings.smtp_from,
        app_name=settings.app_name,
        app_url=settings.app_url,
    )
