"""Unit tests for auth/notifier.py -- account email delivery.

Covers:
- redact_email / reset_link helpers
- build_notifier picks SMTP only when SMTP_HOST is configured
- LoggingNotifier never writes the reset token to the log
- SmtpNotifier: welcome failure is swallowed, reset failure raises
  NotificationError, a successful send carries the reset link
"""

import logging
import smtplib
from datetime import datetime, timezone

import pytest

from auth.exceptions import NotificationError
from auth.models import User
from auth.notifier import LoggingNotifier, SmtpNotifier, build_notifier, redact_email, reset_link
from core.config import Settings

TOKEN = "tok_" + "z" * 40


@pytest.fixture
def user():
    now = datetime(2026, 1, 15, tzinfo=timezone.utc)
    return User(id="u1", email="alice@example.com", password_hash="h", created_at=now, updated_at=now)


class FakeSMTP:
    """Stands in for smtplib.SMTP; records what was sent."""

    sent: list = []
    fail = False

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        if FakeSMTP.fail:
            raise smtplib.SMTPConnectError(421, "service not available")
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, from_addr, to_addrs, message):
        FakeSMTP.sent.append((from_addr, to_addrs, message))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail = False
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def smtp_notifier():
    return SmtpNotifier(host="smtp.example.com", app_url="https://auth.example.com/")


def test_redact_email():
    assert redact_email("alice@example.com") == "al***@example.com"
    assert redact_email("not-an-email") == "redacted"


def test_reset_link_quotes_token():
    assert reset_link("https://x.test/", "a+b") == "https://x.test/reset-password?token=a%2Bb"


def test_build_notifier_without_host_logs():
    settings = Settings(_env_file=None, secret_key="k" * 32, smtp_host="")
    assert isinstance(build_notifier(settings), LoggingNotifier)


def test_build_notifier_with_host_uses_smtp():
    settings = Settings(_env_file=None, secret_key="k" * 32, smtp_host="smtp.example.com", smtp_port=2525)
    notifier = build_notifier(settings)
    assert isinstance(notifier, SmtpNotifier)
    assert notifier.port == 2525


def test_smtp_notifier_requires_host():
    with pytest.raises(ValueError):
        SmtpNotifier(host="")


def test_logging_notifier_never_logs_token(user, caplog):
    with caplog.at_level(logging.INFO, logger="authgate.notify"):
        LoggingNotifier().send_password_reset(user, TOKEN, 1)
        LoggingNotifier().send_welcome(user)
    assert TOKEN not in caplog.text
    assert "alice@example.com" not in caplog.text
    assert "al***@example.com" in caplog.text


def test_reset_email_carries_link(fake_smtp, smtp_notifier, user):
    smtp_notifier.send_password_reset(user, TOKEN, 1)
    [(from_addr, to_addrs, message)] = fake_smtp.sent
    assert to_addrs == ["alice@example.com"]
    assert f"https://auth.example.com/reset-password?token={TOKEN}" in message


def test_reset_failure_raises_notification_error(fake_smtp, smtp_notifier, user):
    fake_smtp.fail = True
    with pytest.raises(NotificationError):
        smtp_notifier.send_password_reset(user, TOKEN, 1)


def test_welcome_failure_is_swallowed(fake_smtp, smtp_notifier, user, caplog):
    fake_smtp.fail = True
    with caplog.at_level(logging.ERROR, logger="authgate.notify"):
        smtp_notifier.send_welcome(user)
    assert "welcome" in caplog.text
    assert fake_smtp.sent == []
