"""
auth/reset.py -- Password reset by emailed single-use token.

request_reset() answers the same way whether or not the email is registered:
it returns None in both cases and the route layer sends one fixed message.
Only a registered email produces a PasswordResetRequest row and an email.

confirm_reset() treats unknown, expired and already-used tokens identically:
one password_reset_failure audit event and InvalidError("Invalid or expired
reset token"). Redemption goes through PasswordResetStore.redeem(), which
spends the token and sets the new password in one transaction; if a
concurrent request spent the token first, redeem() returns False and this
caller gets the same InvalidError.

The reset email is sent synchronously and its failure propagates as
NotificationError. The token row already exists at that point and stays
unused until it expires.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Protocol

from auth.audit import AuditLog
from auth.engine import UserRepository
from auth.exceptions import InvalidError
from auth.hashing import PasswordHasher
from auth.models import AuthEventType, PasswordResetRequest, RequestContext
from auth.notifier import Notifier
from auth.validation import normalize_email, validate_password
from core.clock import Clock, utcnow

logger = logging.getLogger("authgate.auth")

INVALID_RESET_TOKEN = "Invalid or expired reset token"
DEFAULT_TTL_HOURS = 1

# 32 random bytes -> 43 url-safe characters, 256 bits of entropy.
_TOKEN_BYTES = 32


class ResetRepository(Protocol):
    def create(self, user_id: str, token: str, expires_at: datetime) -> PasswordResetRequest: ...

    def find_active(self, token: str, now: datetime | None = None) -> PasswordResetRequest | None: ...

    def redeem(self, reset: PasswordResetRequest, password_hash: str, now: datetime | None = None) -> bool: ...


def generate_reset_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)


class ResetEngine:
    """Reset-request / reset-confirm flow.

    Usage:
        resets = ResetEngine(users, reset_store, hasher, audit, notifier, ttl_hours=1)
        resets.request_reset("alice@x.com")
        resets.confirm_reset(token_from_email, "N3wPassword!")
    """

    def __init__(
        self,
        users: UserRepository,
        resets: ResetRepository,
        hasher: PasswordHasher,
        audit: AuditLog,
        notifier: Notifier,
        ttl_hours: int = DEFAULT_TTL_HOURS,
        clock: Clock = utcnow,
    ) -> None:
        self.users = users
        self.resets = resets
        self.hasher = hasher
        self.audit = audit
        self.notifier = notifier
        self.ttl_hours = ttl_hours
        self._clock = clock

    def request_reset(self, email: str, context: RequestContext | None = None) -> None:
        """Issue and email a reset token if the email is registered; otherwise do nothing.

        Raises NotificationError if the reset email cannot be delivered.
        """
        user = self.users.find_by_email(normalize_email(email))
        if user is None:
            return None

        token = generate_reset_token()
        expires_at = self._clock() + timedelta(hours=self.ttl_hours)
        self.resets.create(user.id, token, expires_at)
        self.notifier.send_password_reset(user, token, self.ttl_hours)
        self.audit.record(AuthEventType.PASSWORD_RESET_REQUEST, user_id=user.id, context=context)
        logger.info("Password reset requested for user %s", user.id)
        return None

    def confirm_reset(self, token: str, new_password: str, context: RequestContext | None = None) -> None:
        """Redeem token and set new_password. Raises InvalidError for any unusable token."""
        validate_password(new_password)

        now = self._clock()
        reset = self.resets.find_active(token, now=now)
        if reset is None or not reset.is_active(now):
            self._fail(context)

        password_hash = self.hasher.hash(new_password)
        if not self.resets.redeem(reset, password_hash, now=self._clock()):
            self._fail(context)

        self.audit.record(AuthEventType.PASSWORD_RESET_COMPLETE, user_id=reset.user_id, context=context)
        logger.info("Password reset completed for user %s", reset.user_id)

    def _fail(self, context: RequestContext | None) -> None:
        self.audit.record(AuthEventType.PASSWORD_RESET_FAILURE, user_id=None, context=context)
        raise InvalidError(INVALID_RESET_TOKEN)
