"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
engines do the work; these types only own domain shape.

Timestamps are always timezone-aware UTC datetimes in Python. How they are
persisted is the store's concern (see auth/store.py).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class AuthEventType(str, Enum):
    """Every security event the audit log knows about. Closed set."""

    REGISTRATION = "registration"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    LOGOUT = "logout"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET_COMPLETE = "password_reset_complete"
    PASSWORD_RESET_FAILURE = "password_reset_failure"
    PASSWORD_CHANGE = "password_change"


@dataclass
class User:
    """A registered account.

    email is always the canonical form (trimmed, lowercase). password_hash is
    bcrypt output and must never leave the service -- use to_public() for
    anything that crosses the HTTP boundary.
    """

    id: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class PasswordResetRequest:
    """A single-use, time-boxed reset token issued to one user.

    Active iff used_at is None and expires_at is in the future. used_at moves
    from None to a timestamp exactly once.
    """

    id: str
    user_id: str
    reset_token: str
    created_at: datetime
    expires_at: datetime
    used_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now


@dataclass
class AuthEvent:
    """Immutable audit record. metadata never carries secrets."""

    id: int
    event_type: AuthEventType
    created_at: datetime
    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class LogEventInput:
    """What a caller hands the audit log; id and created_at are assigned on write."""

    event_type: AuthEventType
    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class RequestContext:
    """Client facts recorded next to security events (never used for decisions)."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Decoded bearer-token payload: sub (user id), email, iat, exp."""

    sub: str
    email: str
    iat: datetime
    exp: datetime


@dataclass
class AuthResult:
    """Outcome of a successful register or login."""

    user: User
    token: str

    def to_public(self) -> dict[str, Any]:
        return {"user": self.user.to_public(), "token": self.token}
