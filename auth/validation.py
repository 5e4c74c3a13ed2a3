"""
auth/validation.py -- Email canonicalization and password policy.

Shared by the engines (which enforce policy regardless of transport) and by
the pydantic request models in api/models.py (which reject bad input before a
route runs).

Password policy follows NIST 800-63B: length over composition rules.
  - at least 8 characters
  - at most 72 characters (bcrypt ignores bytes beyond 72)
  - not empty or whitespace-only

Layer rule: stdlib only.
"""

from __future__ import annotations

import re

from auth.exceptions import InvalidError

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 72
MAX_EMAIL_LENGTH = 255

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
_EMAIL_RE = re.compile(EMAIL_PATTERN)


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookup: trimmed and lowercase."""
    return email.strip().lower()


def password_problem(password: str | None) -> str | None:
    """Return a human-readable policy violation, or None if the password is acceptable."""
    if not password or not password.strip():
        return "Password is required"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if len(password) > MAX_PASSWORD_LENGTH:
        return f"Password must not exceed {MAX_PASSWORD_LENGTH} characters"
    return None


def email_problem(email: str | None) -> str | None:
    """Return a human-readable format violation, or None if the email is acceptable."""
    if not email or not email.strip():
        return "Email is required"
    if len(email) > MAX_EMAIL_LENGTH:
        return f"Email must not exceed {MAX_EMAIL_LENGTH} characters"
    if not _EMAIL_RE.match(normalize_email(email)):
        return "Invalid email format"
    return None


def validate_password(password: str | None) -> str:
    """Return the password unchanged or raise InvalidError."""
    problem = password_problem(password)
    if problem:
        raise InvalidError(problem)
    return password  # type: ignore[return-value]


def validate_email(email: str | None) -> str:
    """Return the normalized email or raise InvalidError."""
    problem = email_problem(email)
    if problem:
        raise InvalidError(problem)
    return normalize_email(email)  # type: ignore[arg-type]
