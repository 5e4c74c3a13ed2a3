"""
API request and response models for the AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the domain shape;
route handlers map between the two.

Request validation reuses the rules in auth/validation.py so the HTTP layer
and the engines can never disagree about what a valid email or password is.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AuthEvent, AuthResult, User
from auth.validation import email_problem, normalize_email, password_problem

# Reset tokens are 43 chars (token_urlsafe(32)); the bounds leave room for
# format changes without accepting junk.
RESET_TOKEN_MIN_LENGTH = 16
RESET_TOKEN_MAX_LENGTH = 128


def _check_email(value: str) -> str:
    problem = email_problem(value)
    if problem:
        raise ValueError(problem)
    return normalize_email(value)


def _check_password(value: str) -> str:
    problem = password_problem(value)
    if problem:
        raise ValueError(problem)
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_password(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    The email must be well formed; the password only needs to be present.
    Applying the password policy here would reveal it to a caller probing
    accounts.
    """

    email: str
    password: str = Field(min_length=1, max_length=1024)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _check_email(value)


class PasswordResetRequestBody(BaseModel):
    """Request body for POST /api/v1/auth/password-reset/request."""

    email: str

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _check_email(value)


class PasswordResetConfirmBody(BaseModel):
    """Request body for POST /api/v1/auth/password-reset/confirm."""

    token: str = Field(min_length=RESET_TOKEN_MIN_LENGTH, max_length=RESET_TOKEN_MAX_LENGTH)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def check_new_password(cls, value: str) -> str:
        return _check_password(value)


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/v1/auth/password-change."""

    current_password: str = Field(min_length=1, max_length=1024)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def check_new_password(cls, value: str) -> str:
        return _check_password(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(**user.to_public())


class AuthResponse(BaseModel):
    """Response for register and login: the user plus a bearer token."""

    model_config = ConfigDict(frozen=True)

    user: UserOut
    token: str

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls.model_validate(result.to_public())


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserOut


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class AuthEventOut(BaseModel):
    """One audit record as shown to the user it belongs to."""

    model_config = ConfigDict(frozen=True)

    id: int
    event_type: str
    created_at: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @classmethod
    def from_event(cls, event: AuthEvent) -> "AuthEventOut":
        return cls(
            id=event.id,
            event_type=event.event_type.value,
            created_at=event.created_at.isoformat(),
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            metadata=event.metadata,
        )


class AuthEventsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    events: list[AuthEventOut]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
