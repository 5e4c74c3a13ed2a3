"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST /api/v1/auth/register                 -- create account; 201 {user, token}
  POST /api/v1/auth/login                    -- password login; {user, token}
  GET  /api/v1/auth/me                       -- current user (requires auth)
  POST /api/v1/auth/logout                   -- revoke the presented token (requires auth)
  POST /api/v1/auth/password-reset/request   -- email a reset link; uniform reply
  POST /api/v1/auth/password-reset/confirm   -- redeem reset token, set new password
  POST /api/v1/auth/password-change          -- change password (requires auth)
  GET  /api/v1/auth/events                   -- caller's recent audit events (requires auth)

Security:
  Credential endpoints (register, login, reset request, reset confirm) carry
  the tighter AUTH_RATE_LIMIT per client IP on top of the global limit.
  Responses that carry or change credentials are sent with Cache-Control: no-store.
  Login and reset-request give the same answer whether or not the email exists.

Handlers are plain `def`: the engines do blocking bcrypt and database work,
so FastAPI runs them on its thread pool. AuthError raised by an engine is
rendered by the handler in api/main.py.

No `from __future__ import annotations` here: slowapi wraps the rate-limited
handlers, and FastAPI must resolve their annotations as real types.
"""

from fastapi import APIRouter, Depends, Query, Request, Response

from api.limiter import auth_rate_limit, limiter
from api.models import (
    AuthEventOut,
    AuthEventsResponse,
    AuthResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetConfirmBody,
    PasswordResetRequestBody,
    RegisterRequest,
    UserOut,
)
from auth.dependencies import CurrentSession, get_current_user, request_context
from auth.engine import AuthEngine
from auth.reset import ResetEngine

# Auth policy:
# - POST /api/v1/auth/register:                public, auth rate limit
# - POST /api/v1/auth/login:                   public, auth rate limit
# - POST /api/v1/auth/password-reset/request:  public, auth rate limit
# - POST /api/v1/auth/password-reset/confirm:  public, auth rate limit
# - GET  /api/v1/auth/me:                      requires auth (get_current_user)
# - POST /api/v1/auth/logout:                  requires auth (get_current_user)
# - POST /api/v1/auth/password-change:         requires auth (get_current_user)
# - GET  /api/v1/auth/events:                  requires auth (get_current_user)
router = APIRouter()

RESET_REQUESTED_MESSAGE = "If your email is registered, you will receive a reset link."


def _auth_engine(request: Request) -> AuthEngine:
    return request.app.state.auth_engine


def _reset_engine(request: Request) -> ResetEngine:
    return request.app.state.reset_engine


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(auth_rate_limit, override_defaults=False)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create an account and log it in.

    409 if the email is already registered. This is the one endpoint that
    confirms an address is in use.
    """
    result = _auth_engine(request).register(body.email, body.password, request_context(request))
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(auth_rate_limit, override_defaults=False)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Exchange email and password for a bearer token.

    Unknown email and wrong password both return 401 "Invalid credentials".
    """
    result = _auth_engine(request).login(body.email, body.password, request_context(request))
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/auth/password-reset/request", response_model=MessageResponse)
@limiter.limit(auth_rate_limit, override_defaults=False)
def request_password_reset(request: Request, body: PasswordResetRequestBody) -> MessageResponse:
    """Email a reset link if the address is registered. The reply never says which."""
    _reset_engine(request).request_reset(body.email, request_context(request))
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/auth/password-reset/confirm", response_model=MessageResponse)
@limiter.limit(auth_rate_limit, override_defaults=False)
def confirm_password_reset(
    request: Request,
    response: Response,
    body: PasswordResetConfirmBody,
) -> MessageResponse:
    """Redeem a reset token. 400 for an unknown, expired or already-used token."""
    _reset_engine(request).confirm_reset(body.token, body.new_password, request_context(request))
    _no_store(response)
    return MessageResponse(message="Password reset successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(
    request: Request,
    response: Response,
    session: CurrentSession = Depends(get_current_user),
) -> MeResponse:
    user = _auth_engine(request).current_user(session.user_id)
    _no_store(response)
    return MeResponse(user=UserOut.from_user(user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, session: CurrentSession = Depends(get_current_user)) -> MessageResponse:
    """Revoke the presented token. Other tokens for the same user stay valid."""
    _auth_engine(request).logout(session.user_id, session.token, request_context(request))
    return MessageResponse(message="Logged out successfully")


@router.post("/auth/password-change", response_model=MessageResponse)
def change_password(
    request: Request,
    response: Response,
    body: PasswordChangeRequest,
    session: CurrentSession = Depends(get_current_user),
) -> MessageResponse:
    """Replace the caller's password. The token used for this call stays valid."""
    _auth_engine(request).change_password(
        session.user_id,
        body.current_password,
        body.new_password,
        request_context(request),
    )
    _no_store(response)
    return MessageResponse(message="Password changed successfully")


@router.get("/auth/events", response_model=AuthEventsResponse)
def recent_events(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    session: CurrentSession = Depends(get_current_user),
) -> AuthEventsResponse:
    """The caller's own audit trail, newest first."""
    events = _auth_engine(request).recent_events(session.user_id, limit)
    return AuthEventsResponse(events=[AuthEventOut.from_event(e) for e in events])
