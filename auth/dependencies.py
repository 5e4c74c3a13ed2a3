"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

Only one auth method exists: an "Authorization: Bearer <token>" header. The
token is handed to AuthEngine.authenticate(), which verifies the signature,
the expiry and the revocation list.

Every failure becomes HTTP 401 with the same body, except an expired token,
which gets code "token_expired" so clients know to log in again rather than
treat the token as forged.

request_context() collects the client IP and User-Agent for audit events.

Layer rule: auth/dependencies.py may import from fastapi (for Request and
HTTPException) because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request

from auth.exceptions import AuthError, TokenExpiredError
from auth.models import RequestContext, TokenClaims

_BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class CurrentSession:
    """The authenticated caller: verified claims plus the raw token they came from."""

    claims: TokenClaims
    token: str

    @property
    def user_id(self) -> str:
        return self.claims.sub


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message, "detail": None},
        headers={"WWW-Authenticate": "Bearer"},
    )


def bearer_token(request: Request) -> str | None:
    """Extract the token from an Authorization: Bearer header. None if absent or malformed."""
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith(_BEARER_PREFIX):
        return None
    token = header[len(_BEARER_PREFIX):].strip()
    return token or None


def get_current_user(request: Request) -> CurrentSession:
    """Require a valid, unrevoked bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: CurrentSession = Depends(get_current_user)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise _unauthorized("unauthorized", "Authentication required.")

    try:
        claims = request.app.state.auth_engine.authenticate(token)
    except TokenExpiredError as exc:
        raise _unauthorized(exc.code, exc.message) from exc
    except AuthError as exc:
        raise _unauthorized("unauthorized", "Unauthorized") from exc
    return CurrentSession(claims=claims, token=token)


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
