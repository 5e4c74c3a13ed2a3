"""
auth/tokens.py -- JWT bearer-token issuing and verification.

Security design decisions:
  python-jose with HS256. Tokens are signed with SECRET_KEY and carry
  sub (user id), email, iat, exp and a random jti. The jti makes every token
  unique, so two logins within the same second still get tokens that can be
  revoked independently. The algorithm list passed to decode is
  pinned to HS256 so a token claiming "none" or an asymmetric algorithm is
  rejected as invalid.

  verify() distinguishes two failure kinds:
    TokenInvalidError -- bad signature, malformed structure, missing claims.
    TokenExpiredError -- genuine token whose exp has passed.
  The route layer turns the first into a generic 401 and the second into a
  "log in again" 401. Both are UnauthorizedError subclasses, so callers that
  do not care can catch the base class.

  Expiry is checked against the injected clock rather than jose's internal
  time.time() call. That keeps the check testable and keeps one notion of
  "now" across the token service, reset store, and revocation sizing.

  decode() reads claims without checking the signature. It exists for
  introspection only (logging, sizing a revocation entry) and must never feed
  an authorization decision.

  Revocation is not checked here. A verified token can still be revoked;
  AuthEngine.authenticate() combines both checks.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import math
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from auth.exceptions import TokenExpiredError, TokenInvalidError
from auth.models import TokenClaims, User
from core.clock import Clock, utcnow

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 24 * 3600

_REQUIRED_CLAIMS = ("sub", "email", "iat", "exp")


def _claims_from_payload(payload: dict[str, Any]) -> TokenClaims | None:
    """Map a raw JWT payload to TokenClaims. None if any claim is missing or mistyped."""
    if any(name not in payload for name in _REQUIRED_CLAIMS):
        return None
    sub, email, iat, exp = (payload[name] for name in _REQUIRED_CLAIMS)
    if not isinstance(sub, str) or not isinstance(email, str):
        return None
    if not isinstance(iat, (int, float)) or not isinstance(exp, (int, float)):
        return None
    return TokenClaims(
        sub=sub,
        email=email,
        iat=datetime.fromtimestamp(iat, tz=timezone.utc),
        exp=datetime.fromtimestamp(exp, tz=timezone.utc),
    )


class TokenService:
    """Issues and verifies signed, time-boxed bearer tokens.

    Usage:
        tokens = TokenService(secret_key=settings.secret_key, ttl_seconds=86400)
        token = tokens.issue(user)
        claims = tokens.verify(token)      # raises TokenInvalidError / TokenExpiredError
    """

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, user: User) -> str:
        """Encode a signed JWT for user, valid for ttl_seconds from now.

        iat is truncated to whole seconds because JWT NumericDate claims are
        serialized as integers; exp is derived from the truncated value so
        exp - iat always equals the TTL exactly.
        """
        issued_at = self._clock().replace(microsecond=0)
        payload = {
            "sub": user.id,
            "email": user.email,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + timedelta(seconds=self.ttl_seconds)).timestamp()),
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Check signature, structure and expiry. Returns the claims on success."""
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalidError() from exc

        claims = _claims_from_payload(payload)
        if claims is None:
            raise TokenInvalidError()
        if claims.exp <= self._clock():
            raise TokenExpiredError()
        return claims

    def decode(self, token: str) -> TokenClaims | None:
        """Read claims WITHOUT verifying the signature. Never use for authorization."""
        try:
            payload = jwt.get_unverified_claims(token)
        except JWTError:
            return None
        return _claims_from_payload(payload)

    def remaining_seconds(self, claims: TokenClaims) -> int:
        """Whole seconds until claims.exp, rounded up, never negative."""
        remaining = (claims.exp - self._clock()).total_seconds()
        return max(0, math.ceil(remaining))
