"""
auth/engine.py -- Registration, login, logout, password change, and the
bearer-token gate.

AuthEngine owns the credential state machine. It is built once at startup
with every collaborator passed in; nothing here reaches for a module-level
singleton.

Enumeration resistance:
  register() is the one place that reveals an email is taken -- it cannot
  avoid confirming the address was free. login() returns the same
  UnauthorizedError("Invalid credentials") for an unknown email and for a
  wrong password, and runs a dummy bcrypt verify on the unknown-email branch
  so both branches cost one bcrypt comparison.

Best-effort side effects:
  Audit events go through AuditLog (background, errors discarded). The
  welcome email is handed to the background runner and its failure is only
  logged.

Token lifecycle:
  logout() revokes the presented token for the rest of its natural lifetime.
  change_password() does NOT revoke the token that performed the change; the
  session stays usable, the old password does not.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from auth.audit import AuditLog
from auth.exceptions import ConflictError, NotFoundError, TokenRevokedError, UnauthorizedError
from auth.hashing import PasswordHasher
from auth.models import AuthEvent, AuthEventType, AuthResult, RequestContext, TokenClaims, User
from auth.notifier import Notifier
from auth.revocation import RevocationList
from auth.tokens import TokenService
from auth.validation import normalize_email, validate_email, validate_password

logger = logging.getLogger("authgate.auth")

INVALID_CREDENTIALS = "Invalid credentials"


class UserRepository(Protocol):
    def create(self, email: str, password_hash: str) -> User: ...

    def find_by_email(self, email: str) -> User | None: ...

    def find_by_id(self, user_id: str) -> User | None: ...

    def update_password(self, user_id: str, password_hash: str) -> bool: ...


class _Runner(Protocol):
    def submit(self, fn, *args: Any, description: str = "task") -> None: ...


class AuthEngine:
    """Credential and session operations.

    Usage:
        engine = AuthEngine(users, hasher, tokens, revocations, audit, notifier, runner)
        result = engine.register("alice@x.com", "Passw0rd!")
        claims = engine.authenticate(result.token)
        engine.logout(claims.sub, result.token)
    """

    def __init__(
        self,
        users: UserRepository,
        hasher: PasswordHasher,
        tokens: TokenService,
        revocations: RevocationList,
        audit: AuditLog,
        notifier: Notifier,
        runner: _Runner,
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.tokens = tokens
        self.revocations = revocations
        self.audit = audit
        self.notifier = notifier
        self.runner = runner

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, context: RequestContext | None = None) -> AuthResult:
        """Create an account and return it with a fresh token.

        Raises ConflictError if the email is taken -- either from the lookup
        (before any hashing work) or from the store's UNIQUE constraint when a
        concurrent registration wins the race.
        """
        validate_password(password)
        normalized = validate_email(email)

        if self.users.find_by_email(normalized) is not None:
            raise ConflictError()

        user = self.users.create(normalized, self.hasher.hash(password))
        token = self.tokens.issue(user)

        self.runner.submit(self.notifier.send_welcome, user, description="welcome-email")
        self.audit.record(AuthEventType.REGISTRATION, user_id=user.id, context=context)
        logger.info("User registered: %s", user.id)
        return AuthResult(user=user, token=token)

    def login(self, email: str, password: str, context: RequestContext | None = None) -> AuthResult:
        """Verify credentials. Unknown email and wrong password fail identically."""
        user = self.users.find_by_email(normalize_email(email))

        if user is None:
            self.hasher.verify_dummy(password)
            self.audit.record(AuthEventType.LOGIN_FAILURE, user_id=None, context=context)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not self.hasher.verify(password, user.password_hash):
            self.audit.record(AuthEventType.LOGIN_FAILURE, user_id=user.id, context=context)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        token = self.tokens.issue(user)
        self.audit.record(AuthEventType.LOGIN_SUCCESS, user_id=user.id, context=context)
        return AuthResult(user=user, token=token)

    # ------------------------------------------------------------------
    # Token gate and logout
    # ------------------------------------------------------------------

    def authenticate(self, token: str) -> TokenClaims:
        """Accept a bearer token only if it verifies AND has not been revoked.

        Raises TokenInvalidError, TokenExpiredError or TokenRevokedError.
        """
        claims = self.tokens.verify(token)
        if self.revocations.is_revoked(token):
            raise TokenRevokedError()
        return claims

    def logout(self, user_id: str, token: str, context: RequestContext | None = None) -> None:
        """Revoke token until its natural expiry. Always succeeds for an authenticated caller."""
        self.audit.record(AuthEventType.LOGOUT, user_id=user_id, context=context)
        claims = self.tokens.decode(token)
        ttl = self.tokens.remaining_seconds(claims) if claims else self.tokens.ttl_seconds
        self.revocations.revoke(token, ttl)

    # ------------------------------------------------------------------
    # Authenticated account operations
    # ------------------------------------------------------------------

    def current_user(self, user_id: str) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        context: RequestContext | None = None,
    ) -> None:
        """Replace the password after checking the current one.

        Existence is not secret on this path (the caller is authenticated),
        so a missing user is a plain NotFoundError.
        """
        user = self.current_user(user_id)
        if not self.hasher.verify(current_password, user.password_hash):
            raise UnauthorizedError("Current password is incorrect")

        validate_password(new_password)
        if not self.users.update_password(user.id, self.hasher.hash(new_password)):
            raise NotFoundError("User not found")
        self.audit.record(AuthEventType.PASSWORD_CHANGE, user_id=user.id, context=context)

    def recent_events(self, user_id: str, limit: int = 50) -> list[AuthEvent]:
        return self.audit.recent(user_id, limit)
