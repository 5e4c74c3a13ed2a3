"""Unit tests for auth/engine.py -- registration, login, logout, password change.

Covers:
- register: account + token, canonical email, duplicate -> ConflictError without
  hashing, policy and email-format violations -> InvalidError, welcome email
  best-effort
- login: success, unknown email and wrong password fail identically, dummy
  verify on unknown email, audit events for each outcome
- authenticate: expired, tampered and revoked tokens are rejected
- logout: revokes only the presented token
- change_password: wrong current password, policy, old password stops working,
  existing token keeps working
- a broken audit store does not break login
"""

import pytest

from auth.audit import AuditLog
from auth.engine import INVALID_CREDENTIALS, AuthEngine
from auth.exceptions import (
    ConflictError,
    InvalidError,
    NotFoundError,
    TokenExpiredError,
    TokenInvalidError,
    TokenRevokedError,
    UnauthorizedError,
)
from auth.models import AuthEventType, RequestContext
from core.background import InlineRunner

PASSWORD = "Passw0rd!"


class CountingHasher:
    """Wraps a real hasher and counts calls."""

    def __init__(self, inner):
        self.inner = inner
        self.hash_calls = 0
        self.dummy_calls = 0

    def hash(self, secret):
        self.hash_calls += 1
        return self.inner.hash(secret)

    def verify(self, secret, digest):
        return self.inner.verify(secret, digest)

    def verify_dummy(self, secret):
        self.dummy_calls += 1
        return self.inner.verify_dummy(secret)


@pytest.fixture
def counting_hasher(hasher):
    return CountingHasher(hasher)


@pytest.fixture
def engine(user_store, counting_hasher, tokens, revocations, audit, notifier):
    return AuthEngine(user_store, counting_hasher, tokens, revocations, audit, notifier, InlineRunner())


def _event_types(event_store, user_id):
    return [e.event_type for e in event_store.find_by_user(user_id)]


# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_returns_user_and_valid_token(self, auth_engine, notifier, event_store):
        result = auth_engine.register("  New.User@Example.com ", PASSWORD)
        assert result.user.email == "new.user@example.com"
        claims = auth_engine.authenticate(result.token)
        assert claims.sub == result.user.id
        assert claims.email == "new.user@example.com"
        assert notifier.welcomes == ["new.user@example.com"]
        assert _event_types(event_store, result.user.id) == [AuthEventType.REGISTRATION]

    def test_public_view_hides_hash(self, auth_engine):
        public = auth_engine.register("hide@example.com", PASSWORD).to_public()
        assert set(public["user"]) == {"id", "email", "created_at"}

    def test_duplicate_email_conflicts_without_hashing(self, engine, counting_hasher):
        engine.register("dup@example.com", PASSWORD)
        hashes_before = counting_hasher.hash_calls
        with pytest.raises(ConflictError) as exc_info:
            engine.register("DUP@example.com", "Different1!")
        assert exc_info.value.message == "Email already registered"
        assert exc_info.value.status_code == 409
        assert counting_hasher.hash_calls == hashes_before

    @pytest.mark.parametrize("password", ["short", "        ", "a" * 73])
    def test_policy_violation(self, auth_engine, user_store, password):
        with pytest.raises(InvalidError):
            auth_engine.register("policy@example.com", password)
        assert user_store.find_by_email("policy@example.com") is None

    @pytest.mark.parametrize("email", ["", "   ", "no-at-sign.example.com", "two@@example.com", "user@localhost"])
    def test_invalid_email_rejected(self, engine, user_store, counting_hasher, email):
        with pytest.raises(InvalidError):
            engine.register(email, PASSWORD)
        assert user_store.count() == 0
        assert counting_hasher.hash_calls == 0

    def test_welcome_failure_does_not_fail_registration(self, auth_engine, notifier):
        notifier.fail_welcome = True
        result = auth_engine.register("nowelcome@example.com", PASSWORD)
        assert result.token


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_success(self, auth_engine, event_store):
        user = auth_engine.register("login@example.com", PASSWORD).user
        ctx = RequestContext(ip_address="198.51.100.4", user_agent="pytest")
        result = auth_engine.login("LOGIN@example.com", PASSWORD, ctx)
        assert result.user.id == user.id
        assert auth_engine.authenticate(result.token).sub == user.id
        latest = event_store.find_by_user(user.id)[0]
        assert latest.event_type is AuthEventType.LOGIN_SUCCESS
        assert latest.ip_address == "198.51.100.4"

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, engine, counting_hasher):
        engine.register("known@example.com", PASSWORD)

        with pytest.raises(UnauthorizedError) as unknown:
            engine.login("unknown@example.com", PASSWORD)
        with pytest.raises(UnauthorizedError) as wrong:
            engine.login("known@example.com", "WrongPass1!")

        assert type(unknown.value) is type(wrong.value)
        assert unknown.value.message == wrong.value.message == INVALID_CREDENTIALS
        assert unknown.value.code == wrong.value.code
        assert counting_hasher.dummy_calls == 1

    def test_failures_are_audited(self, auth_engine, event_store):
        user = auth_engine.register("audited@example.com", PASSWORD).user
        with pytest.raises(UnauthorizedError):
            auth_engine.login("audited@example.com", "WrongPass1!")
        with pytest.raises(UnauthorizedError):
            auth_engine.login("ghost@example.com", PASSWORD)

        assert _event_types(event_store, user.id)[0] is AuthEventType.LOGIN_FAILURE
        assert event_store.count(AuthEventType.LOGIN_FAILURE) == 2

    def test_broken_audit_store_does_not_break_login(
        self, user_store, hasher, tokens, revocations, notifier
    ):
        class BrokenStore:
            def log_event(self, entry):
                raise RuntimeError("audit table locked")

            def find_by_user(self, user_id, limit=50):
                return []

        engine = AuthEngine(
            user_store,
            hasher,
            tokens,
            revocations,
            AuditLog(BrokenStore(), InlineRunner()),
            notifier,
            InlineRunner(),
        )
        engine.register("resilient@example.com", PASSWORD)
        assert engine.login("resilient@example.com", PASSWORD).token


# ---------------------------------------------------------------------------
# authenticate / logout
# ---------------------------------------------------------------------------


class TestSessionLifecycle:
    def test_expired_token_rejected(self, auth_engine, clock):
        token = auth_engine.register("exp@example.com", PASSWORD).token
        clock.advance(seconds=3600)
        with pytest.raises(TokenExpiredError):
            auth_engine.authenticate(token)

    def test_tampered_token_rejected(self, auth_engine):
        token = auth_engine.register("tamper@example.com", PASSWORD).token
        header, payload, signature = token.split(".")
        with pytest.raises(TokenInvalidError):
            auth_engine.authenticate(".".join([header, payload[:-2] + "xx", signature]))

    def test_logout_revokes_only_presented_token(self, auth_engine, revocations, event_store):
        first = auth_engine.register("multi@example.com", PASSWORD)
        second = auth_engine.login("multi@example.com", PASSWORD)

        auth_engine.logout(first.user.id, first.token)

        with pytest.raises(TokenRevokedError):
            auth_engine.authenticate(first.token)
        assert auth_engine.authenticate(second.token).sub == first.user.id
        assert _event_types(event_store, first.user.id)[0] is AuthEventType.LOGOUT

    def test_revoked_token_is_unauthorized(self, auth_engine):
        result = auth_engine.register("gone@example.com", PASSWORD)
        auth_engine.logout(result.user.id, result.token)
        with pytest.raises(UnauthorizedError):
            auth_engine.authenticate(result.token)

    def test_revocation_entry_lives_for_remaining_lifetime(self, auth_engine, revocations, clock):
        result = auth_engine.register("ttl@example.com", PASSWORD)
        clock.advance(seconds=600)
        auth_engine.logout(result.user.id, result.token)
        assert len(revocations) == 1

    def test_current_user(self, auth_engine):
        user = auth_engine.register("me@example.com", PASSWORD).user
        assert auth_engine.current_user(user.id).email == "me@example.com"
        with pytest.raises(NotFoundError):
            auth_engine.current_user("missing")


# ---------------------------------------------------------------------------
# change_password
# ---------------------------------------------------------------------------


class TestChangePassword:
    def test_change_password(self, auth_engine, event_store):
        result = auth_engine.register("change@example.com", PASSWORD)
        auth_engine.change_password(result.user.id, PASSWORD, "Brand-new-pass1")

        with pytest.raises(UnauthorizedError):
            auth_engine.login("change@example.com", PASSWORD)
        assert auth_engine.login("change@example.com", "Brand-new-pass1").token
        assert AuthEventType.PASSWORD_CHANGE in _event_types(event_store, result.user.id)

    def test_existing_token_survives_change(self, auth_engine):
        result = auth_engine.register("keep@example.com", PASSWORD)
        auth_engine.change_password(result.user.id, PASSWORD, "Brand-new-pass1")
        assert auth_engine.authenticate(result.token).sub == result.user.id

    def test_wrong_current_password(self, auth_engine):
        result = auth_engine.register("wrongcur@example.com", PASSWORD)
        with pytest.raises(UnauthorizedError) as exc_info:
            auth_engine.change_password(result.user.id, "NotMyPass1", "Brand-new-pass1")
        assert exc_info.value.message == "Current password is incorrect"

    def test_new_password_policy(self, auth_engine):
        result = auth_engine.register("policy2@example.com", PASSWORD)
        with pytest.raises(InvalidError):
            auth_engine.change_password(result.user.id, PASSWORD, "short")
        assert auth_engine.login("policy2@example.com", PASSWORD).token

    def test_unknown_user(self, auth_engine):
        with pytest.raises(NotFoundError):
            auth_engine.change_password("missing", PASSWORD, "Brand-new-pass1")
