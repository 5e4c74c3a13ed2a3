"""
auth/audit.py -- Best-effort security audit trail.

AuditLog is the only way engines write audit events. It wraps
AuthEventStore.log_event() in a background runner so that:

  - the triggering operation never waits on the audit insert, and
  - an audit failure is logged on "authgate.audit" and discarded -- a login
    succeeds or fails on its own merits whether or not its event was stored.

Metadata is scrubbed before it reaches the store: any key that names secret
material is dropped, so a careless caller cannot persist a password, token or
hash into the append-only table.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from auth.models import AuthEvent, AuthEventType, LogEventInput, RequestContext

logger = logging.getLogger("authgate.audit")

_SECRET_KEY_FRAGMENTS = ("password", "token", "hash", "secret")


class _EventSink(Protocol):
    def log_event(self, entry: LogEventInput) -> AuthEvent: ...

    def find_by_user(self, user_id: str, limit: int = 50) -> list[AuthEvent]: ...


class _Runner(Protocol):
    def submit(self, fn, *args: Any, description: str = "task") -> None: ...


def scrub_metadata(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    """Drop keys that look like secret material. Returns None for an empty result."""
    if not metadata:
        return None
    cleaned = {
        key: value
        for key, value in metadata.items()
        if not any(fragment in key.lower() for fragment in _SECRET_KEY_FRAGMENTS)
    }
    dropped = set(metadata) - set(cleaned)
    if dropped:
        logger.warning("Dropped secret-looking audit metadata keys: %s", sorted(dropped))
    return cleaned or None


class AuditLog:
    """Fire-and-forget facade over the audit event store.

    Usage:
        audit = AuditLog(event_store, runner)
        audit.record(AuthEventType.LOGIN_SUCCESS, user_id=user.id, context=ctx)
    """

    def __init__(self, store: _EventSink, runner: _Runner) -> None:
        self._store = store
        self._runner = runner

    def record(
        self,
        event_type: AuthEventType,
        user_id: str | None = None,
        context: RequestContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Queue one event. Never raises."""
        try:
            entry = LogEventInput(
                event_type=event_type,
                user_id=user_id,
                ip_address=context.ip_address if context else None,
                user_agent=context.user_agent if context else None,
                metadata=scrub_metadata(metadata),
            )
            self._runner.submit(self._store.log_event, entry, description=f"audit:{event_type.value}")
        except Exception:
            logger.exception("Could not queue audit event %s", event_type.value)

    def recent(self, user_id: str, limit: int = 50) -> list[AuthEvent]:
        """Most recent events for user_id first. Read path -- errors propagate."""
        return self._store.find_by_user(user_id, limit)
