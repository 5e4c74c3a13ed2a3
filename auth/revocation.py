"""
auth/revocation.py -- Tokens invalidated before their natural expiry.

Logout puts the caller's token here. The authentication gate consults the list
after signature verification succeeds, so a revoked token is rejected even
though its signature and exp are still good.

Entries only need to outlive the token itself: once exp passes, verify()
rejects the token on its own and the entry is dead weight. Each entry
therefore carries a deadline and is swept lazily -- on lookup for the entry
being checked, and across the whole map on every revoke().

The in-memory implementation is per-process and does not survive a restart.
A multi-process deployment needs a shared backend implementing the same
RevocationList protocol.

Deadlines use time.monotonic() so wall-clock adjustments cannot resurrect or
prematurely drop an entry. The monotonic source is injectable for tests.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger("authgate.auth")


class RevocationList(Protocol):
    def revoke(self, token: str, ttl_seconds: int) -> None: ...

    def is_revoked(self, token: str) -> bool: ...


class InMemoryRevocationList:
    """Lock-guarded map of token -> monotonic deadline.

    Usage:
        revocations = InMemoryRevocationList()
        revocations.revoke(token, ttl_seconds=3600)
        revocations.is_revoked(token)   # True until the deadline passes
    """

    def __init__(self, monotonic: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()
        self._monotonic = monotonic

    def revoke(self, token: str, ttl_seconds: int) -> None:
        """Mark token invalid for ttl_seconds. A non-positive ttl is a no-op."""
        if ttl_seconds <= 0:
            return
        now = self._monotonic()
        with self._lock:
            deadline = now + ttl_seconds
            # Revoking twice keeps the later deadline.
            self._entries[token] = max(deadline, self._entries.get(token, 0.0))
            self._sweep_locked(now)
        logger.debug("Token revoked (prefix=%s, ttl=%ds)", token[:12], ttl_seconds)

    def is_revoked(self, token: str) -> bool:
        now = self._monotonic()
        with self._lock:
            deadline = self._entries.get(token)
            if deadline is None:
                return False
            if deadline <= now:
                del self._entries[token]
                return False
            return True

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            return self._sweep_locked(self._monotonic())

    def _sweep_locked(self, now: float) -> int:
        expired = [token for token, deadline in self._entries.items() if deadline <= now]
        for token in expired:
            del self._entries[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
