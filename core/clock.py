"""
core/clock.py -- Injectable wall clock.

Anything that compares against "now" (token expiry, reset-token TTL,
retention windows) takes a Clock parameter defaulting to utcnow, so tests can
move time without sleeping or patching the datetime module.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
