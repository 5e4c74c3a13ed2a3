"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

One shared instance means every route counts against the same in-memory
store. A per-module instance would keep isolated counters and never trigger.

Limits are read from Settings at request time through callables, so tests can
raise them via AUTH_RATE_LIMIT / GLOBAL_RATE_LIMIT before the app is built.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def auth_rate_limit() -> str:
    """Limit for credential endpoints (register, login, reset request/confirm)."""
    return get_settings().auth_rate_limit


def global_rate_limit() -> str:
    return get_settings().global_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    default_limits=[global_rate_limit],
)
