"""
auth/retention.py -- Periodic purge of inactive reset requests and old audit events.

Both purges are plain DELETEs bounded by a cutoff, so running them twice or
concurrently is harmless: a row removed by one run is not counted by the other.

The API lifespan schedules the two purges on independent intervals; the CLI
`purge` command runs run_retention_sweep() once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("authgate.retention")


class _ResetPurger(Protocol):
    def purge_inactive(self, older_than_days: int = 7, now: datetime | None = None) -> int: ...


class _EventPurger(Protocol):
    def purge_older_than(self, days: int = 90, now: datetime | None = None) -> int: ...


@dataclass
class RetentionReport:
    password_resets: int = 0
    auth_events: int = 0

    @property
    def total(self) -> int:
        return self.password_resets + self.auth_events


def purge_password_resets(store: _ResetPurger, retention_days: int, now: datetime | None = None) -> int:
    """Delete used or expired reset requests created more than retention_days ago."""
    deleted = store.purge_inactive(older_than_days=retention_days, now=now)
    if deleted:
        logger.info("Purged %d inactive password reset request(s)", deleted)
    return deleted


def purge_auth_events(store: _EventPurger, retention_days: int, now: datetime | None = None) -> int:
    """Delete audit events older than retention_days."""
    deleted = store.purge_older_than(days=retention_days, now=now)
    if deleted:
        logger.info("Purged %d audit event(s) older than %d days", deleted, retention_days)
    return deleted


def run_retention_sweep(
    resets: _ResetPurger,
    events: _EventPurger,
    settings: Settings,
    now: datetime | None = None,
) -> RetentionReport:
    report = RetentionReport(
        password_resets=purge_password_resets(resets, settings.password_reset_retention_days, now),
        auth_events=purge_auth_events(events, settings.auth_event_retention_days, now),
    )
    logger.info(
        "Retention sweep complete: %d reset request(s), %d audit event(s)",
        report.password_resets,
        report.auth_events,
    )
    return report
