"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore, PasswordResetStore and
AuthEventStore are the repositories; the _row_to_* functions are the mappers.
Engine and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency -- the database is the arbiter, not the caller:
  users.email is UNIQUE. UserStore.create() inserts without a prior read and
  maps IntegrityError to ConflictError, so two simultaneous registrations of
  one email produce exactly one account.

  Reset redemption is a compare-and-swap: UPDATE ... WHERE used_at IS NULL
  AND expires_at > now. Only the caller whose UPDATE touched a row may
  proceed. PasswordResetStore.redeem() runs that swap and the owner's password
  update in one transaction so a token can never be spent without the
  password changing, or the password change without the token being spent.

Timestamps:
  Stored as fixed-width ISO 8601 UTC strings ("2026-01-02T03:04:05.000006+00:00").
  Fixed width matters: it makes lexicographic comparison in SQL identical to
  chronological comparison on both SQLite and PostgreSQL TEXT columns.

SQLite notes:
  check_same_thread=False because FastAPI runs sync routes on a thread pool.
  WAL mode lets readers proceed during writes. foreign_keys is off by default
  in SQLite and must be enabled per connection.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.exceptions import ConflictError, InternalError
from auth.models import AuthEvent, AuthEventType, LogEventInput, PasswordResetRequest, User
from auth.validation import normalize_email
from core.clock import Clock, utcnow

logger = logging.getLogger("authgate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # canonical form only
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_password_resets = Table(
    "password_resets",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("reset_token", String(128), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),  # NULL until redeemed
)

_auth_events = Table(
    "auth_events",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36)),  # NULL for unknown-identity events; no FK on purpose
    Column("event_type", String(40), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("metadata", Text),  # JSON object
    Column("created_at", String(32), nullable=False),
    Index("ix_auth_events_user_created", "user_id", "created_at"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign keys. PRAGMAs are per-connection in SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build an engine for db_url and create any missing tables.

    Usage:
        engine = create_db_engine("sqlite:///authgate.db")
        engine = create_db_engine("postgresql+psycopg://user:pw@host/db")
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


def check_database(engine: Engine) -> bool:
    """Cheap liveness probe for the health endpoint."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Database health check failed")
        return False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_db(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records, keyed by id and by canonical email.

    Usage:
        users = UserStore(engine)
        user = users.create("alice@example.com", hasher.hash("Passw0rd!"))
        users.find_by_email("  Alice@Example.com ")   # same user
    """

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def create(self, email: str, password_hash: str) -> User:
        """Insert a new user. Raises ConflictError if the email is already taken.

        The UNIQUE constraint decides, not a prior SELECT, so concurrent
        registrations of the same address cannot both succeed.
        """
        now = _to_db(self._clock())
        values = {
            "id": str(uuid4()),
            "email": normalize_email(email),
            "password_hash": password_hash,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self.engine.connect() as conn:
                conn.execute(_users.insert().values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError() from exc
        return User(
            id=values["id"],
            email=values["email"],
            password_hash=password_hash,
            created_at=_from_db(now),
            updated_at=_from_db(now),
        )

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email (normalized before querying). None if absent."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password(self, user_id: str, password_hash: str) -> bool:
        """Replace the stored hash and refresh updated_at. False if user_id is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=_to_db(self._clock()))
            )
            conn.commit()
        return result.rowcount > 0

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return result or 0


class PasswordResetStore:
    """Repository for single-use password reset requests.

    Usage:
        resets = PasswordResetStore(engine)
        req = resets.create(user.id, token, expires_at)
        active = resets.find_active(token)           # None if unknown, used, or expired
        resets.redeem(active, hasher.hash(new_pw))   # True exactly once
    """

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def create(self, user_id: str, token: str, expires_at: datetime) -> PasswordResetRequest:
        now = self._clock()
        reset = PasswordResetRequest(
            id=str(uuid4()),
            user_id=user_id,
            reset_token=token,
            created_at=_from_db(_to_db(now)),
            expires_at=_from_db(_to_db(expires_at)),
        )
        with self.engine.connect() as conn:
            conn.execute(
                _password_resets.insert().values(
                    id=reset.id,
                    user_id=user_id,
                    reset_token=token,
                    created_at=_to_db(now),
                    expires_at=_to_db(expires_at),
                    used_at=None,
                )
            )
            conn.commit()
        return reset

    def find_active(self, token: str, now: datetime | None = None) -> PasswordResetRequest | None:
        """Return the request only if unused and unexpired.

        Unknown, expired and already-used tokens all come back as None -- the
        caller cannot tell them apart, and neither can its caller.
        """
        now_db = _to_db(now or self._clock())
        with self.engine.connect() as conn:
            row = conn.execute(
                _password_resets.select().where(
                    and_(
                        _password_resets.c.reset_token == token,
                        _password_resets.c.used_at.is_(None),
                        _password_resets.c.expires_at > now_db,
                    )
                )
            ).fetchone()
        return _row_to_reset(row) if row is not None else None

    def find_by_user(self, user_id: str) -> list[PasswordResetRequest]:
        """All requests for a user, newest first. Used by tests and operators."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _password_resets.select()
                .where(_password_resets.c.user_id == user_id)
                .order_by(_password_resets.c.created_at.desc())
            ).fetchall()
        return [_row_to_reset(r) for r in rows]

    def mark_used(self, reset_id: str, now: datetime | None = None) -> bool:
        """Flip used_at from NULL to now. True only for the caller that flipped it."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _password_resets.update()
                .where(and_(_password_resets.c.id == reset_id, _password_resets.c.used_at.is_(None)))
                .values(used_at=_to_db(now or self._clock()))
            )
            conn.commit()
        return result.rowcount > 0

    def redeem(self, reset: PasswordResetRequest, password_hash: str, now: datetime | None = None) -> bool:
        """Spend the token and set the owner's new password as one unit of work.

        Returns False (and writes nothing) if the request was already used or
        has expired since it was read. Raises InternalError, rolling back the
        token spend, if the owning user row is missing.
        """
        now_db = _to_db(now or self._clock())
        with self.engine.begin() as conn:
            claimed = conn.execute(
                _password_resets.update()
                .where(
                    and_(
                        _password_resets.c.id == reset.id,
                        _password_resets.c.used_at.is_(None),
                        _password_resets.c.expires_at > now_db,
                    )
                )
                .values(used_at=now_db)
            )
            if claimed.rowcount != 1:
                return False
            updated = conn.execute(
                _users.update()
                .where(_users.c.id == reset.user_id)
                .values(password_hash=password_hash, updated_at=now_db)
            )
            if updated.rowcount != 1:
                raise InternalError("Password reset owner not found")
        return True

    def purge_inactive(self, older_than_days: int = 7, now: datetime | None = None) -> int:
        """Delete requests that are (expired or used) AND created before the window.

        Idempotent: a row deleted by an overlapping run simply is not counted.
        """
        current = now or self._clock()
        now_db = _to_db(current)
        cutoff = _to_db(current - timedelta(days=older_than_days))
        with self.engine.connect() as conn:
            result = conn.execute(
                _password_resets.delete().where(
                    and_(
                        or_(_password_resets.c.expires_at < now_db, _password_resets.c.used_at.is_not(None)),
                        _password_resets.c.created_at < cutoff,
                    )
                )
            )
            conn.commit()
        return result.rowcount


class AuthEventStore:
    """Append-only repository for security audit events.

    Callers on a request path should go through auth.audit.AuditLog, which
    makes writes best-effort. This class raises on failure like any store.
    """

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def log_event(self, entry: LogEventInput) -> AuthEvent:
        created_at = _to_db(self._clock())
        metadata_json = json.dumps(entry.metadata, sort_keys=True) if entry.metadata else None
        with self.engine.connect() as conn:
            result = conn.execute(
                _auth_events.insert().values(
                    {
                        "user_id": entry.user_id,
                        "event_type": entry.event_type.value,
                        "ip_address": entry.ip_address,
                        "user_agent": entry.user_agent,
                        "metadata": metadata_json,
                        "created_at": created_at,
                    }
                )
            )
            conn.commit()
            event_id = result.inserted_primary_key[0]
        return AuthEvent(
            id=event_id,
            event_type=entry.event_type,
            created_at=_from_db(created_at),
            user_id=entry.user_id,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            metadata=entry.metadata or None,
        )

    def find_by_user(self, user_id: str, limit: int = 50) -> list[AuthEvent]:
        """Most recent events for user_id first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _auth_events.select()
                .where(_auth_events.c.user_id == user_id)
                .order_by(_auth_events.c.created_at.desc(), _auth_events.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_event(r) for r in rows]

    def count(self, event_type: AuthEventType | None = None) -> int:
        query = select(func.count()).select_from(_auth_events)
        if event_type is not None:
            query = query.where(_auth_events.c.event_type == event_type.value)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def purge_older_than(self, days: int = 90, now: datetime | None = None) -> int:
        cutoff = _to_db((now or self._clock()) - timedelta(days=days))
        with self.engine.connect() as conn:
            result = conn.execute(_auth_events.delete().where(_auth_events.c.created_at < cutoff))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        created_at=_from_db(row.created_at),
        updated_at=_from_db(row.updated_at),
    )


def _row_to_reset(row) -> PasswordResetRequest:
    return PasswordResetRequest(
        id=row.id,
        user_id=row.user_id,
        reset_token=row.reset_token,
        created_at=_from_db(row.created_at),
        expires_at=_from_db(row.expires_at),
        used_at=_from_db(row.used_at),
    )


def _row_to_event(row) -> AuthEvent:
    # Read through _mapping: "metadata" is not a safe attribute name on Row.
    mapping = row._mapping
    raw_metadata = mapping["metadata"]
    return AuthEvent(
        id=mapping["id"],
        event_type=AuthEventType(mapping["event_type"]),
        created_at=_from_db(mapping["created_at"]),
        user_id=mapping["user_id"],
        ip_address=mapping["ip_address"],
        user_agent=mapping["user_agent"],
        metadata=json.loads(raw_metadata) if raw_metadata else None,
    )
