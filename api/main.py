"""
api/main.py -- FastAPI application entry point for AuthGate.

Run with:  uvicorn api.main:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- global per-IP rate limit from api.limiter
  4. request_id            -- echoes or generates X-Request-ID
  5. log_requests          -- one access-log line per request

Lifespan builds every component once (database engine, stores, hasher, token
service, revocation list, background runner, audit log, notifier, engines),
stores them on app.state, and starts the two retention loops. Shutdown tears
them down in reverse: loops cancelled, background work flushed, engine
disposed.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.audit import AuditLog
from auth.engine import AuthEngine
from auth.exceptions import AuthError
from auth.hashing import PasswordHasher
from auth.notifier import Notifier, build_notifier
from auth.reset import ResetEngine
from auth.retention import purge_auth_events, purge_password_resets
from auth.revocation import InMemoryRevocationList
from auth.store import AuthEventStore, PasswordResetStore, UserStore, check_database, create_db_engine
from auth.tokens import TokenService
from core.background import BackgroundRunner
from core.config import Settings, get_settings

API_VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, _settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def init_state(
    app: FastAPI,
    settings: Settings,
    db_engine: Engine,
    runner: Any,
    notifier: Notifier | None = None,
) -> None:
    """Build every auth component around db_engine and runner and store it on app.state.

    Shared by the real lifespan and by tests, which pass an in-memory engine,
    an InlineRunner and a recording notifier.
    """
    users = UserStore(db_engine)
    resets = PasswordResetStore(db_engine)
    events = AuthEventStore(db_engine)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    if notifier is None:
        notifier = build_notifier(settings)
    audit = AuditLog(events, runner)

    app.state.db_engine = db_engine
    app.state.runner = runner
    app.state.user_store = users
    app.state.reset_store = resets
    app.state.event_store = events
    app.state.revocations = InMemoryRevocationList()
    app.state.notifier = notifier
    app.state.auth_engine = AuthEngine(
        users=users,
        hasher=hasher,
        tokens=TokenService(settings.secret_key, ttl_seconds=settings.token_expire_seconds),
        revocations=app.state.revocations,
        audit=audit,
        notifier=notifier,
        runner=runner,
    )
    app.state.reset_engine = ResetEngine(
        users=users,
        resets=resets,
        hasher=hasher,
        audit=audit,
        notifier=notifier,
        ttl_hours=settings.password_reset_expiry_hours,
    )


# ---------------------------------------------------------------------------
# Background retention tasks
# ---------------------------------------------------------------------------


async def _purge_loop(name: str, interval_seconds: int, purge: Callable[[], int]) -> None:
    """Run purge() every interval_seconds until cancelled.

    The purge is blocking database work, so it runs in a worker thread. A
    failed run is logged and the loop waits for the next interval.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(purge)
        except Exception:
            logger.exception("Retention job %s failed", name)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown, in reverse order of construction.
    """
    settings = get_settings()
    logger.info("AuthGate API starting up")

    db_engine = create_db_engine(settings.database_url)
    runner = BackgroundRunner(max_workers=settings.background_workers)
    init_state(app, settings, db_engine, runner)
    logger.info("Auth initialized (users=%d)", app.state.user_store.count())

    app.state.purge_tasks = [
        asyncio.create_task(
            _purge_loop(
                "password_resets",
                settings.reset_purge_interval_seconds,
                lambda: purge_password_resets(app.state.reset_store, settings.password_reset_retention_days),
            )
        ),
        asyncio.create_task(
            _purge_loop(
                "auth_events",
                settings.event_purge_interval_seconds,
                lambda: purge_auth_events(app.state.event_store, settings.auth_event_retention_days),
            )
        ),
    ]

    yield

    for task in app.state.purge_tasks:
        task.cancel()
    runner.shutdown(wait=True)
    db_engine.dispose()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="Registration, login, logout, password change and password reset with JWT bearer tokens.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def request_id(request: Request, call_next):
    """Echo the caller's X-Request-ID or mint one, and expose it to handlers."""
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an engine error with its own status and code.

    5xx messages are replaced by a generic one; the real cause goes to the log.
    """
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
            exc_info=exc,
        )
        return _error_response(exc.status_code, exc.code, "An unexpected error occurred.")
    response = _error_response(exc.status_code, exc.code, exc.message)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After is the full window of the limit that tripped. Sync because
    SlowAPIMiddleware calls this handler directly for the global limit.
    """
    limit = getattr(exc, "limit", None)
    retry_after = limit.limit.get_expiry() if limit is not None else 60
    response = _error_response(429, "rate_limited", "Too many requests. Please try again later.", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    else:
        response = _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors. Details go to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. Exempt from rate limiting -- load balancers and
# monitoring must not be throttled.
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus a database probe. status is "degraded" when the database is unreachable."""
    db_ok = check_database(request.app.state.db_engine)
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
