#!/usr/bin/env python3
"""
AuthGate -- credential issuance and session lifecycle service.

Operator commands:
  python main.py init-db             Create tables at DATABASE_URL
  python main.py purge               Run one retention sweep and print counts
  python main.py serve               Run the API under uvicorn

Environment variables (see core/config.py for the full list):
  SECRET_KEY     JWT signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL. Defaults to a SQLite file next to the package.
  SMTP_HOST      Outbound mail server. Unset = emails are logged, not sent.
"""

import argparse
import logging
import sys
from typing import Optional

from auth.retention import run_retention_sweep
from auth.store import AuthEventStore, PasswordResetStore, create_db_engine
from core.config import get_settings


def _redact_url(url: str) -> str:
    """Hide the password part of a database URL before printing it."""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    creds, host = rest.rsplit("@", 1)
    user = creds.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def cmd_init_db(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    engine.dispose()
    print(f"Database ready at {_redact_url(settings.database_url)}")
    return 0


def cmd_purge(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    try:
        report = run_retention_sweep(PasswordResetStore(engine), AuthEventStore(engine), settings)
    finally:
        engine.dispose()
    print(f"Purged {report.password_resets} password reset request(s).")
    print(f"Purged {report.auth_events} audit event(s).")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Operator commands for the AuthGate credential service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  DATABASE_URL=sqlite:///prod.db python main.py purge
  python main.py serve --host 0.0.0.0 --port 8080
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    init_db = sub.add_parser("init-db", help="Create any missing tables")
    init_db.set_defaults(func=cmd_init_db)

    purge = sub.add_parser("purge", help="Delete inactive reset requests and old audit events")
    purge.set_defaults(func=cmd_purge)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=cmd_serve)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        return args.func(args)
    except ValueError as exc:
        # Settings validation (e.g. missing SECRET_KEY) surfaces here.
        print(f"  [!] {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
