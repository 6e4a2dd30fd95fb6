"""Command-line entry point: run the chat server or manage accounts."""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import TextIO

from aiohttp import web

from .accounts import Accounts
from .errors import ValidationError
from .http_api import create_app
from .presence import PresenceConfig
from .sqlite_backend import SQLiteBackend
from .sqlite_storage import SQLiteStorage
from .typing_status import TypingConfig

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _run_serve(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    app = create_app(
        db_path=args.db,
        presence_config=PresenceConfig(offline_after_seconds=args.offline_after),
        typing_config=TypingConfig(ttl_seconds=args.typing_ttl),
        session_ttl_ms=int(args.session_ttl_hours * 60 * 60 * 1000),
    )
    if args.db is None:
        logging.getLogger(__name__).warning("no --db given; accounts and messages live in memory only")
    web.run_app(app, host=args.host, port=args.port)
    return 0


def _run_create_user(args: argparse.Namespace, output: TextIO) -> int:
    configure_logging(args.log_level)
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    backend = SQLiteBackend(args.db)
    try:
        accounts = Accounts(SQLiteStorage(backend))
        try:
            user = accounts.register(args.username, password, args.display_name or args.username, args.avatar)
        except ValidationError as exc:
            output.write(f"error: {exc.message}\n")
            return 1
    finally:
        backend.close()
    output.write(f"created user {user.username} with id {user.id}\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dmchat", description="Direct-messaging chat server")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp chat server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve_parser.add_argument("--db", type=str, default=None, help="Path to SQLite database for durability")
    serve_parser.add_argument(
        "--offline-after",
        type=int,
        default=None,
        help="Demote users to offline after this many seconds without activity (default: never)",
    )
    serve_parser.add_argument(
        "--typing-ttl",
        type=float,
        default=None,
        help="Seconds after which an uncleared typing flag reads as false (default: never)",
    )
    serve_parser.add_argument("--session-ttl-hours", type=float, default=24.0, help="Session lifetime in hours")

    create_parser = subparsers.add_parser("create-user", help="Create an account in a SQLite database")
    create_parser.add_argument("username", help="Unique, case-sensitive login name")
    create_parser.add_argument("--db", required=True, help="Path to SQLite database")
    create_parser.add_argument("--password", default=None, help="Password; prompted for when omitted")
    create_parser.add_argument("--display-name", default=None, help="Display name; defaults to the username")
    create_parser.add_argument("--avatar", default="", help="Avatar URL")
    return parser


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        return _run_serve(args)
    return _run_create_user(args, output or sys.stdout)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
