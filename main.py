"""Command-line interface for the store portal service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from storeportal.api import PASSWORD_MIN_LENGTH
from storeportal.config import Settings, load_settings
from storeportal.database import Database
from storeportal.models import Portal, Role
from storeportal.resets import PasswordResetService

logger = logging.getLogger("storeportal.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Store portal utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the portal database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP portal API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP API (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    user_parser = subparsers.add_parser("create-user", help="Create a portal account")
    user_parser.add_argument("name", help="Display name for the user")
    user_parser.add_argument("email", help="Unique email address for login")
    user_parser.add_argument(
        "--role",
        choices=[role.value for role in Role],
        default=Role.EMPLOYEE.value,
        help="Access level for the account (default: employee)",
    )
    user_parser.add_argument(
        "--portal",
        choices=[portal.value for portal in Portal],
        default=None,
        help="Portal the account lands on after signing in",
    )
    user_parser.add_argument("--store-number", default=None, help="Store the account is scoped to")

    code_parser = subparsers.add_parser("reset-code", help="Issue a one-time password reset code")
    code_parser.add_argument("email", help="Email address of the account to reset")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user", "reset-code"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(
    *,
    database: Database,
    settings: Settings,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from storeportal.api import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting portal API on %s://%s:%s", protocol, host, port)

    app = create_app(database=database, settings=settings)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _prompt_for_password() -> str:
    for _ in range(3):
        password = getpass("Password: ")
        confirm = getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < PASSWORD_MIN_LENGTH:
            print(
                f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.",
                file=sys.stderr,
            )
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def _create_user(database: Database, args: argparse.Namespace) -> int:
    password = _prompt_for_password()
    try:
        user = database.create_user(
            args.name,
            args.email,
            password,
            role=args.role,
            portal=args.portal,
            store_number=args.store_number,
        )
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created {user.role.value} user {user.id}: {user.name} <{user.email}>")
    return 0


def _issue_reset_code(database: Database, settings: Settings, email: str) -> int:
    if database.get_user_by_email(email) is None:
        print(f"No account is registered for {email}.", file=sys.stderr)
        return 1

    service = PasswordResetService(
        database,
        token_ttl=settings.reset_token_ttl,
        code_ttl=settings.reset_code_ttl,
    )
    issued = service.issue_code(email)
    print(f"Reset code: {issued.token}")
    print(f"Expires at: {issued.expires_at.isoformat()}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        settings = load_settings(require_secret=args.command == "serve")
    except RuntimeError as exc:
        raise SystemExit(str(exc)) from exc
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(
            database=database,
            settings=settings,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "create-user":
        return _create_user(database, args)
    elif args.command == "reset-code":
        return _issue_reset_code(database, settings, args.email)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
