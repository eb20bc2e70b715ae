"""Command-line interface for the Enervisio administration dashboard."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence


def _running_in_virtualenv() -> bool:
    """Return ``True`` when the current interpreter is executing inside a venv."""

    base_prefix = getattr(sys, "base_prefix", sys.prefix)
    return sys.prefix != base_prefix


def _bootstrap_virtualenv() -> None:
    """Re-exec the script using the bundled virtualenv interpreter when available."""

    if _running_in_virtualenv():
        return

    venv_dir = Path(__file__).resolve().parent / ".venv"
    if not venv_dir.is_dir():
        return

    candidates = (
        venv_dir / "bin" / "python",
        venv_dir / "bin" / "python3",
        venv_dir / "Scripts" / "python.exe",
        venv_dir / "Scripts" / "python",
    )

    script = str(Path(__file__).resolve())
    for candidate in candidates:
        if candidate.exists():
            os.execv(str(candidate), [str(candidate), script, *sys.argv[1:]])


if __name__ == "__main__":
    _bootstrap_virtualenv()

from enervisio.config import load_settings, resolve_settings_path
from enervisio.constants import USER_TYPE_ADMIN, USER_TYPE_REGULAR
from enervisio.database import Database, resolve_database_path
from enervisio.errors import PasswordPolicyError
from enervisio.validation import PASSWORD_REQUIREMENTS, ensure_strong_password, is_valid_email

logger = logging.getLogger("enervisio.main")

KNOWN_COMMANDS = {"serve", "init-db", "create-admin", "list-users"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enervisio administration dashboard utilities")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to ENERVISIO_DB_PATH or data/enervisio.sqlite3)",
    )
    parser.add_argument(
        "--settings",
        dest="settings_path",
        default=None,
        help="Path to a YAML settings file (defaults to ENERVISIO_SETTINGS)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the dashboard database")
    subparsers.add_parser("list-users", help="List registered accounts")

    create_parser = subparsers.add_parser("create-admin", help="Create a dashboard account")
    create_parser.add_argument("name", help="Display name for the account")
    create_parser.add_argument("email", help="Unique email address used to sign in")
    create_parser.add_argument(
        "--regular",
        action="store_true",
        help="Create a regular (non-admin) account, which cannot sign in to the dashboard",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP dashboard service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the service")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP service (default: 8000)",
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
    serve_parser.add_argument(
        "--ssl-keyfile-password",
        default=None,
        help="Password for the TLS private key, if encrypted",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first in ("--db", "--settings"):
            # Global options come first; look past them for the subcommand.
            rest = args_list[2:]
            if not rest or rest[0] not in KNOWN_COMMANDS:
                args_list = [*args_list[:2], "serve", *rest]
        elif first not in KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(db_path: str | None, settings_path: str | None) -> Database:
    settings = load_settings(resolve_settings_path(settings_path or os.getenv("ENERVISIO_SETTINGS")))
    path = resolve_database_path(db_path or os.getenv("ENERVISIO_DB_PATH"))
    database = Database(path, timezone_name=settings.default_timezone)
    database.initialize()
    logger.info("Database initialised at %s", path)
    return database


def _serve(
    *,
    db_path: str | None,
    settings_path: str | None,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
    ssl_keyfile_password: str | None,
) -> None:
    from enervisio.application import create_application
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")
    if not os.getenv("ENERVISIO_SESSION_SECRET"):
        raise SystemExit("ENERVISIO_SESSION_SECRET must be set before starting the dashboard.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting dashboard on %s://%s:%s", protocol, host, port)

    app = create_application(database_path=db_path, settings_path=settings_path)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        proxy_headers=True,
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
        ssl_keyfile_password=ssl_keyfile_password,
    )


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Role':<7}  Last login")
    print("-" * 90)
    for user in users:
        email = user.email or "<no email>"
        role = "admin" if user.is_admin else "regular"
        last_login = user.last_login.strftime("%Y-%m-%d %H:%M:%S %Z") if user.last_login else "never"
        print(f"{user.id:>4}  {user.display_name:<24}  {email:<32}  {role:<7}  {last_login}")


def _prompt_for_password() -> str | None:
    print("Passwords must meet the following requirements:")
    for _, label in PASSWORD_REQUIREMENTS:
        print(f"  - {label}")
    for _ in range(3):
        password = getpass("Password: ")
        confirmation = getpass("Confirm password: ")
        try:
            ensure_strong_password(password, confirmation)
        except PasswordPolicyError as exc:
            print(f"{exc} Please try again.")
            continue
        return password
    return None


def _create_account(database: Database, name: str, email: str, *, admin: bool) -> int:
    name = name.strip()
    email = email.strip().lower()
    if not name:
        print("A display name is required.", file=sys.stderr)
        return 1
    if not is_valid_email(email):
        print("Please enter a valid email address.", file=sys.stderr)
        return 1

    password = _prompt_for_password()
    if password is None:
        print("Failed to set password after three attempts.", file=sys.stderr)
        return 1

    try:
        user = database.create_user(
            name,
            email,
            password,
            user_type=USER_TYPE_ADMIN if admin else USER_TYPE_REGULAR,
        )
    except ValueError as exc:
        print(f"Failed to create user: {exc}", file=sys.stderr)
        return 1

    role = "administrator" if user.is_admin else "regular user"
    print(f"Created {role} #{user.id}: {user.display_name} <{user.email}>")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)

    if args.command == "serve":
        _serve(
            db_path=args.db_path,
            settings_path=args.settings_path,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
            ssl_keyfile_password=args.ssl_keyfile_password,
        )
        return 0

    database = _initialise_database(args.db_path, args.settings_path)
    if args.command == "init-db":
        print("Database initialisation complete.")
    elif args.command == "list-users":
        _list_users(database)
    elif args.command == "create-admin":
        return _create_account(database, args.name, args.email, admin=not args.regular)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
