import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from enervisio.constants import USER_TYPE_ADMIN, USER_TYPE_REGULAR
from enervisio.database import Database, resolve_database_path
from enervisio.errors import PasswordPolicyError
from enervisio.validation import ensure_strong_password, is_valid_email


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an Enervisio dashboard user")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument(
        "--regular",
        action="store_true",
        help="Create a regular user instead of an administrator",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to ENERVISIO_DB_PATH or data/enervisio.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        try:
            ensure_strong_password(password, confirm)
        except PasswordPolicyError as exc:
            print(f"{exc} Try again.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    email = args.email.strip().lower()
    if not is_valid_email(email):
        print("Error: please enter a valid email address.", file=sys.stderr)
        return 1
    password = prompt_for_password()

    db_env = args.db_path or os.getenv("ENERVISIO_DB_PATH")
    db_path = resolve_database_path(db_env)

    database = Database(db_path)
    database.initialize()

    try:
        user = database.create_user(
            args.name.strip(),
            email,
            password,
            user_type=USER_TYPE_REGULAR if args.regular else USER_TYPE_ADMIN,
        )
    except ValueError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.display_name} <{user.email}>")
    if not user.is_admin:
        print("Regular users are recorded for reporting but cannot sign in to the dashboard.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
