from __future__ import annotations

from pathlib import Path

import main
from main import _parse_args
from enervisio.database import Database


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_global_options_precede_subcommands() -> None:
    args = _parse_args(["--db", "custom.sqlite3", "list-users"])
    assert args.command == "list-users"
    assert args.db_path == "custom.sqlite3"

    serve = _parse_args(["--db", "custom.sqlite3", "--port", "9000"])
    assert serve.command == "serve"
    assert serve.port == 9000


def test_create_admin_arguments() -> None:
    args = _parse_args(["create-admin", "Grid Admin", "admin@example.com", "--regular"])
    assert args.command == "create-admin"
    assert args.name == "Grid Admin"
    assert args.regular is True


def test_init_db_and_create_admin(tmp_path: Path, monkeypatch, capsys) -> None:
    db_path = tmp_path / "cli.sqlite3"
    monkeypatch.setenv("ENERVISIO_SETTINGS", str(tmp_path / "missing.yaml"))
    assert main.main(["--db", str(db_path), "init-db"]) == 0
    assert db_path.exists()

    monkeypatch.setattr(main, "getpass", lambda prompt="": "Sup3r$ecret")
    assert main.main(["--db", str(db_path), "create-admin", "Grid Admin", "Admin@Example.com"]) == 0
    user = Database(db_path).get_user_by_email("admin@example.com")
    assert user is not None and user.is_admin

    assert main.main(["--db", str(db_path), "create-admin", "Other", "admin@example.com"]) == 1
    assert main.main(["--db", str(db_path), "create-admin", "Bad", "not-an-email"]) == 1

    assert main.main(["--db", str(db_path), "list-users"]) == 0
    assert "Grid Admin" in capsys.readouterr().out


def test_weak_passwords_are_refused(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("ENERVISIO_SETTINGS", str(tmp_path / "missing.yaml"))
    monkeypatch.setattr(main, "getpass", lambda prompt="": "weak")
    assert main.main(["--db", str(tmp_path / "cli.sqlite3"), "create-admin", "Grid Admin", "admin@example.com"]) == 1
