from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from enervisio import create_app
from enervisio.application import create_application
from enervisio.database import Database

EMAIL = "admin@example.com"
PASSWORD = "Sup3r$ecret"


def test_combined_application_serves_web_and_api(tmp_path: Path) -> None:
    db_path = tmp_path / "enervisio.sqlite3"
    app = create_application(
        database_path=str(db_path),
        settings_path=str(tmp_path / "missing.yaml"),
        session_secret="not-so-secret",
    )
    Database(db_path).create_user("Grid Admin", EMAIL, PASSWORD)

    with TestClient(app) as client:
        login_page = client.get("/login")
        assert login_page.status_code == 200
        assert "Sign in" in login_page.text

        api = client.get("/api/v1/rates", auth=(EMAIL, PASSWORD))
        assert api.status_code == 200
        assert api.json()["items"] == []

        # Browser and API logins share one lockout tracker.
        for _ in range(5):
            client.get("/api/v1/rates", auth=(EMAIL, "wrong"))
        locked = client.post("/login", data={"email": EMAIL, "password": PASSWORD})
        assert "Too many failed login attempts." in locked.text


def test_package_factory_reads_environment(tmp_path: Path, monkeypatch) -> None:
    settings_file = tmp_path / "settings.yaml"
    settings_file.write_text("branding:\n  company: Test Grid Co\n", encoding="utf-8")
    monkeypatch.setenv("ENERVISIO_DB_PATH", str(tmp_path / "env.sqlite3"))
    monkeypatch.setenv("ENERVISIO_SETTINGS", str(settings_file))
    monkeypatch.setenv("ENERVISIO_SESSION_SECRET", "env-secret")

    app = create_app()

    assert app.state.settings.company_name == "Test Grid Co"
    assert app.state.database.path == tmp_path / "env.sqlite3"
