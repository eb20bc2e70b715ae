from __future__ import annotations

import io
import json
import re
from datetime import date, datetime, timedelta, timezone
from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from enervisio.config import Settings
from enervisio.constants import USER_TYPE_REGULAR, ActionType
from enervisio.database import Database
from enervisio.models import AuditFilters
from enervisio.web import create_app

EMAIL = "admin@example.com"
PASSWORD = "Sup3r$ecret"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 6, 15, 4, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sent_links() -> List[Tuple[str, str]]:
    return []


@pytest.fixture()
def client(database: Database, clock: FakeClock, sent_links):
    database.create_user("Grid Admin", EMAIL, PASSWORD)
    app = create_app(
        database=database,
        settings=Settings(),
        session_secret="not-so-secret",
        notifier=lambda user, link: sent_links.append((user.email, link)),
        clock=clock,
    )
    with TestClient(app) as test_client:
        yield test_client


def _login(client: TestClient, email: str = EMAIL, password: str = PASSWORD):
    return client.post("/login", data={"email": email, "password": password}, follow_redirects=False)


def test_login_redirects_to_dashboard(client: TestClient) -> None:
    response = _login(client)
    assert response.status_code == 303
    assert response.headers["location"].endswith("/dashboard")

    dashboard = client.get("/dashboard")
    assert dashboard.status_code == 200
    assert "Welcome back, Grid Admin" in dashboard.text
    assert "No rate has been recorded yet." in dashboard.text


def test_pages_require_login(client: TestClient) -> None:
    for path in ("/", "/dashboard", "/rates", "/audit", "/reports", "/settings", "/rates/new"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"].endswith("/login")


def test_invalid_login_shows_message_and_keeps_email(client: TestClient) -> None:
    response = client.post("/login", data={"email": EMAIL, "password": "wrong"})
    assert response.status_code == 200
    assert "Invalid email or password." in response.text
    assert f'value="{EMAIL}"' in response.text


def test_repeated_failures_lock_the_login(client: TestClient) -> None:
    for _ in range(5):
        _login(client, password="wrong")
    response = client.post("/login", data={"email": EMAIL, "password": PASSWORD})
    assert "Too many failed login attempts. Please try again in 15 minutes." in response.text
    assert client.get("/dashboard", follow_redirects=False).status_code == 303


def test_regular_users_cannot_sign_in(client: TestClient, database: Database) -> None:
    database.create_user("Customer", "customer@example.com", PASSWORD, user_type=USER_TYPE_REGULAR)
    response = client.post("/login", data={"email": "customer@example.com", "password": PASSWORD})
    assert "Access denied. Admin privileges required." in response.text


def test_session_expires_after_inactivity(client: TestClient, clock: FakeClock, database: Database) -> None:
    _login(client)
    clock.now += timedelta(minutes=20)
    assert client.get("/dashboard", follow_redirects=False).status_code == 200

    clock.now += timedelta(minutes=31)
    response = client.get("/dashboard", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"].endswith("/login")

    login_page = client.get("/login")
    assert "Your session has expired due to inactivity." in login_page.text
    (entry,) = database.iter_audit(AuditFilters(action=ActionType.LOGOUT))
    assert entry.details["reason"] == "SESSION_TIMEOUT"


def test_logout_records_audit_entry(client: TestClient, database: Database) -> None:
    _login(client)
    response = client.get("/logout")
    assert "You have been signed out." in response.text
    assert database.count_audit(AuditFilters(action=ActionType.LOGOUT)) == 1


def test_password_reset_through_emailed_link(client: TestClient, sent_links) -> None:
    response = client.post("/forgot-password", data={"email": EMAIL})
    assert "Password reset email sent." in response.text
    ((email, link),) = sent_links
    assert email == EMAIL

    form = client.get(link)
    assert form.status_code == 200
    token = re.search(r'name="token" value="([^"]+)"', form.text).group(1)

    mismatch = client.post(
        "/reset-password",
        data={"token": token, "new_password": "N3w$ecret!", "confirm_password": "nope"},
    )
    assert "Passwords do not match." in mismatch.text

    done = client.post(
        "/reset-password",
        data={"token": token, "new_password": "N3w$ecret!", "confirm_password": "N3w$ecret!"},
    )
    assert "Password has been reset successfully." in done.text
    assert _login(client, password="N3w$ecret!").status_code == 303

    reused = client.get(link)
    assert "This password reset link has already been used." in reused.text


def test_add_and_edit_rate(client: TestClient, database: Database) -> None:
    _login(client)
    invalid = client.post("/rates/new", data={"kwh_rate": "", "effective_from": "2024-06-01"})
    assert invalid.status_code == 400
    assert "Rate is required" in invalid.text

    response = client.post(
        "/rates/new",
        data={"kwh_rate": "11.50", "effective_from": "2024-06-01", "notes": "June"},
        follow_redirects=False,
    )
    assert response.status_code == 303
    rate = database.get_current_rate()
    assert rate.kwh_rate == 11.5
    assert rate.kwh_rate2 == pytest.approx(12.06)

    page = client.get("/rates")
    assert "Rate added successfully." in page.text
    assert "₱11.50" in page.text

    edit_form = client.get(f"/rates/{rate.id}/edit")
    assert 'value="11.5"' in edit_form.text
    client.post(
        f"/rates/{rate.id}/edit",
        data={"kwh_rate": "11.75", "effective_from": "2024-06-01", "notes": "corrected"},
    )
    assert database.get_rate(rate.id).kwh_rate == 11.75
    assert database.count_audit(AuditFilters(action=ActionType.UPDATE)) == 1

    missing = client.get("/rates/999/edit")
    assert "Rate not found." in missing.text


def test_rate_tabs_render(client: TestClient, database: Database) -> None:
    _login(client)
    for day, base in ((1, "10.00"), (2, "10.40")):
        client.post("/rates/new", data={"kwh_rate": base, "effective_from": f"2024-06-0{day}"})

    archived = client.get("/rates", params={"tab": "archived"})
    assert "₱10.00" in archived.text

    history = client.get("/rates", params={"tab": "history", "range": "all"})
    assert "Jun 2024" in history.text

    analysis = client.get("/rates", params={"tab": "analysis", "simulated": "12.48"})
    assert "Residential bills change by more than 10%" in analysis.text

    bad_cursor = client.get("/rates", params={"after": "%%%"})
    assert "Invalid pagination cursor" in bad_cursor.text


def test_rate_import_preview_and_commit(client: TestClient, database: Database) -> None:
    _login(client)
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Rate (PHP)", "Effective Date", "Archived", "Notes"])
    sheet.append([10.2, "05/01/2024", "No", "May"])
    sheet.append([9.8, "04/01/2024", "Yes", "April"])
    buffer = io.BytesIO()
    workbook.save(buffer)

    preview = client.post(
        "/rates/import/preview",
        files={"file": ("rates.xlsx", buffer.getvalue(), "application/octet-stream")},
    )
    assert preview.status_code == 200
    assert "Import 2 rate(s)" in preview.text

    payload = json.dumps(
        [
            {"kwh_rate": 10.2, "effective_from": "2024-05-01", "archived": False, "notes": "May"},
            {"kwh_rate": 9.8, "effective_from": "2024-04-01", "archived": True, "notes": "April"},
        ]
    )
    response = client.post("/rates/import", data={"payload": payload, "filename": "rates.xlsx"})
    assert "Successfully imported 2 rates." in response.text
    assert database.get_current_rate().effective_from == date(2024, 5, 1)

    bad = client.post(
        "/rates/import/preview",
        files={"file": ("rates.xlsx", b"not a workbook", "application/octet-stream")},
    )
    assert "Invalid file format." in bad.text


def test_rate_export_and_template_downloads(client: TestClient, database: Database) -> None:
    _login(client)
    empty = client.get("/rates/export")
    assert "No rates to export." in empty.text

    client.post("/rates/new", data={"kwh_rate": "10.00", "effective_from": "2024-06-01"})
    export = client.get("/rates/export")
    assert export.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
    assert 'filename="meralco_rates_export_20240615.xlsx"' in export.headers["content-disposition"]
    assert database.count_audit(AuditFilters(action=ActionType.EXPORT)) == 1

    template = client.get("/rates/template")
    assert 'filename="meralco_rates_template.xlsx"' in template.headers["content-disposition"]


def test_audit_page_filters_and_export(client: TestClient, database: Database) -> None:
    _login(client)
    page = client.get("/audit")
    assert page.status_code == 200
    assert "LOGIN" in page.text
    assert "1 matching record(s)" in page.text

    filtered = client.get("/audit", params={"action": "EXPORT"})
    assert "0 matching record(s)" in filtered.text

    empty = client.get("/audit/export", params={"action": "EXPORT", "format": "csv"})
    assert "No records found matching the selected criteria (filtered)." in empty.text

    export = client.get("/audit/export", params={"scope": "all", "format": "csv", "order": "asc"})
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert "audit_export_all_oldest_first_2024-06-15.csv" in export.headers["content-disposition"]
    assert "Action,Timestamp,User ID,Details" in export.text

    (entry,) = database.iter_audit(AuditFilters(action=ActionType.EXPORT))
    assert entry.details["entity"] == "audittrail"
    assert entry.details["scope"] == "all"


def test_reports_page_and_export(client: TestClient) -> None:
    _login(client)
    page = client.get("/reports", params={"tab": "users", "action": "export"})
    assert page.status_code == 200
    assert "Export User Activity Report" in page.text
    assert "Regular User Actions" in page.text

    export = client.get("/reports/export", params={"tab": "users", "format": "csv", "range": "6months"})
    assert export.status_code == 200
    assert "enervisio_user_activity_report_2024-06-15.csv" in export.headers["content-disposition"]

    bundle = client.get("/reports/export", params={"format": "csv", "include_all": "1"})
    assert bundle.headers["content-type"] == "application/zip"

    empty = client.get("/reports/export", params={"tab": "rates", "format": "csv"})
    assert "There is no data to export for the selected report." in empty.text


def test_settings_updates(client: TestClient, database: Database) -> None:
    _login(client)
    assert client.get("/settings").status_code == 200

    client.post("/settings/account", data={"display_name": "Ops Lead"})
    user = database.get_user_by_email(EMAIL)
    assert user.display_name == "Ops Lead"

    wrong = client.post(
        "/settings/password",
        data={"current_password": "nope", "new_password": "N3w$ecret!", "confirm_password": "N3w$ecret!"},
    )
    assert "Current password is incorrect." in wrong.text
    reuse = client.post(
        "/settings/password",
        data={"current_password": PASSWORD, "new_password": PASSWORD, "confirm_password": PASSWORD},
    )
    assert "Cannot reuse one of your last 3 passwords." in reuse.text
    changed = client.post(
        "/settings/password",
        data={"current_password": PASSWORD, "new_password": "N3w$ecret!", "confirm_password": "N3w$ecret!"},
    )
    assert "Password updated successfully." in changed.text

    client.post("/settings/notifications", data={"security_alerts": "on"})
    client.post(
        "/settings/system",
        data={"timezone": "Asia/Tokyo", "date_format": "yyyy-MM-dd", "language": "en", "theme": "dark"},
    )
    notifications, system = database.get_preferences(user.id)
    assert notifications.email_alerts is False
    assert notifications.security_alerts is True
    assert system.timezone == "Asia/Tokyo"

    page = client.get("/settings", params={"tab": "system"})
    assert 'class="theme-dark"' in page.text

    invalid = client.post(
        "/settings/system",
        data={"timezone": "Mars/Olympus", "date_format": "yyyy-MM-dd", "language": "en", "theme": "dark"},
    )
    assert "Invalid system preference selected." in invalid.text


def test_unknown_pages_render_not_found(client: TestClient) -> None:
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    assert "Page Not Found" in response.text


def test_web_app_requires_session_secret(database: Database, monkeypatch) -> None:
    monkeypatch.delenv("ENERVISIO_SESSION_SECRET", raising=False)
    with pytest.raises(RuntimeError):
        create_app(database=database, settings=Settings())


@pytest.mark.parametrize(
    ("rows", "message"),
    [
        ([{"kwh_rate": -5, "effective_from": "2024-07-01", "archived": False, "notes": ""}], "Row 1 has an invalid rate value."),
        ([{"kwh_rate": float("nan"), "effective_from": "2024-07-01", "archived": False, "notes": ""}], "Row 1 has an invalid rate value."),
        (
            [
                {"kwh_rate": 10.4, "effective_from": "2024-07-01", "archived": False, "notes": ""},
                {"kwh_rate": 10.6, "effective_from": "07/01/2024", "archived": True, "notes": ""},
            ],
            "Row 2 has an invalid date format.",
        ),
    ],
)
def test_rate_import_rechecks_submitted_rows(
    client: TestClient, database: Database, rows: List[dict], message: str
) -> None:
    _login(client)
    client.post("/rates/new", data={"kwh_rate": "10.00", "effective_from": "2024-06-01"})

    response = client.post("/rates/import", data={"payload": json.dumps(rows), "filename": "rates.xlsx"})

    assert message in response.text
    rates = database.list_all_rates()
    assert len(rates) == 1
    assert rates[0].kwh_rate == 10.0
    assert not rates[0].archived
