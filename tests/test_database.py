from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from enervisio.constants import USER_TYPE_REGULAR, ActionType
from enervisio.database import Database, decode_cursor, encode_cursor
from enervisio.errors import ImportValidationError, PasswordReuseError, RateNotFoundError, ResetTokenError
from enervisio.models import AuditFilters


def _add_rate(database: Database, base: float, effective: date, user_id=None):
    created, archived = database.add_rate(
        kwh_rate=base,
        kwh_rate2=base + 0.56,
        kwh_rate3=base + 1.18,
        effective_from=effective,
        updated_by=user_id,
    )
    return created, archived


def test_create_user_normalises_email_and_rejects_duplicates(database: Database) -> None:
    user = database.create_user("Grid Admin", "  Admin@Example.com ", "Sup3r$ecret")
    assert user.email == "admin@example.com"
    assert user.is_admin

    with pytest.raises(ValueError):
        database.create_user("Other", "admin@example.com", "Sup3r$ecret")

    assert database.authenticate_user("ADMIN@example.com", "Sup3r$ecret") is not None
    assert database.authenticate_user("admin@example.com", "wrong") is None


def test_regular_users_are_not_admins(database: Database) -> None:
    user = database.create_user("Customer", "customer@example.com", "Sup3r$ecret", user_type=USER_TYPE_REGULAR)
    assert not user.is_admin


def test_password_history_blocks_recent_passwords(database: Database) -> None:
    user = database.create_user("Grid Admin", "admin@example.com", "Passw0rd!1")

    with pytest.raises(PasswordReuseError):
        database.set_user_password(user.id, "Passw0rd!1")

    database.set_user_password(user.id, "Passw0rd!2")
    database.set_user_password(user.id, "Passw0rd!3")
    with pytest.raises(PasswordReuseError):
        database.set_user_password(user.id, "Passw0rd!1")

    database.set_user_password(user.id, "Passw0rd!4")
    # Current password plus the three before it.
    with pytest.raises(PasswordReuseError):
        database.set_user_password(user.id, "Passw0rd!1")

    database.set_user_password(user.id, "Passw0rd!5")
    database.set_user_password(user.id, "Passw0rd!1")
    assert database.verify_user_password(user.id, "Passw0rd!1")


def test_reset_tokens_are_single_use(database: Database) -> None:
    user = database.create_user("Grid Admin", "admin@example.com", "Sup3r$ecret")
    token = database.create_password_reset_token(user.id, timedelta(hours=1))

    assert database.peek_password_reset_token(token).id == user.id
    assert database.consume_password_reset_token(token).id == user.id
    with pytest.raises(ResetTokenError, match="already been used"):
        database.consume_password_reset_token(token)
    with pytest.raises(ResetTokenError, match="invalid"):
        database.peek_password_reset_token("not-a-token")


def test_expired_reset_token_is_rejected(database: Database) -> None:
    user = database.create_user("Grid Admin", "admin@example.com", "Sup3r$ecret")
    token = database.create_password_reset_token(user.id, timedelta(seconds=-1))
    with pytest.raises(ResetTokenError, match="expired"):
        database.peek_password_reset_token(token)


def test_add_rate_archives_every_current_rate(database: Database) -> None:
    first, archived = _add_rate(database, 10.0, date(2024, 1, 1))
    assert archived == []
    second, archived = _add_rate(database, 11.0, date(2024, 2, 1))

    assert [rate.id for rate in archived] == [first.id]
    assert database.get_rate(first.id).archived
    assert not second.archived
    assert database.get_current_rate().id == second.id
    assert len(database.list_rates(archived=False).items) == 1


def test_current_rate_falls_back_to_archived(database: Database) -> None:
    assert database.get_current_rate() is None
    database.import_rates(
        [
            {
                "kwh_rate": 9.5,
                "kwh_rate2": 10.06,
                "kwh_rate3": 10.68,
                "effective_from": date(2023, 5, 1),
                "archived": True,
            }
        ],
        updated_by=None,
    )
    current = database.get_current_rate()
    assert current is not None and current.archived
    assert database.get_current_rate(fallback_to_archived=False) is None


def test_update_rate_missing_raises(database: Database) -> None:
    with pytest.raises(RateNotFoundError):
        database.update_rate(
            404,
            kwh_rate=1.0,
            kwh_rate2=1.56,
            kwh_rate3=2.18,
            effective_from=date(2024, 1, 1),
            updated_by=None,
        )


def test_rate_pages_walk_forwards_and_backwards(database: Database) -> None:
    for month in range(1, 6):
        _add_rate(database, 10.0 + month, date(2024, month, 1))

    first = database.list_rates(limit=2)
    assert [rate.effective_from.month for rate in first.items] == [5, 4]
    assert first.has_more
    assert first.prev_cursor is None

    second = database.list_rates(limit=2, after=first.next_cursor)
    assert [rate.effective_from.month for rate in second.items] == [3, 2]
    assert second.prev_cursor is not None

    last = database.list_rates(limit=2, after=second.next_cursor)
    assert [rate.effective_from.month for rate in last.items] == [1]
    assert not last.has_more
    assert last.next_cursor is None

    back = database.list_rates(limit=2, before=second.prev_cursor)
    assert [rate.effective_from.month for rate in back.items] == [5, 4]
    assert back.prev_cursor is None


def test_rate_date_range_combines_with_archived_filter(database: Database) -> None:
    for month in (1, 3, 5):
        _add_rate(database, 10.0 + month, date(2024, month, 15))

    page = database.list_rates(archived=True, start=date(2024, 2, 1), end=date(2024, 6, 30))
    assert [rate.effective_from.month for rate in page.items] == [3]


def test_invalid_cursor_is_rejected(database: Database) -> None:
    with pytest.raises(ValueError, match="Invalid pagination cursor"):
        database.list_rates(after="%%%")
    assert decode_cursor(encode_cursor("2024-01-01", 7)) == ("2024-01-01", 7)


def test_import_keeps_only_latest_active_row_current(database: Database) -> None:
    existing, _ = _add_rate(database, 10.0, date(2023, 12, 1))
    rows = [
        {"kwh_rate": 11.0, "kwh_rate2": 11.56, "kwh_rate3": 12.18, "effective_from": date(2024, 1, 1), "archived": False},
        {"kwh_rate": 12.0, "kwh_rate2": 12.56, "kwh_rate3": 13.18, "effective_from": date(2024, 3, 1), "archived": False},
        {"kwh_rate": 9.0, "kwh_rate2": 9.56, "kwh_rate3": 10.18, "effective_from": date(2022, 1, 1), "archived": True},
    ]

    imported, archived = database.import_rates(rows, updated_by=None)

    assert len(imported) == 3
    assert [rate.id for rate in archived] == [existing.id]
    current = [rate for rate in database.list_all_rates() if not rate.archived]
    assert len(current) == 1
    assert current[0].kwh_rate == 12.0


def test_import_rejects_rows_without_a_date(database: Database) -> None:
    existing, _ = _add_rate(database, 10.0, date(2023, 12, 1))
    rows = [
        {"kwh_rate": 11.0, "kwh_rate2": 11.56, "kwh_rate3": 12.18, "effective_from": date(2024, 1, 1), "archived": False},
        {"kwh_rate": 12.0, "kwh_rate2": 12.56, "kwh_rate3": 13.18, "effective_from": "2024-03-01", "archived": False},
    ]

    with pytest.raises(ImportValidationError, match="Row 2 has an invalid date format."):
        database.import_rates(rows, updated_by=None)

    rates = database.list_all_rates()
    assert [rate.id for rate in rates] == [existing.id]
    assert not rates[0].archived


def test_audit_filters_and_total(database: Database) -> None:
    admin = database.create_user("Grid Admin", "admin@example.com", "Sup3r$ecret")
    database.log_action(ActionType.LOGIN, admin.id, {"email": "admin@example.com"})
    database.log_action(ActionType.CREATE, admin.id, {"entity": "meralcorate", "note": "100% renewable"})
    database.log_action(ActionType.EXPORT, admin.id, {"entity": "AuditTrail"})

    page = database.query_audit(AuditFilters(details_contains="audittrail"))
    assert page.total == 1
    assert page.items[0].action == ActionType.EXPORT
    assert page.items[0].user_name == "Grid Admin"

    # LIKE wildcards in the search term are matched literally.
    assert database.count_audit(AuditFilters(details_contains="100%")) == 1
    assert database.count_audit(AuditFilters(details_contains="%")) == 1

    assert database.count_audit(AuditFilters(action=ActionType.LOGIN)) == 1
    assert database.count_audit(AuditFilters(uid=admin.id)) == 3
    assert database.count_audit() == 3


def test_audit_details_search_matches_compact_json(database: Database) -> None:
    database.log_action(ActionType.ARCHIVE, None, {"reason": "Replaced by new rate", "rate_id": 4})

    assert database.count_audit(AuditFilters(details_contains='"reason":"replaced')) == 1
    assert database.count_audit(AuditFilters(details_contains='"rate_id":4')) == 1
    record = database.recent_audit(1)[0]
    assert record.details == {"rate_id": 4, "reason": "Replaced by new rate"}


def test_audit_date_range_uses_configured_timezone(database: Database) -> None:
    # 17:00 UTC on March 1st is 01:00 on March 2nd in Manila.
    database.log_action(
        ActionType.LOGIN,
        None,
        {},
        timestamp=datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc),
    )
    march_second = AuditFilters(start=date(2024, 3, 2), end=date(2024, 3, 2))
    march_first = AuditFilters(start=date(2024, 3, 1), end=date(2024, 3, 1))
    assert database.count_audit(march_second) == 1
    assert database.count_audit(march_first) == 0
    # A range needs both ends.
    assert database.count_audit(AuditFilters(start=date(2030, 1, 1))) == 1


def test_audit_pages_follow_sort_order(database: Database) -> None:
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for index in range(5):
        database.log_action(ActionType.LOGIN, None, {"n": index}, timestamp=base + timedelta(minutes=index))

    newest = database.query_audit(limit=2)
    assert [record.details["n"] for record in newest.items] == [4, 3]
    assert newest.total == 5

    oldest = database.query_audit(descending=False, limit=2)
    assert [record.details["n"] for record in oldest.items] == [0, 1]
    following = database.query_audit(descending=False, limit=2, after=oldest.next_cursor)
    assert [record.details["n"] for record in following.items] == [2, 3]


def test_preferences_round_trip(database: Database) -> None:
    from enervisio.models import NotificationPreferences, SystemPreferences

    user = database.create_user("Grid Admin", "admin@example.com", "Sup3r$ecret")
    database.update_notification_preferences(user.id, NotificationPreferences(email_alerts=False))
    database.update_system_preferences(user.id, SystemPreferences(timezone="Asia/Tokyo", theme="dark"))

    notifications, system = database.get_preferences(user.id)
    assert notifications.email_alerts is False
    assert notifications.security_alerts is True
    assert system.timezone == "Asia/Tokyo"
    assert system.theme == "dark"
