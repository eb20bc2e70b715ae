from __future__ import annotations

from datetime import date

import pytest

from enervisio.errors import FormValidationError, PasswordPolicyError
from enervisio.validation import (
    RateForm,
    ensure_strong_password,
    is_valid_email,
    is_valid_password,
    is_valid_ph_mobile_number,
    sanitize_html,
    validate_password,
)


def test_password_rules_are_reported_individually() -> None:
    rules = validate_password("abc")
    assert rules == {
        "length": False,
        "uppercase": False,
        "lowercase": True,
        "number": False,
        "special": False,
    }
    assert is_valid_password("Sup3r$ecret")
    assert not is_valid_password("Sup3rSecret")


def test_ensure_strong_password_messages() -> None:
    with pytest.raises(PasswordPolicyError, match="does not meet the requirements"):
        ensure_strong_password("weak", "weak")
    with pytest.raises(PasswordPolicyError, match="Passwords do not match"):
        ensure_strong_password("Sup3r$ecret", "Sup3r$ecreT")
    ensure_strong_password("Sup3r$ecret", "Sup3r$ecret")


@pytest.mark.parametrize(
    "value, expected",
    [
        ("admin@example.com", True),
        ("admin@example", False),
        ("admin example.com", False),
        ("", False),
        (None, False),
    ],
)
def test_email_validation(value, expected) -> None:
    assert is_valid_email(value) is expected


def test_mobile_numbers_and_html_escaping() -> None:
    assert is_valid_ph_mobile_number("09171234567")
    assert is_valid_ph_mobile_number("+639171234567")
    assert not is_valid_ph_mobile_number("12345")
    assert sanitize_html('<b>"hi"</b>') == "&lt;b&gt;&quot;hi&quot;&lt;/b&gt;"
    assert sanitize_html("Tom's & <i>") == "Tom&#x27;s &amp; &lt;i&gt;"


def test_rate_form_accepts_valid_input() -> None:
    form = RateForm.from_form({"kwh_rate": " 11.4 ", "effective_from": "2024-06-01", "notes": " June "})
    assert form.kwh_rate == pytest.approx(11.4)
    assert form.effective_from == date(2024, 6, 1)
    assert form.notes == "June"


@pytest.mark.parametrize(
    "rate, message",
    [
        ("", "Rate is required"),
        ("abc", "Rate must be a valid number"),
        ("0", "Rate must be greater than zero"),
        ("-3", "Rate must be greater than zero"),
    ],
)
def test_rate_form_rate_errors(rate: str, message: str) -> None:
    with pytest.raises(FormValidationError) as excinfo:
        RateForm.from_form({"kwh_rate": rate, "effective_from": "2024-06-01"})
    assert excinfo.value.errors == {"kwh_rate": message}


def test_rate_form_reports_every_field() -> None:
    with pytest.raises(FormValidationError) as excinfo:
        RateForm.from_form({"kwh_rate": "", "effective_from": "06/31/2024"})
    assert excinfo.value.errors == {
        "kwh_rate": "Rate is required",
        "effective_from": "Effective date must be a valid date",
    }
    assert str(excinfo.value) == "Rate is required"
