"""Input validation helpers and form models."""
from __future__ import annotations

import html
import re
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ValidationError, field_validator

from .errors import FormValidationError, PasswordPolicyError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PH_MOBILE_RE = re.compile(r"^(?:\+?63|0)[0-9]{10}$")

PASSWORD_REQUIREMENTS: List[Tuple[str, str]] = [
    ("length", "At least 8 characters"),
    ("uppercase", "At least one uppercase letter"),
    ("lowercase", "At least one lowercase letter"),
    ("number", "At least one number"),
    ("special", "At least one special character"),
]


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and _EMAIL_RE.match(email or "") is not None


def validate_password(password: str) -> Dict[str, bool]:
    """Return which of the password strength rules ``password`` satisfies."""

    return {
        "length": len(password) >= 8,
        "uppercase": re.search(r"[A-Z]", password) is not None,
        "lowercase": re.search(r"[a-z]", password) is not None,
        "number": re.search(r"[0-9]", password) is not None,
        "special": re.search(r"[^A-Za-z0-9]", password) is not None,
    }


def is_valid_password(password: str) -> bool:
    return all(validate_password(password).values())


def ensure_strong_password(password: str, confirm: Optional[str] = None) -> None:
    """Raise :class:`PasswordPolicyError` unless the password is acceptable."""

    if not is_valid_password(password):
        raise PasswordPolicyError("Password does not meet the requirements.")
    if confirm is not None and password != confirm:
        raise PasswordPolicyError("Passwords do not match.")


def is_valid_ph_mobile_number(value: Optional[str]) -> bool:
    return bool(value) and _PH_MOBILE_RE.match(value or "") is not None


def sanitize_html(value: str) -> str:
    return html.escape(value, quote=True)


class RateForm(BaseModel):
    """Validated input for adding or editing a rate record."""

    kwh_rate: float
    effective_from: date
    notes: str = ""

    @field_validator("kwh_rate", mode="before")
    @classmethod
    def _validate_rate(cls, value: object) -> float:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("Rate is required")
        try:
            rate = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise ValueError("Rate must be a valid number") from None
        if rate != rate:
            raise ValueError("Rate must be a valid number")
        if rate <= 0:
            raise ValueError("Rate must be greater than zero")
        return rate

    @field_validator("effective_from", mode="before")
    @classmethod
    def _validate_effective_from(cls, value: object) -> date:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("Effective date is required")
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value).strip())
        except ValueError:
            raise ValueError("Effective date must be a valid date") from None

    @field_validator("notes", mode="before")
    @classmethod
    def _normalise_notes(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @classmethod
    def from_form(cls, data: Mapping[str, object]) -> "RateForm":
        """Build a form from submitted fields, collecting per-field messages."""

        try:
            return cls(
                kwh_rate=data.get("kwh_rate"),
                effective_from=data.get("effective_from"),
                notes=data.get("notes") or "",
            )
        except ValidationError as exc:
            errors: Dict[str, str] = {}
            for error in exc.errors():
                field = str(error["loc"][0]) if error.get("loc") else "form"
                ctx_error = (error.get("ctx") or {}).get("error")
                errors.setdefault(field, str(ctx_error) if ctx_error else error["msg"])
            raise FormValidationError(errors) from exc


__all__ = [
    "PASSWORD_REQUIREMENTS",
    "RateForm",
    "ensure_strong_password",
    "is_valid_email",
    "is_valid_password",
    "is_valid_ph_mobile_number",
    "sanitize_html",
    "validate_password",
]
