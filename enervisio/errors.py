"""Exception types raised by the dashboard services."""
from __future__ import annotations

from typing import Dict


class DashboardError(ValueError):
    """Base class for errors that are surfaced to the user as alert banners."""


class AuthenticationError(DashboardError):
    """Raised when an email/password pair does not match an account."""


class AccessDeniedError(DashboardError):
    """Raised when an authenticated account lacks administrator privileges."""


class AccountLockedError(DashboardError):
    """Raised while an email address is locked out after repeated failures."""

    def __init__(self, remaining_minutes: int) -> None:
        self.remaining_minutes = remaining_minutes
        super().__init__(
            f"Too many failed login attempts. Please try again in {remaining_minutes} minutes."
        )


class PasswordPolicyError(DashboardError):
    """Raised when a new password fails validation."""


class PasswordReuseError(PasswordPolicyError):
    """Raised when a new password matches the current or a recent password."""

    def __init__(self, history_size: int = 3) -> None:
        super().__init__(f"Cannot reuse one of your last {history_size} passwords.")


class ResetTokenError(DashboardError):
    """Raised when a password reset link is unknown, used, or expired."""


class FormValidationError(DashboardError):
    """Raised when submitted form fields fail validation."""

    def __init__(self, errors: Dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__(next(iter(self.errors.values()), "Invalid form submission."))


class RateNotFoundError(DashboardError):
    """Raised when a rate record does not exist."""


class ImportValidationError(DashboardError):
    """Raised when an uploaded rate workbook cannot be parsed."""


class ExportError(DashboardError):
    """Raised when an export cannot be produced."""


__all__ = [
    "AccessDeniedError",
    "AccountLockedError",
    "AuthenticationError",
    "DashboardError",
    "ExportError",
    "FormValidationError",
    "ImportValidationError",
    "PasswordPolicyError",
    "PasswordReuseError",
    "RateNotFoundError",
    "ResetTokenError",
]
