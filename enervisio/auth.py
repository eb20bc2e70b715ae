"""Sign-in, password reset and password change workflows."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .config import Settings
from .constants import ActionType
from .database import Database
from .errors import (
    AccessDeniedError,
    AccountLockedError,
    AuthenticationError,
    DashboardError,
)
from .lockout import LoginLockout
from .models import User
from .validation import ensure_strong_password, is_valid_email

logger = logging.getLogger("enervisio.auth")

ResetNotifier = Callable[[User, str], None]


def log_reset_link(user: User, link: str) -> None:
    """Default notifier: write the reset link to the application log."""

    logger.info("Password reset link for %s: %s", user.email, link)


class AuthService:
    """Coordinates credential checks, lockouts and the related audit entries."""

    def __init__(
        self,
        database: Database,
        settings: Optional[Settings] = None,
        *,
        lockout: Optional[LoginLockout] = None,
        notifier: Optional[ResetNotifier] = None,
    ) -> None:
        self._database = database
        self._settings = settings or Settings()
        self._lockout = lockout or LoginLockout(
            max_attempts=self._settings.max_login_attempts,
            lockout_period=self._settings.lockout_period,
        )
        self._notifier = notifier or log_reset_link

    @property
    def lockout(self) -> LoginLockout:
        return self._lockout

    def login(self, email: str, password: str) -> User:
        email = (email or "").strip()
        if not email or not password:
            raise AuthenticationError("Email and password are required.")

        remaining = self._lockout.remaining_lock_minutes(email)
        if remaining is not None:
            raise AccountLockedError(remaining)

        user = self._database.authenticate_user(email, password)
        if user is None:
            self._lockout.register_failure(email)
            self._log_failed_login(email, "INVALID_CREDENTIALS")
            remaining = self._lockout.remaining_lock_minutes(email)
            if remaining is not None:
                logger.warning("Locking out %s after repeated failed logins", email)
                raise AccountLockedError(remaining)
            raise AuthenticationError("Invalid email or password.")

        if not user.is_admin:
            self._log_failed_login(email, "NOT_ADMIN")
            raise AccessDeniedError("Access denied. Admin privileges required.")

        self._lockout.reset(email)
        self._database.record_login(user.id)
        self._database.log_action(
            ActionType.LOGIN,
            user.id,
            {"email": user.email, "method": "EMAIL_PASSWORD"},
        )
        logger.info("User %s signed in", user.email)
        return self._database.get_user(user.id) or user

    def verify_admin(self, email: str, password: str) -> User:
        """Check credentials without recording a sign-in."""

        remaining = self._lockout.remaining_lock_minutes(email)
        if remaining is not None:
            raise AccountLockedError(remaining)
        user = self._database.authenticate_user(email, password)
        if user is None:
            self._lockout.register_failure(email)
            raise AuthenticationError("Invalid email or password.")
        if not user.is_admin:
            raise AccessDeniedError("Access denied. Admin privileges required.")
        self._lockout.reset(email)
        return user

    def logout(self, user: User) -> None:
        self._database.log_action(ActionType.LOGOUT, user.id, {"email": user.email})
        logger.info("User %s signed out", user.email)

    def request_password_reset(self, email: str, reset_url: Callable[[str], str]) -> str:
        """Issue a reset token for an admin account and hand the link to the notifier."""

        email = (email or "").strip()
        if not is_valid_email(email):
            raise DashboardError("Please enter a valid email address.")
        user = self._database.get_user_by_email(email)
        if user is None:
            raise DashboardError("Email not found.")
        if not user.is_admin:
            raise AccessDeniedError("This account does not have admin privileges.")

        token = self._database.create_password_reset_token(user.id, self._settings.reset_token_ttl)
        self._database.log_action(ActionType.PASSWORD_RESET_REQUEST, user.id, {"email": user.email})
        self._notifier(user, reset_url(token))
        return token

    def check_reset_token(self, token: str) -> User:
        return self._database.peek_password_reset_token(token)

    def reset_password(self, token: str, new_password: str, confirm_password: str) -> User:
        ensure_strong_password(new_password, confirm_password)
        user = self._database.peek_password_reset_token(token)
        self._database.set_user_password(
            user.id,
            new_password,
            history_size=self._settings.password_history_size,
        )
        self._database.consume_password_reset_token(token)
        self._lockout.reset(user.email or "")
        self._database.log_action(
            ActionType.PASSWORD_CHANGED,
            user.id,
            {"email": user.email, "method": "RESET"},
        )
        logger.info("Password reset completed for %s", user.email)
        return user

    def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> None:
        if not self._database.verify_user_password(user.id, current_password):
            raise AuthenticationError("Current password is incorrect.")
        ensure_strong_password(new_password, confirm_password)
        self._database.set_user_password(
            user.id,
            new_password,
            history_size=self._settings.password_history_size,
        )
        self._database.log_action(
            ActionType.PASSWORD_CHANGED,
            user.id,
            {"email": user.email, "method": "CHANGE"},
        )

    def _log_failed_login(self, email: str, reason: str) -> None:
        existing = self._database.get_user_by_email(email)
        self._database.log_action(
            ActionType.FAILED_LOGIN,
            existing.id if existing else None,
            {"email": email, "reason": reason},
        )


__all__ = ["AuthService", "ResetNotifier", "log_reset_link"]
