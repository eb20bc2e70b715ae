"""In-memory tracking of failed sign-in attempts."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional


@dataclass
class _AttemptRecord:
    failures: int = 0
    locked_until: Optional[datetime] = None


class LoginLockout:
    """Lock an email address out after too many consecutive failed logins."""

    def __init__(
        self,
        *,
        max_attempts: int = 5,
        lockout_period: timedelta = timedelta(minutes=15),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self._max_attempts = max_attempts
        self._period = lockout_period
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: Dict[str, _AttemptRecord] = {}
        self._lock = threading.Lock()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def remaining_lock_minutes(self, email: str) -> Optional[int]:
        """Return minutes left on an active lock, or ``None`` when unlocked."""

        key = self._key(email)
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None or record.locked_until is None:
                return None
            if record.locked_until <= now:
                self._records.pop(key, None)
                return None
            remaining = (record.locked_until - now).total_seconds() / 60
        return max(1, math.ceil(remaining))

    def register_failure(self, email: str) -> int:
        """Record a failed attempt and return the failure count."""

        key = self._key(email)
        now = self._clock()
        with self._lock:
            record = self._records.setdefault(key, _AttemptRecord())
            if record.locked_until is not None and record.locked_until <= now:
                record.failures = 0
                record.locked_until = None
            record.failures += 1
            if record.failures >= self._max_attempts and record.locked_until is None:
                record.locked_until = now + self._period
            return record.failures

    def reset(self, email: str) -> None:
        with self._lock:
            self._records.pop(self._key(email), None)

    @staticmethod
    def _key(email: str) -> str:
        return email.strip().lower()


__all__ = ["LoginLockout"]
