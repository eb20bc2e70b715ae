"""SQLite-backed persistence for users, rate records and the audit trail."""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import secrets
import sqlite3
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar
from zoneinfo import ZoneInfo

from passlib.context import CryptContext

from .constants import USER_TYPE_ADMIN
from .errors import ImportValidationError, PasswordReuseError, RateNotFoundError, ResetTokenError
from .models import (
    AuditFilters,
    AuditRecord,
    NotificationPreferences,
    Page,
    Rate,
    SystemPreferences,
    User,
)

T = TypeVar("T")

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PASSWORD_HISTORY_SIZE = 3


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "enervisio.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return _parse_datetime(str(value))


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def encode_cursor(sort_key: str, row_id: int) -> str:
    raw = f"{sort_key}|{row_id}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[str, int]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        sort_key, row_id = raw.rsplit("|", 1)
        return sort_key, int(row_id)
    except (ValueError, UnicodeError, binascii.Error) as exc:
        raise ValueError("Invalid pagination cursor") from exc


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Database:
    """Thin service-access layer over SQLite for the dashboard's records."""

    def __init__(self, path: Path, *, timezone_name: Optional[str] = None) -> None:
        _ensure_directory(path)
        self._path = path
        self._tz: tzinfo = ZoneInfo(timezone_name) if timezone_name else timezone.utc

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    email TEXT UNIQUE,
                    user_type INTEGER NOT NULL DEFAULT 1,
                    password_hash TEXT,
                    password_history TEXT NOT NULL DEFAULT '[]',
                    notifications TEXT NOT NULL DEFAULT '{}',
                    system TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    last_login TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS rates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kwh_rate REAL NOT NULL,
                    kwh_rate2 REAL NOT NULL,
                    kwh_rate3 REAL NOT NULL,
                    effective_from TEXT NOT NULL,
                    archived INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    updated_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
                    notes TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS audit_trail (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    action TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    uid INTEGER,
                    details TEXT NOT NULL DEFAULT '{}'
                );

                CREATE TABLE IF NOT EXISTS password_reset_tokens (
                    token_hash TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    expires_at TEXT NOT NULL,
                    used_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_rates_effective ON rates(effective_from, id);
                CREATE INDEX IF NOT EXISTS idx_rates_archived ON rates(archived);
                CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_trail(timestamp, id);
                CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_trail(action);
                CREATE INDEX IF NOT EXISTS idx_audit_uid ON audit_trail(uid);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        display_name: str,
        email: Optional[str],
        password: str,
        *,
        user_type: int = USER_TYPE_ADMIN,
    ) -> User:
        """Create a new user profile."""

        if not password:
            raise ValueError("Password must not be empty")
        normalized_name = display_name.strip()
        if not normalized_name:
            raise ValueError("Display name must not be empty")

        created_at = _current_timestamp()
        password_hash = _hash_password(password)
        normalized_email = email.strip().lower() if email else None

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (
                        display_name, email, user_type, password_hash, password_history, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        normalized_name,
                        normalized_email,
                        int(user_type),
                        password_hash,
                        json.dumps([password_hash]),
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc
            user_id = cursor.lastrowid

        user = self.get_user(user_id)
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY display_name, id").fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM users").fetchone()
        return int(row["total"])

    def count_active_users(self, since: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM users WHERE last_login IS NOT NULL AND last_login >= ?",
                (_serialize_datetime(since),),
            ).fetchone()
        return int(row["total"])

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        if row is None:
            return None
        stored_hash = row["password_hash"]
        if not stored_hash or not _verify_password(password, stored_hash):
            return None
        return self._row_to_user(row)

    def verify_user_password(self, user_id: int, password: str) -> bool:
        """Return ``True`` if the supplied password matches the stored hash."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()

        if row is None:
            return False

        stored_hash = row["password_hash"]
        if not stored_hash:
            return False

        return _verify_password(password, stored_hash)

    def record_login(self, user_id: int, when: Optional[datetime] = None) -> None:
        timestamp = _serialize_datetime(when or _current_timestamp())
        with self._connect() as conn:
            conn.execute("UPDATE users SET last_login = ? WHERE id = ?", (timestamp, user_id))

    def update_display_name(self, user_id: int, display_name: str) -> User:
        normalized_name = display_name.strip()
        if not normalized_name:
            raise ValueError("Display name must not be empty")

        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET display_name = ?, updated_at = ? WHERE id = ?",
                (normalized_name, _serialize_datetime(_current_timestamp()), user_id),
            )

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise ValueError("User not found")
        return refreshed

    def set_user_password(
        self,
        user_id: int,
        password: str,
        *,
        history_size: int = PASSWORD_HISTORY_SIZE,
    ) -> None:
        """Store a new password.

        The current password and the ``history_size`` passwords before it are
        rejected; the history keeps the current hash plus that many earlier ones.
        """

        if not password:
            raise ValueError("Password must not be empty")

        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash, password_history FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
            if row is None:
                raise ValueError("User not found")

            history: List[str] = json.loads(row["password_history"] or "[]")
            if row["password_hash"] and row["password_hash"] not in history:
                history.insert(0, row["password_hash"])

            for previous in history[: history_size + 1]:
                if _verify_password(password, previous):
                    raise PasswordReuseError(history_size)

            password_hash = _hash_password(password)
            updated_history = [password_hash, *history][: history_size + 1]
            conn.execute(
                """
                UPDATE users
                   SET password_hash = ?, password_history = ?, updated_at = ?
                 WHERE id = ?
                """,
                (
                    password_hash,
                    json.dumps(updated_history),
                    _serialize_datetime(_current_timestamp()),
                    user_id,
                ),
            )

    def get_preferences(self, user_id: int) -> Tuple[NotificationPreferences, SystemPreferences]:
        user = self.get_user(user_id)
        if user is None:
            raise ValueError("User not found")
        return user.notifications, user.system

    def update_notification_preferences(
        self, user_id: int, preferences: NotificationPreferences
    ) -> User:
        return self._update_preferences(user_id, "notifications", preferences.to_dict())

    def update_system_preferences(self, user_id: int, preferences: SystemPreferences) -> User:
        return self._update_preferences(user_id, "system", preferences.to_dict())

    def _update_preferences(self, user_id: int, column: str, payload: Mapping[str, object]) -> User:
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE users SET {column} = ?, updated_at = ? WHERE id = ?",
                (json.dumps(dict(payload)), _serialize_datetime(_current_timestamp()), user_id),
            )
            if cursor.rowcount == 0:
                raise ValueError("User not found")
        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise ValueError("User not found")
        return refreshed

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------
    def create_password_reset_token(self, user_id: int, ttl: timedelta) -> str:
        token = secrets.token_urlsafe(32)
        expires_at = _current_timestamp() + ttl
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO password_reset_tokens (token_hash, user_id, expires_at) VALUES (?, ?, ?)",
                (_hash_token(token), user_id, _serialize_datetime(expires_at)),
            )
        return token

    def peek_password_reset_token(self, token: str) -> User:
        """Return the user a reset token belongs to without consuming it."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM password_reset_tokens WHERE token_hash = ?",
                (_hash_token(token),),
            ).fetchone()
        user_id = self._validate_reset_row(row)
        user = self.get_user(user_id)
        if user is None:
            raise ResetTokenError("This password reset link is invalid.")
        return user

    def consume_password_reset_token(self, token: str) -> User:
        """Mark a reset token as used and return its owner."""

        token_hash = _hash_token(token)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM password_reset_tokens WHERE token_hash = ?",
                (token_hash,),
            ).fetchone()
            user_id = self._validate_reset_row(row)
            conn.execute(
                "UPDATE password_reset_tokens SET used_at = ? WHERE token_hash = ?",
                (_serialize_datetime(_current_timestamp()), token_hash),
            )
        user = self.get_user(user_id)
        if user is None:
            raise ResetTokenError("This password reset link is invalid.")
        return user

    def _validate_reset_row(self, row: Optional[sqlite3.Row]) -> int:
        if row is None:
            raise ResetTokenError("This password reset link is invalid.")
        if row["used_at"]:
            raise ResetTokenError("This password reset link has already been used.")
        if _parse_datetime(str(row["expires_at"])) <= _current_timestamp():
            raise ResetTokenError("This password reset link has expired.")
        return int(row["user_id"])

    # ------------------------------------------------------------------
    # Rate records
    # ------------------------------------------------------------------
    _RATE_SELECT = """
        SELECT r.*, u.display_name AS updated_by_name
          FROM rates r
          LEFT JOIN users u ON u.id = r.updated_by
    """

    def add_rate(
        self,
        *,
        kwh_rate: float,
        kwh_rate2: float,
        kwh_rate3: float,
        effective_from: date,
        updated_by: Optional[int],
        notes: str = "",
    ) -> Tuple[Rate, List[Rate]]:
        """Archive every current rate and insert a new current one.

        Returns the new rate and the rates that were archived to make way for it.
        Both steps run inside a single transaction.
        """

        now = _serialize_datetime(_current_timestamp())
        with self._connect() as conn:
            previous = conn.execute(
                self._RATE_SELECT + " WHERE r.archived = 0 ORDER BY r.effective_from DESC, r.id DESC"
            ).fetchall()
            archived_ids = [int(row["id"]) for row in previous]
            if archived_ids:
                conn.executemany(
                    "UPDATE rates SET archived = 1, updated_at = ?, updated_by = ? WHERE id = ?",
                    [(now, updated_by, rate_id) for rate_id in archived_ids],
                )
            cursor = conn.execute(
                """
                INSERT INTO rates (
                    kwh_rate, kwh_rate2, kwh_rate3, effective_from, archived, updated_at, updated_by, notes
                ) VALUES (?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    float(kwh_rate),
                    float(kwh_rate2),
                    float(kwh_rate3),
                    effective_from.isoformat(),
                    now,
                    updated_by,
                    notes or "",
                ),
            )
            rate_id = cursor.lastrowid

        created = self.get_rate(rate_id)
        if created is None:
            raise RuntimeError("Failed to load rate after creation")
        return created, [self._row_to_rate(row) for row in previous]

    def update_rate(
        self,
        rate_id: int,
        *,
        kwh_rate: float,
        kwh_rate2: float,
        kwh_rate3: float,
        effective_from: date,
        updated_by: Optional[int],
        notes: str = "",
    ) -> Rate:
        """Update a rate's values without touching its archived status."""

        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE rates
                   SET kwh_rate = ?, kwh_rate2 = ?, kwh_rate3 = ?, effective_from = ?,
                       updated_at = ?, updated_by = ?, notes = ?
                 WHERE id = ?
                """,
                (
                    float(kwh_rate),
                    float(kwh_rate2),
                    float(kwh_rate3),
                    effective_from.isoformat(),
                    _serialize_datetime(_current_timestamp()),
                    updated_by,
                    notes or "",
                    rate_id,
                ),
            )
            if cursor.rowcount == 0:
                raise RateNotFoundError(f"Rate {rate_id} does not exist")

        refreshed = self.get_rate(rate_id)
        if refreshed is None:
            raise RateNotFoundError(f"Rate {rate_id} does not exist")
        return refreshed

    def get_rate(self, rate_id: int) -> Optional[Rate]:
        with self._connect() as conn:
            row = conn.execute(self._RATE_SELECT + " WHERE r.id = ?", (rate_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_rate(row)

    def get_current_rate(self, *, fallback_to_archived: bool = True) -> Optional[Rate]:
        """Return the latest non-archived rate, or the latest rate of any status."""

        with self._connect() as conn:
            row = conn.execute(
                self._RATE_SELECT
                + " WHERE r.archived = 0 ORDER BY r.effective_from DESC, r.id DESC LIMIT 1"
            ).fetchone()
            if row is None and fallback_to_archived:
                row = conn.execute(
                    self._RATE_SELECT + " ORDER BY r.effective_from DESC, r.id DESC LIMIT 1"
                ).fetchone()
        if row is None:
            return None
        return self._row_to_rate(row)

    def list_rates(
        self,
        *,
        archived: Optional[bool] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = 10,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> Page[Rate]:
        """Return a page of rates ordered newest effective date first."""

        clauses: List[str] = []
        params: List[object] = []
        if archived is not None:
            clauses.append("r.archived = ?")
            params.append(int(archived))
        if start is not None and end is not None:
            clauses.append("r.effective_from >= ? AND r.effective_from <= ?")
            params.extend([start.isoformat(), end.isoformat()])

        return self._keyset_page(
            select=self._RATE_SELECT,
            clauses=clauses,
            params=params,
            sort_column="r.effective_from",
            id_column="r.id",
            descending=True,
            limit=limit,
            after=after,
            before=before,
            mapper=self._row_to_rate,
            sort_key=lambda rate: rate.effective_from.isoformat(),
        )

    def list_all_rates(self, *, ascending: bool = False, since: Optional[date] = None) -> List[Rate]:
        direction = "ASC" if ascending else "DESC"
        query = self._RATE_SELECT
        params: List[object] = []
        if since is not None:
            query += " WHERE r.effective_from >= ?"
            params.append(since.isoformat())
        query += f" ORDER BY r.effective_from {direction}, r.id {direction}"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_rate(row) for row in rows]

    def import_rates(
        self,
        rows: Iterable[Mapping[str, object]],
        *,
        updated_by: Optional[int],
    ) -> Tuple[List[Rate], List[Rate]]:
        """Bulk insert rates in one transaction.

        At most one imported row stays current: the non-archived row with the
        latest effective date. When such a row exists, previously current rates
        are archived. Returns ``(imported, archived_existing)``.
        """

        prepared = list(rows)
        for number, row in enumerate(prepared, start=1):
            if not isinstance(row.get("effective_from"), date):
                raise ImportValidationError(f"Row {number} has an invalid date format.")

        current_index: Optional[int] = None
        for index, row in enumerate(prepared):
            if row.get("archived"):
                continue
            if current_index is None or row["effective_from"] >= prepared[current_index]["effective_from"]:  # type: ignore[operator]
                current_index = index

        now = _serialize_datetime(_current_timestamp())
        inserted_ids: List[int] = []
        with self._connect() as conn:
            previous: Sequence[sqlite3.Row] = []
            if current_index is not None:
                previous = conn.execute(self._RATE_SELECT + " WHERE r.archived = 0").fetchall()
                conn.executemany(
                    "UPDATE rates SET archived = 1, updated_at = ?, updated_by = ? WHERE id = ?",
                    [(now, updated_by, int(row["id"])) for row in previous],
                )
            for index, row in enumerate(prepared):
                effective_from = row["effective_from"]
                cursor = conn.execute(
                    """
                    INSERT INTO rates (
                        kwh_rate, kwh_rate2, kwh_rate3, effective_from, archived, updated_at, updated_by, notes
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        float(row["kwh_rate"]),  # type: ignore[arg-type]
                        float(row["kwh_rate2"]),  # type: ignore[arg-type]
                        float(row["kwh_rate3"]),  # type: ignore[arg-type]
                        effective_from.isoformat(),
                        0 if index == current_index else 1,
                        now,
                        updated_by,
                        str(row.get("notes") or ""),
                    ),
                )
                inserted_ids.append(int(cursor.lastrowid))

        imported = [rate for rate in (self.get_rate(rate_id) for rate_id in inserted_ids) if rate]
        return imported, [self._row_to_rate(row) for row in previous]

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------
    _AUDIT_SELECT = """
        SELECT a.*, u.display_name AS user_name, u.user_type AS user_type
          FROM audit_trail a
          LEFT JOIN users u ON u.id = a.uid
    """

    def log_action(
        self,
        action: str,
        uid: Optional[int],
        details: Optional[Mapping[str, object]] = None,
        *,
        timestamp: Optional[datetime] = None,
    ) -> AuditRecord:
        when = timestamp or _current_timestamp()
        payload = json.dumps(
            dict(details or {}), default=str, ensure_ascii=False, sort_keys=True, separators=(",", ":")
        )
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO audit_trail (action, timestamp, uid, details) VALUES (?, ?, ?, ?)",
                (action, _serialize_datetime(when), uid, payload),
            )
            row = conn.execute(
                self._AUDIT_SELECT + " WHERE a.id = ?", (cursor.lastrowid,)
            ).fetchone()
        return self._row_to_audit(row)

    def query_audit(
        self,
        filters: Optional[AuditFilters] = None,
        *,
        descending: bool = True,
        limit: int = 20,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> Page[AuditRecord]:
        """Return one page of audit records plus the filtered total."""

        clauses, params = self._audit_clauses(filters or AuditFilters())
        page = self._keyset_page(
            select=self._AUDIT_SELECT,
            clauses=clauses,
            params=params,
            sort_column="a.timestamp",
            id_column="a.id",
            descending=descending,
            limit=limit,
            after=after,
            before=before,
            mapper=self._row_to_audit,
            sort_key=lambda record: _serialize_datetime(record.timestamp),
        )
        page.total = self.count_audit(filters)
        return page

    def count_audit(self, filters: Optional[AuditFilters] = None) -> int:
        clauses, params = self._audit_clauses(filters or AuditFilters())
        query = "SELECT COUNT(*) AS total FROM audit_trail a"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return int(row["total"])

    def iter_audit(
        self,
        filters: Optional[AuditFilters] = None,
        *,
        descending: bool = True,
    ) -> List[AuditRecord]:
        clauses, params = self._audit_clauses(filters or AuditFilters())
        direction = "DESC" if descending else "ASC"
        query = self._AUDIT_SELECT
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += f" ORDER BY a.timestamp {direction}, a.id {direction}"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_audit(row) for row in rows]

    def audit_since(self, since: Optional[datetime]) -> List[AuditRecord]:
        query = self._AUDIT_SELECT
        params: List[object] = []
        if since is not None:
            query += " WHERE a.timestamp >= ?"
            params.append(_serialize_datetime(since))
        query += " ORDER BY a.timestamp ASC, a.id ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_audit(row) for row in rows]

    def recent_audit(self, limit: int = 5) -> List[AuditRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                self._AUDIT_SELECT + " ORDER BY a.timestamp DESC, a.id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_audit(row) for row in rows]

    def distinct_audit_actions(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT DISTINCT action FROM audit_trail ORDER BY action").fetchall()
        return [str(row["action"]) for row in rows]

    def _audit_clauses(self, filters: AuditFilters) -> Tuple[List[str], List[object]]:
        clauses: List[str] = []
        params: List[object] = []
        if filters.start and filters.end:
            start_at = datetime.combine(filters.start, time.min, tzinfo=self._tz)
            end_at = datetime.combine(filters.end, time.max, tzinfo=self._tz)
            clauses.append("a.timestamp >= ? AND a.timestamp <= ?")
            params.extend([_serialize_datetime(start_at), _serialize_datetime(end_at)])
        if filters.action:
            clauses.append("a.action = ?")
            params.append(filters.action)
        if filters.uid is not None:
            clauses.append("a.uid = ?")
            params.append(filters.uid)
        if filters.details_contains:
            clauses.append("LOWER(a.details) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(filters.details_contains.lower())}%")
        return clauses, params

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _keyset_page(
        self,
        *,
        select: str,
        clauses: List[str],
        params: List[object],
        sort_column: str,
        id_column: str,
        descending: bool,
        limit: int,
        after: Optional[str],
        before: Optional[str],
        mapper: Callable[[sqlite3.Row], T],
        sort_key: Callable[[T], str],
    ) -> Page[T]:
        if limit <= 0:
            raise ValueError("Page size must be positive")

        where = list(clauses)
        values = list(params)
        # Walking backwards flips the comparison and the scan direction.
        backwards = before is not None and after is None
        scan_descending = descending != backwards
        cursor = after if after is not None else before
        if cursor is not None:
            key, row_id = decode_cursor(cursor)
            op = "<" if scan_descending else ">"
            where.append(f"({sort_column} {op} ? OR ({sort_column} = ? AND {id_column} {op} ?))")
            values.extend([key, key, row_id])

        direction = "DESC" if scan_descending else "ASC"
        query = select
        if where:
            query += " WHERE " + " AND ".join(where)
        query += f" ORDER BY {sort_column} {direction}, {id_column} {direction} LIMIT ?"
        values.append(limit + 1)

        with self._connect() as conn:
            rows = conn.execute(query, values).fetchall()

        overflow = len(rows) > limit
        items = [mapper(row) for row in rows[:limit]]
        if backwards:
            items.reverse()
            has_more = True
            has_previous = overflow
        else:
            has_more = overflow
            has_previous = after is not None

        def _cursor_for(item: T) -> str:
            return encode_cursor(sort_key(item), int(getattr(item, "id")))

        return Page(
            items=items,
            has_more=has_more and bool(items),
            next_cursor=_cursor_for(items[-1]) if items and has_more else None,
            prev_cursor=_cursor_for(items[0]) if items and has_previous else None,
        )

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            display_name=str(row["display_name"]),
            email=row["email"],
            user_type=int(row["user_type"]),
            created_at=_parse_datetime(str(row["created_at"])),
            last_login=_parse_optional_datetime(row["last_login"]),
            updated_at=_parse_optional_datetime(row["updated_at"]),
            notifications=NotificationPreferences.from_dict(_load_json(row["notifications"])),
            system=SystemPreferences.from_dict(_load_json(row["system"])),
        )

    def _row_to_rate(self, row: sqlite3.Row) -> Rate:
        updated_by = row["updated_by"]
        return Rate(
            id=int(row["id"]),
            kwh_rate=float(row["kwh_rate"]),
            kwh_rate2=float(row["kwh_rate2"]),
            kwh_rate3=float(row["kwh_rate3"]),
            effective_from=date.fromisoformat(str(row["effective_from"])),
            archived=bool(row["archived"]),
            updated_at=_parse_datetime(str(row["updated_at"])),
            updated_by=int(updated_by) if updated_by is not None else None,
            notes=str(row["notes"] or ""),
            updated_by_name=row["updated_by_name"] or "Admin",
        )

    def _row_to_audit(self, row: sqlite3.Row) -> AuditRecord:
        uid = row["uid"]
        user_type = row["user_type"]
        return AuditRecord(
            id=int(row["id"]),
            action=str(row["action"]),
            timestamp=_parse_datetime(str(row["timestamp"])),
            uid=int(uid) if uid is not None else None,
            details=_load_json(row["details"]),
            user_name=row["user_name"],
            user_type=int(user_type) if user_type is not None else None,
        )


def _load_json(value: Optional[str]) -> Dict[str, object]:
    if not value:
        return {}
    try:
        loaded = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


__all__ = ["Database", "decode_cursor", "encode_cursor", "resolve_database_path"]
