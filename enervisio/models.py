"""Domain models for the rate management dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Generic, List, Optional, TypeVar

from .constants import USER_TYPE_ADMIN

T = TypeVar("T")


@dataclass(frozen=True)
class NotificationPreferences:
    email_alerts: bool = True
    system_notifications: bool = True
    rate_change_alerts: bool = True
    security_alerts: bool = True

    def to_dict(self) -> Dict[str, bool]:
        return {
            "email_alerts": self.email_alerts,
            "system_notifications": self.system_notifications,
            "rate_change_alerts": self.rate_change_alerts,
            "security_alerts": self.security_alerts,
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, object]]) -> "NotificationPreferences":
        data = data or {}
        return NotificationPreferences(
            email_alerts=bool(data.get("email_alerts", True)),
            system_notifications=bool(data.get("system_notifications", True)),
            rate_change_alerts=bool(data.get("rate_change_alerts", True)),
            security_alerts=bool(data.get("security_alerts", True)),
        )


@dataclass(frozen=True)
class SystemPreferences:
    timezone: str = "Asia/Manila"
    date_format: str = "MM/dd/yyyy"
    language: str = "en"
    theme: str = "light"

    def to_dict(self) -> Dict[str, str]:
        return {
            "timezone": self.timezone,
            "date_format": self.date_format,
            "language": self.language,
            "theme": self.theme,
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, object]]) -> "SystemPreferences":
        data = data or {}
        defaults = SystemPreferences()
        return SystemPreferences(
            timezone=str(data.get("timezone") or defaults.timezone),
            date_format=str(data.get("date_format") or defaults.date_format),
            language=str(data.get("language") or defaults.language),
            theme=str(data.get("theme") or defaults.theme),
        )


@dataclass(frozen=True)
class User:
    """Represents a user profile stored in the dashboard database."""

    id: int
    display_name: str
    email: Optional[str]
    user_type: int
    created_at: datetime
    last_login: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    notifications: NotificationPreferences = field(default_factory=NotificationPreferences)
    system: SystemPreferences = field(default_factory=SystemPreferences)

    @property
    def is_admin(self) -> bool:
        return self.user_type == USER_TYPE_ADMIN


@dataclass(frozen=True)
class Rate:
    """A versioned electricity price entry with bracket pricing."""

    id: int
    kwh_rate: float
    kwh_rate2: float
    kwh_rate3: float
    effective_from: date
    archived: bool
    updated_at: datetime
    updated_by: Optional[int]
    notes: str = ""
    updated_by_name: str = "Admin"

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "kwh_rate": self.kwh_rate,
            "kwh_rate2": self.kwh_rate2,
            "kwh_rate3": self.kwh_rate3,
            "effective_from": self.effective_from.isoformat(),
            "archived": self.archived,
            "updated_at": self.updated_at.isoformat(),
            "updated_by": self.updated_by,
            "updated_by_name": self.updated_by_name,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class AuditRecord:
    """A log entry capturing a user action for compliance review."""

    id: int
    action: str
    timestamp: datetime
    uid: Optional[int]
    details: Dict[str, object] = field(default_factory=dict)
    user_name: Optional[str] = None
    user_type: Optional[int] = None


@dataclass(frozen=True)
class AuditFilters:
    """Filters accepted by the audit trail queries."""

    start: Optional[date] = None
    end: Optional[date] = None
    action: Optional[str] = None
    uid: Optional[int] = None
    details_contains: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.start and self.end,
                self.action,
                self.uid is not None,
                self.details_contains,
            )
        )


@dataclass
class Page(Generic[T]):
    """A slice of keyset-paginated results."""

    items: List[T]
    has_more: bool
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None
    total: Optional[int] = None


__all__ = [
    "AuditFilters",
    "AuditRecord",
    "NotificationPreferences",
    "Page",
    "Rate",
    "SystemPreferences",
    "User",
]
