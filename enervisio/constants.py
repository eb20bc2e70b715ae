"""Shared constants for the Enervisio administration dashboard."""

from __future__ import annotations

from typing import Dict, List, Tuple


class ActionType:
    """Audit trail action tags."""

    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ARCHIVE = "ARCHIVE"
    UNARCHIVE = "UNARCHIVE"
    FAILED_LOGIN = "FAILED_LOGIN"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    EXPORT = "EXPORT"
    IMPORT = "IMPORT"

    @classmethod
    def all(cls) -> List[str]:
        return [
            cls.LOGIN,
            cls.LOGOUT,
            cls.CREATE,
            cls.UPDATE,
            cls.DELETE,
            cls.ARCHIVE,
            cls.UNARCHIVE,
            cls.FAILED_LOGIN,
            cls.PASSWORD_RESET_REQUEST,
            cls.PASSWORD_CHANGED,
            cls.EXPORT,
            cls.IMPORT,
        ]


USER_TYPE_REGULAR = 1
USER_TYPE_ADMIN = 3

RATE_ENTITY = "meralcorate"

DATE_FORMATS: Dict[str, str] = {
    "DEFAULT": "MM/dd/yyyy",
    "DISPLAY": "MMMM d, yyyy",
    "DATETIME": "MM/dd/yyyy hh:mm a",
    "ISO": "yyyy-MM-dd",
}

TIMEZONES: List[Tuple[str, str]] = [
    ("Asia/Manila", "Philippine Time (PHT/GMT+8)"),
    ("Asia/Singapore", "Singapore Time (SGT/GMT+8)"),
    ("Asia/Tokyo", "Japan Time (JST/GMT+9)"),
    ("Australia/Sydney", "Australian Eastern Time (AEST/GMT+10)"),
    ("Europe/London", "Greenwich Mean Time (GMT/UTC+0)"),
    ("America/New_York", "Eastern Time (ET/GMT-5)"),
    ("America/Chicago", "Central Time (CT/GMT-6)"),
    ("America/Denver", "Mountain Time (MT/GMT-7)"),
    ("America/Los_Angeles", "Pacific Time (PT/GMT-8)"),
]

LANGUAGES: List[Tuple[str, str]] = [("en", "English"), ("fil", "Filipino")]

THEMES: List[Tuple[str, str]] = [
    ("light", "Light"),
    ("dark", "Dark"),
    ("system", "System Default"),
]

PAGE_SIZES: Tuple[int, ...] = (10, 20, 50, 100)
DEFAULT_AUDIT_PAGE_SIZE = 20
RATE_PAGE_SIZE = 10

EXPORT_FORMATS: List[Tuple[str, str]] = [
    ("xlsx", "Excel (.xlsx)"),
    ("csv", "CSV (.csv)"),
    ("pdf", "PDF (.pdf)"),
]

TIME_RANGES: List[Tuple[str, str]] = [
    ("1month", "Last Month"),
    ("3months", "Last 3 Months"),
    ("6months", "Last 6 Months"),
    ("1year", "Last Year"),
    ("all", "All Time"),
]

HISTORY_RANGES: List[Tuple[str, str]] = [
    ("3months", "Last 3 Months"),
    ("6months", "Last 6 Months"),
    ("1year", "Last Year"),
    ("5years", "Last 5 Years"),
    ("all", "All Time"),
]

TIME_RANGE_MONTHS: Dict[str, int] = {
    "1month": 1,
    "3months": 3,
    "6months": 6,
    "1year": 12,
    "5years": 60,
}

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
PDF_MEDIA_TYPE = "application/pdf"


__all__ = [
    "ActionType",
    "CSV_MEDIA_TYPE",
    "DATE_FORMATS",
    "DEFAULT_AUDIT_PAGE_SIZE",
    "EXPORT_FORMATS",
    "HISTORY_RANGES",
    "LANGUAGES",
    "PAGE_SIZES",
    "PDF_MEDIA_TYPE",
    "RATE_ENTITY",
    "RATE_PAGE_SIZE",
    "THEMES",
    "TIMEZONES",
    "TIME_RANGES",
    "TIME_RANGE_MONTHS",
    "USER_TYPE_ADMIN",
    "USER_TYPE_REGULAR",
    "XLSX_MEDIA_TYPE",
]
