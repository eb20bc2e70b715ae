"""Display formatting helpers shared by templates and exports."""
from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("enervisio.formatters")

DateLike = Union[date, datetime, str, None]

_TOKEN_RE = re.compile(r"yyyy|yy|MMMM|MMM|MM|M|dd|d|EEEE|EEE|HH|H|hh|h|mm|ss|a")


def _hour12(value: datetime) -> int:
    return value.hour % 12 or 12


_TOKENS: Dict[str, Callable[[datetime], str]] = {
    "yyyy": lambda v: f"{v.year:04d}",
    "yy": lambda v: f"{v.year % 100:02d}",
    "MMMM": lambda v: v.strftime("%B"),
    "MMM": lambda v: v.strftime("%b"),
    "MM": lambda v: f"{v.month:02d}",
    "M": lambda v: str(v.month),
    "dd": lambda v: f"{v.day:02d}",
    "d": lambda v: str(v.day),
    "EEEE": lambda v: v.strftime("%A"),
    "EEE": lambda v: v.strftime("%a"),
    "HH": lambda v: f"{v.hour:02d}",
    "H": lambda v: str(v.hour),
    "hh": lambda v: f"{_hour12(v):02d}",
    "h": lambda v: str(_hour12(v)),
    "mm": lambda v: f"{v.minute:02d}",
    "ss": lambda v: f"{v.second:02d}",
    "a": lambda v: "AM" if v.hour < 12 else "PM",
}


def _coerce(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


def _zone(name: Optional[str]) -> Optional[ZoneInfo]:
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using the stored offset", name)
        return None


def format_date(value: DateLike, fmt: str = "MM/dd/yyyy", tz: Optional[str] = None) -> str:
    """Format ``value`` with date-fns style tokens such as ``MMMM d, yyyy``.

    Aware datetimes are converted to ``tz`` when one is supplied. Empty values
    render as ``N/A`` and unparseable strings as ``Invalid Date``.
    """

    if value is None or value == "":
        return "N/A"
    try:
        moment = _coerce(value)
    except ValueError:
        return "Invalid Date"
    zone = _zone(tz)
    if zone is not None and moment.tzinfo is not None:
        moment = moment.astimezone(zone)
    return _TOKEN_RE.sub(lambda match: _TOKENS[match.group(0)](moment), fmt)


def format_currency(amount: Optional[float], currency: str = "PHP") -> str:
    if amount is None:
        return "N/A"
    symbol = "₱" if currency == "PHP" else f"{currency} "
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def format_number(value: Optional[float], decimals: int = 2) -> str:
    if value is None:
        return "N/A"
    return f"{value:,.{decimals}f}"


def format_relative_time(value: DateLike, now: Optional[datetime] = None) -> str:
    """Describe how long ago ``value`` happened, e.g. ``3 hours ago``."""

    if value is None or value == "":
        return "N/A"
    try:
        moment = _coerce(value)
    except ValueError:
        return "Invalid Date"
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)

    seconds = int((current - moment).total_seconds())
    if seconds < 60:
        return "just now"
    for unit, size in (("year", 31536000), ("month", 2592000), ("day", 86400), ("hour", 3600)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count > 1 else ''} ago"
    minutes = seconds // 60
    return f"{minutes} minute{'s' if minutes > 1 else ''} ago"


__all__ = ["format_currency", "format_date", "format_number", "format_relative_time"]
