"""Rate versioning workflow, history statistics and bill impact analysis."""
from __future__ import annotations

import calendar
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .config import BracketIncrements, Settings
from .constants import RATE_ENTITY, TIME_RANGE_MONTHS, ActionType
from .database import Database
from .errors import RateNotFoundError
from .formatters import format_date
from .models import Rate, User
from .validation import RateForm

logger = logging.getLogger("enervisio.rates")

MONTHS_PER_YEAR = 12
SIGNIFICANT_CHANGE_PCT = 10.0


def compute_brackets(
    base: float, increments: Optional[BracketIncrements] = None
) -> Tuple[float, float]:
    """Return the 400-799 kWh and 800+ kWh bracket rates for ``base``."""

    increments = increments or BracketIncrements()
    rate2 = round(base + increments.second, 4)
    rate3 = round(rate2 + increments.third, 4)
    return rate2, rate3


def months_ago(moment: date, months: int) -> date:
    """Step back ``months`` calendar months, clamping to the month's last day."""

    index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def range_start(time_range: str, today: date) -> Optional[date]:
    """Translate a time range tag like ``6months`` into its first day."""

    months = TIME_RANGE_MONTHS.get(time_range)
    if months is None:
        return None
    return months_ago(today, months)


class RateService:
    """Adds and edits rate records, writing the matching audit entries."""

    def __init__(self, database: Database, settings: Optional[Settings] = None) -> None:
        self._database = database
        self._settings = settings or Settings()

    def add_rate(self, user: User, form: RateForm) -> Rate:
        rate2, rate3 = compute_brackets(form.kwh_rate, self._settings.brackets)
        created, archived = self._database.add_rate(
            kwh_rate=form.kwh_rate,
            kwh_rate2=rate2,
            kwh_rate3=rate3,
            effective_from=form.effective_from,
            updated_by=user.id,
            notes=form.notes,
        )
        for previous in archived:
            self._database.log_action(
                ActionType.ARCHIVE,
                user.id,
                {
                    "entity": RATE_ENTITY,
                    "id": previous.id,
                    "kwh_rate": previous.kwh_rate,
                    "reason": "Replaced by new rate",
                },
            )
        self._database.log_action(
            ActionType.CREATE,
            user.id,
            {"entity": RATE_ENTITY, "id": created.id, "kwh_rate": created.kwh_rate},
        )
        logger.info(
            "Rate %s (%.4f) added by %s; archived %d previous rate(s)",
            created.id,
            created.kwh_rate,
            user.email,
            len(archived),
        )
        return created

    def edit_rate(self, user: User, rate_id: int, form: RateForm) -> Rate:
        existing = self._database.get_rate(rate_id)
        if existing is None:
            raise RateNotFoundError(f"Rate {rate_id} does not exist")
        rate2, rate3 = compute_brackets(form.kwh_rate, self._settings.brackets)
        updated = self._database.update_rate(
            rate_id,
            kwh_rate=form.kwh_rate,
            kwh_rate2=rate2,
            kwh_rate3=rate3,
            effective_from=form.effective_from,
            updated_by=user.id,
            notes=form.notes,
        )
        self._database.log_action(
            ActionType.UPDATE,
            user.id,
            {
                "entity": RATE_ENTITY,
                "id": rate_id,
                "old_kwh_rate": existing.kwh_rate,
                "new_kwh_rate": updated.kwh_rate,
            },
        )
        logger.info("Rate %s updated by %s", rate_id, user.email)
        return updated

    def import_rates(
        self,
        user: User,
        rows: Sequence[Mapping[str, object]],
        *,
        filename: Optional[str] = None,
    ) -> List[Rate]:
        """Insert parsed workbook rows, deriving brackets for each one."""

        records = []
        for row in rows:
            rate2, rate3 = compute_brackets(float(row["kwh_rate"]), self._settings.brackets)  # type: ignore[arg-type]
            records.append({**row, "kwh_rate2": rate2, "kwh_rate3": rate3})
        imported, archived = self._database.import_rates(records, updated_by=user.id)

        try:
            for previous in archived:
                self._database.log_action(
                    ActionType.ARCHIVE,
                    user.id,
                    {
                        "entity": RATE_ENTITY,
                        "id": previous.id,
                        "kwh_rate": previous.kwh_rate,
                        "reason": "Replaced by imported rate",
                    },
                )
            self._database.log_action(
                ActionType.IMPORT,
                user.id,
                {"entity": RATE_ENTITY, "count": len(imported), "file_name": filename},
            )
        except sqlite3.Error:
            logger.exception("Failed to record audit entry for rate import")
        logger.info("Imported %d rate(s) for %s", len(imported), user.email)
        return imported


def search_rates(rates: Iterable[Rate], term: Optional[str]) -> List[Rate]:
    """Filter an already-fetched page of rates by a free-text term."""

    items = list(rates)
    needle = (term or "").strip().lower()
    if not needle:
        return items

    def _matches(rate: Rate) -> bool:
        haystack = (
            f"{rate.kwh_rate}",
            f"{rate.kwh_rate:.4f}",
            format_date(rate.effective_from),
            rate.effective_from.isoformat(),
            rate.updated_by_name or "",
            rate.notes or "",
        )
        return any(needle in value.lower() for value in haystack)

    return [rate for rate in items if _matches(rate)]


@dataclass(frozen=True)
class HistoryPoint:
    effective_from: date
    rate: float
    rate2: float
    rate3: float
    archived: bool

    @property
    def label(self) -> str:
        return format_date(self.effective_from, "MMM yyyy")


@dataclass(frozen=True)
class HistoryStats:
    minimum: float
    maximum: float
    average: float
    change_pct: float


def rate_history(rates: Sequence[Rate], time_range: str, today: date) -> List[HistoryPoint]:
    """Return rates within ``time_range`` ordered oldest first."""

    start = range_start(time_range, today)
    ordered = sorted(rates, key=lambda rate: (rate.effective_from, rate.id))
    return [
        HistoryPoint(
            effective_from=rate.effective_from,
            rate=rate.kwh_rate,
            rate2=rate.kwh_rate2,
            rate3=rate.kwh_rate3,
            archived=rate.archived,
        )
        for rate in ordered
        if start is None or rate.effective_from >= start
    ]


def history_stats(points: Sequence[HistoryPoint]) -> HistoryStats:
    if not points:
        return HistoryStats(minimum=0.0, maximum=0.0, average=0.0, change_pct=0.0)
    values = [point.rate for point in points]
    first, last = values[0], values[-1]
    change = ((last - first) / first) * 100 if first else 0.0
    return HistoryStats(
        minimum=min(values),
        maximum=max(values),
        average=sum(values) / len(values),
        change_pct=round(change, 2),
    )


@dataclass(frozen=True)
class ImpactRow:
    customer_class: str
    monthly_kwh: float
    current_bill: float
    new_bill: float

    @property
    def difference(self) -> float:
        return self.new_bill - self.current_bill

    @property
    def annual_difference(self) -> float:
        return self.difference * MONTHS_PER_YEAR

    @property
    def change_pct(self) -> float:
        if not self.current_bill:
            return 0.0
        return (self.difference / self.current_bill) * 100


@dataclass(frozen=True)
class ImpactSummary:
    current_rate: float
    simulated_rate: float
    rows: List[ImpactRow]

    @property
    def total_annual_impact(self) -> float:
        return sum(row.annual_difference for row in self.rows)

    @property
    def average_change_pct(self) -> float:
        if not self.rows:
            return 0.0
        return sum(row.change_pct for row in self.rows) / len(self.rows)

    @property
    def most_affected(self) -> Optional[str]:
        if not self.rows:
            return None
        return max(self.rows, key=lambda row: abs(row.annual_difference)).customer_class

    @property
    def residential_significant(self) -> bool:
        for row in self.rows:
            if row.customer_class == "residential":
                return abs(row.change_pct) > SIGNIFICANT_CHANGE_PCT
        return False


def impact_analysis(
    current_rate: float,
    simulated_rate: float,
    profile: Mapping[str, float],
) -> ImpactSummary:
    """Compare monthly bills per customer class under a simulated base rate."""

    if current_rate <= 0:
        raise ValueError("Current rate must be greater than zero")
    if simulated_rate <= 0:
        raise ValueError("Simulated rate must be greater than zero")
    rows = [
        ImpactRow(
            customer_class=name,
            monthly_kwh=float(kwh),
            current_bill=float(kwh) * current_rate,
            new_bill=float(kwh) * simulated_rate,
        )
        for name, kwh in profile.items()
    ]
    return ImpactSummary(current_rate=current_rate, simulated_rate=simulated_rate, rows=rows)


def today_in(timezone_name: str, now: Optional[datetime] = None) -> date:
    zone = ZoneInfo(timezone_name)
    return (now or datetime.now(zone)).astimezone(zone).date()


__all__ = [
    "HistoryPoint",
    "HistoryStats",
    "ImpactRow",
    "ImpactSummary",
    "RateService",
    "compute_brackets",
    "history_stats",
    "impact_analysis",
    "months_ago",
    "range_start",
    "rate_history",
    "search_rates",
    "today_in",
]
