"""Report datasets and report exports."""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from .config import PerformanceMetrics, Settings
from .constants import CSV_MEDIA_TYPE, PDF_MEDIA_TYPE, USER_TYPE_ADMIN, XLSX_MEDIA_TYPE
from .database import Database
from .errors import ExportError
from .exports import ZIP_MEDIA_TYPE, ExportFile, Table, write_csv, write_pdf, write_xlsx, write_zip
from .formatters import format_date
from .rates import range_start

logger = logging.getLogger("enervisio.reports")


@dataclass(frozen=True)
class ReportTab:
    key: str
    label: str
    title: str
    file_key: str
    sheet: str
    csv_key: str


REPORT_TABS: List[ReportTab] = [
    ReportTab("rates", "Rate Trends", "Electricity Rate Trends Report", "rate_report", "Rate Trends", "rates"),
    ReportTab("users", "User Activity", "User Activity Report", "user_activity_report", "User Activity", "userActivity"),
    ReportTab("usage", "Usage Patterns", "Energy Usage Patterns Report", "usage_patterns_report", "Usage Patterns", "usagePatterns"),
    ReportTab("performance", "Performance", "System Performance Report", "performance_report", "Performance", "performance"),
]

_TABS_BY_KEY = {tab.key: tab for tab in REPORT_TABS}

FULL_REPORT_TITLE = "Enervisio Energy Management Report"


def get_tab(key: Optional[str]) -> ReportTab:
    return _TABS_BY_KEY.get(key or "", REPORT_TABS[0])


@dataclass(frozen=True)
class RateTrendPoint:
    effective_from: date
    rate: float
    archived: bool


@dataclass(frozen=True)
class ActivityMonth:
    month: str
    admin: int = 0
    regular: int = 0

    @property
    def total(self) -> int:
        return self.admin + self.regular


@dataclass(frozen=True)
class UsageMonth:
    month: str
    morning: int = 0
    afternoon: int = 0
    evening: int = 0
    night: int = 0

    @property
    def total(self) -> int:
        return self.morning + self.afternoon + self.evening + self.night


@dataclass(frozen=True)
class PerformanceRow:
    metric: str
    value: str
    good: bool

    @property
    def status(self) -> str:
        return "Good" if self.good else "Needs Attention"


@dataclass
class ReportData:
    time_range: str
    start: Optional[date]
    rates: List[RateTrendPoint]
    user_activity: List[ActivityMonth]
    usage_patterns: List[UsageMonth]
    performance: List[PerformanceRow]


def usage_bucket(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if hour >= 18:
        return "evening"
    return "night"


def performance_rows(metrics: PerformanceMetrics) -> List[PerformanceRow]:
    return [
        PerformanceRow("System Uptime", f"{metrics.uptime:g}%", metrics.uptime >= 99.5),
        PerformanceRow(
            "Average Response Time",
            f"{metrics.response_time_ms:g}ms",
            metrics.response_time_ms <= 300,
        ),
        PerformanceRow("Error Rate", f"{metrics.error_rate:g}%", metrics.error_rate <= 1),
        PerformanceRow(
            "User Satisfaction",
            f"{metrics.user_satisfaction:g}/5",
            metrics.user_satisfaction >= 4,
        ),
    ]


class ReportService:
    """Aggregates rate and audit data into the report tabs."""

    def __init__(self, database: Database, settings: Optional[Settings] = None) -> None:
        self._database = database
        self._settings = settings or Settings()
        self._zone = ZoneInfo(self._settings.default_timezone)

    def build(self, time_range: str, now: Optional[datetime] = None) -> ReportData:
        moment = (now or datetime.now(timezone.utc)).astimezone(self._zone)
        start = range_start(time_range, moment.date())
        since = datetime.combine(start, time.min, tzinfo=self._zone) if start else None

        rates = [
            RateTrendPoint(rate.effective_from, rate.kwh_rate, rate.archived)
            for rate in self._database.list_all_rates(ascending=True, since=start)
        ]

        activity: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
        usage: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
        for record in self._database.audit_since(since):
            local = record.timestamp.astimezone(self._zone)
            month = format_date(local, "MMM yyyy")
            counts = activity.setdefault(month, {"admin": 0, "regular": 0})
            counts["admin" if record.user_type == USER_TYPE_ADMIN else "regular"] += 1
            buckets = usage.setdefault(month, {"morning": 0, "afternoon": 0, "evening": 0, "night": 0})
            buckets[usage_bucket(local.hour)] += 1

        logger.debug("Built %s report with %d rates", time_range, len(rates))
        return ReportData(
            time_range=time_range,
            start=start,
            rates=rates,
            user_activity=[ActivityMonth(month, **counts) for month, counts in activity.items()],
            usage_patterns=[UsageMonth(month, **counts) for month, counts in usage.items()],
            performance=performance_rows(self._settings.performance),
        )


def report_tables(data: ReportData) -> Dict[str, Table]:
    """Return one export table per report tab, keyed by tab key."""

    return {
        "rates": Table(
            title="Rate Trends",
            columns=["Date", "Rate (PHP)", "Status"],
            rows=[
                [format_date(point.effective_from), f"{point.rate:.2f}", "Archived" if point.archived else "Active"]
                for point in data.rates
            ],
            widths=[15, 12, 12],
        ),
        "users": Table(
            title="User Activity",
            columns=["Month", "Admin Actions", "Regular User Actions", "Total Actions"],
            rows=[[row.month, row.admin, row.regular, row.total] for row in data.user_activity],
            widths=[12, 15, 20, 15],
        ),
        "usage": Table(
            title="Usage Patterns",
            columns=[
                "Month",
                "Morning (6AM-12PM)",
                "Afternoon (12PM-6PM)",
                "Evening (6PM-12AM)",
                "Night (12AM-6AM)",
                "Total",
            ],
            rows=[
                [row.month, row.morning, row.afternoon, row.evening, row.night, row.total]
                for row in data.usage_patterns
            ],
            widths=[12, 20, 20, 20, 18, 10],
        ),
        "performance": Table(
            title="Performance",
            columns=["Metric", "Value", "Status"],
            rows=[[row.metric, row.value, row.status] for row in data.performance],
            widths=[25, 12, 18],
        ),
    }


def report_filename(tab_key: Optional[str], include_all: bool, today: date) -> str:
    file_key = "full_report" if include_all else get_tab(tab_key).file_key
    return f"enervisio_{file_key}_{today:%Y-%m-%d}"


def build_report_export(
    data: ReportData,
    *,
    tab_key: str,
    fmt: str,
    include_all: bool,
    branding: str,
    now: datetime,
    timezone_name: Optional[str] = None,
) -> ExportFile:
    """Render the active report tab, or every tab, in the requested format."""

    tab = get_tab(tab_key)
    tables = report_tables(data)
    local_now = now.astimezone(ZoneInfo(timezone_name)) if timezone_name else now
    basename = report_filename(tab.key, include_all, local_now.date())
    selected: Sequence[ReportTab] = REPORT_TABS if include_all else [tab]

    if not include_all and not tables[tab.key].rows:
        raise ExportError("There is no data to export for the selected report.")

    if fmt == "xlsx":
        sheets = []
        for item in selected:
            table = tables[item.key]
            sheet_title = item.sheet if include_all else item.title
            sheets.append(Table(sheet_title, table.columns, table.rows, table.widths))
        return ExportFile(f"{basename}.xlsx", XLSX_MEDIA_TYPE, write_xlsx(sheets))

    if fmt == "csv":
        if not include_all:
            table = tables[tab.key]
            return ExportFile(f"{basename}.csv", CSV_MEDIA_TYPE, write_csv(table.columns, table.rows))
        files = {
            f"{basename}_{item.csv_key}.csv": write_csv(tables[item.key].columns, tables[item.key].rows)
            for item in selected
        }
        return ExportFile(f"{basename}.zip", ZIP_MEDIA_TYPE, write_zip(files))

    if fmt == "pdf":
        sections = []
        for item in selected:
            table = tables[item.key]
            sections.append(Table(item.title, table.columns, table.rows, table.widths))
        content = write_pdf(
            FULL_REPORT_TITLE if include_all else tab.title,
            sections,
            subtitle=f"Generated: {format_date(local_now, 'MMMM d, yyyy')}",
            branding=branding,
            section_titles=include_all,
        )
        return ExportFile(f"{basename}.pdf", PDF_MEDIA_TYPE, content)

    raise ExportError(f"Unsupported export format: {fmt}")


__all__ = [
    "ActivityMonth",
    "FULL_REPORT_TITLE",
    "PerformanceRow",
    "REPORT_TABS",
    "RateTrendPoint",
    "ReportData",
    "ReportService",
    "ReportTab",
    "UsageMonth",
    "build_report_export",
    "get_tab",
    "performance_rows",
    "report_filename",
    "report_tables",
    "usage_bucket",
]
