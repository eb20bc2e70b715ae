"""Data shown on the dashboard landing page."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .config import Settings, SystemStatus
from .database import Database
from .models import AuditRecord, Rate

ACTIVE_WINDOW = timedelta(days=7)


@dataclass(frozen=True)
class QuickLink:
    title: str
    description: str
    route: str
    query: str = ""


QUICK_LINKS: List[QuickLink] = [
    QuickLink("Add Rate", "Create new Meralco rate", "rates_new"),
    QuickLink("Export Report", "Generate monthly report", "reports_page", "?action=export"),
    QuickLink("View Audit Log", "Check system activity", "audit_page"),
    QuickLink("User Analytics", "View usage patterns", "reports_page", "?tab=usage"),
]

_STATUS_LABELS = {
    "operational": "All Systems Operational",
    "maintenance": "Scheduled Maintenance",
}


@dataclass(frozen=True)
class UserStats:
    total: int
    active: int

    @property
    def active_pct(self) -> int:
        if not self.total:
            return 0
        return round(self.active / self.total * 100)


@dataclass(frozen=True)
class ActivityEntry:
    record: AuditRecord
    actor: str


@dataclass(frozen=True)
class DashboardSummary:
    users: UserStats
    current_rate: Optional[Rate]
    recent_activity: List[ActivityEntry]
    status: SystemStatus

    @property
    def status_label(self) -> str:
        return _STATUS_LABELS.get(self.status.status, "System Disruption")


def build_dashboard(
    database: Database,
    settings: Settings,
    now: Optional[datetime] = None,
) -> DashboardSummary:
    moment = now or datetime.now(timezone.utc)
    users = UserStats(
        total=database.count_users(),
        active=database.count_active_users(moment - ACTIVE_WINDOW),
    )
    recent = [
        ActivityEntry(record=record, actor=record.user_name or "User")
        for record in database.recent_audit(5)
    ]
    return DashboardSummary(
        users=users,
        current_rate=database.get_current_rate(),
        recent_activity=recent,
        status=settings.system_status,
    )


__all__ = ["ActivityEntry", "DashboardSummary", "QUICK_LINKS", "QuickLink", "UserStats", "build_dashboard"]
