"""
Dashboard aggregates: headline counts, monthly issuance chart and lost-item
composition. Calendar boundaries (today, this month, this year) are taken in
the office timezone.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from database.connection import DatabaseSessionProvider
from database.models import utc_now
from database.monitoring import timed_query
from database.repositories import LostDocumentRepository, UserRepository
from issuance.config_service import ConfigService
from issuance.sequence import local_now

logger = logging.getLogger(__name__)

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
                "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

OTHER_LABEL = "Other"


def _start_of(local: datetime, unit: str) -> datetime:
    if unit == "day":
        start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    elif unit == "month":
        start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    else:
        start = local.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return start.astimezone(timezone.utc)


class DashboardService:
    """Read-only aggregates for the dashboard cards and charts."""

    def __init__(self, db_provider: DatabaseSessionProvider, config_service: ConfigService):
        self._db = db_provider
        self._config = config_service

    @timed_query("dashboard_stats")
    def stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Documents reported today, this month and this year, plus active users."""
        local = local_now(self._config.load_config().tzinfo, now or utc_now())
        with self._db.session_scope() as session:
            documents = LostDocumentRepository(session)
            return {
                "documents_today": documents.count_reported_since(_start_of(local, "day")),
                "documents_this_month": documents.count_reported_since(_start_of(local, "month")),
                "documents_this_year": documents.count_reported_since(_start_of(local, "year")),
                "total_users": UserRepository(session).count_active(),
            }

    @timed_query("dashboard_monthly_issuance")
    def monthly_issuance(self, now: Optional[datetime] = None) -> Dict[str, List[Any]]:
        """Documents issued per month of the current year (all twelve months)."""
        tz = self._config.load_config().tzinfo
        local = local_now(tz, now or utc_now())
        with self._db.session_scope() as session:
            report_dates = LostDocumentRepository(session).report_dates_since(_start_of(local, "year"))

        counts = [0] * 12
        for report_date in report_dates:
            reported = report_date.astimezone(tz)
            if reported.year == local.year:
                counts[reported.month - 1] += 1
        return {"labels": list(MONTH_LABELS), "data": counts}

    @timed_query("dashboard_item_composition")
    def item_composition(self, top: int = 5) -> Dict[str, List[Any]]:
        """
        Most frequently lost items; the remainder is folded into one slice.

        Args:
            top: Number of named slices before folding
        """
        with self._db.session_scope() as session:
            counts = LostDocumentRepository(session).item_name_counts()

        labels = [name for name, _ in counts[:top]]
        data = [count for _, count in counts[:top]]
        remainder = sum(count for _, count in counts[top:])
        if remainder:
            labels.append(OTHER_LABEL)
            data.append(remainder)
        return {"labels": labels, "data": data}
