"""
Derived archival classification.

Archival status is never stored. A document is archived once strictly more
than the retention period has elapsed since its report date; at exactly the
retention boundary it is still active.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple

from database.models import LostDocument
from issuance.errors import ValidationError


class ArchiveStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def is_archived(report_date: datetime, now: datetime, retention_days: int) -> bool:
    """True iff now - report_date > retention_days."""
    return _aware(now) - _aware(report_date) > timedelta(days=retention_days)


def classify(document: LostDocument, now: datetime, retention_days: int) -> ArchiveStatus:
    if is_archived(document.report_date, now, retention_days):
        return ArchiveStatus.ARCHIVED
    return ArchiveStatus.ACTIVE


def archive_cutoff(now: datetime, retention_days: int) -> datetime:
    """
    Boundary instant for queries.

    ``report_date < cutoff`` selects archived documents and
    ``report_date >= cutoff`` selects active ones, matching is_archived.
    """
    return _aware(now) - timedelta(days=retention_days)


def archives_at(report_date: datetime, retention_days: int) -> datetime:
    """First instant past the boundary is when the document reads as archived."""
    return _aware(report_date) + timedelta(days=retention_days)


def expiring_window(now: datetime, retention_days: int, window_days: int) -> Tuple[datetime, datetime]:
    """
    Report-date range of active documents that archive within ``window_days``.

    Returns:
        (start, end) inclusive bounds on report_date
    """
    start = archive_cutoff(now, retention_days)
    end = start + timedelta(days=window_days)
    return start, end


def is_expiring(report_date: datetime, now: datetime, retention_days: int,
                window_days: int = 3) -> bool:
    """Active, and the archive threshold falls within the lookahead window."""
    start, end = expiring_window(now, retention_days, window_days)
    return start <= _aware(report_date) <= end


def status_filter(status: Optional[str]) -> ArchiveStatus:
    """Parse a listing status parameter; absent means active."""
    if status is None or status == "":
        return ArchiveStatus.ACTIVE
    try:
        return ArchiveStatus(status.lower())
    except ValueError:
        raise ValidationError(
            f"Unknown status filter: {status!r}",
            field="status",
            code="INVALID_STATUS",
            suggestion="Use 'active' or 'archived'"
        )
