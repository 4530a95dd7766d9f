"""
Tests for the derived archival classification and near-expiry window.
"""

from datetime import datetime, timedelta, timezone

import pytest

from issuance import archival
from issuance.archival import ArchiveStatus
from issuance.errors import ValidationError

NOW = datetime(2025, 10, 15, 12, 0, tzinfo=timezone.utc)


def days_ago(days, **extra):
    return NOW - timedelta(days=days, **extra)


class TestArchiveBoundary:
    """Archived strictly after the retention period."""

    def test_29_days_active(self):
        assert archival.is_archived(days_ago(29), NOW, 30) is False

    def test_exactly_30_days_active(self):
        assert archival.is_archived(days_ago(30), NOW, 30) is False

    def test_one_second_past_30_days_archived(self):
        assert archival.is_archived(days_ago(30, seconds=1), NOW, 30) is True

    def test_31_days_archived(self):
        assert archival.is_archived(days_ago(31), NOW, 30) is True

    def test_naive_datetimes_treated_as_utc(self):
        naive = days_ago(31).replace(tzinfo=None)
        assert archival.is_archived(naive, NOW, 30) is True

    def test_cutoff_agrees_with_classifier(self):
        """report_date >= cutoff selects exactly the active documents."""
        cutoff = archival.archive_cutoff(NOW, 30)
        for report_date in (days_ago(29), days_ago(30), days_ago(30, seconds=1), days_ago(31)):
            assert (report_date >= cutoff) == (not archival.is_archived(report_date, NOW, 30))

    def test_archives_at(self):
        assert archival.archives_at(days_ago(10), 30) == NOW + timedelta(days=20)


class TestExpiringWindow:
    """Active documents that archive within the lookahead window."""

    def test_inside_window(self):
        assert archival.is_expiring(days_ago(28), NOW, 30, window_days=3) is True

    def test_boundary_still_expiring(self):
        assert archival.is_expiring(days_ago(30), NOW, 30, window_days=3) is True

    def test_outside_window(self):
        assert archival.is_expiring(days_ago(20), NOW, 30, window_days=3) is False

    def test_archived_not_expiring(self):
        assert archival.is_expiring(days_ago(31), NOW, 30, window_days=3) is False


class TestStatusFilter:
    """Parsing of the listing status parameter."""

    def test_default_is_active(self):
        assert archival.status_filter(None) == ArchiveStatus.ACTIVE
        assert archival.status_filter("") == ArchiveStatus.ACTIVE

    def test_case_insensitive(self):
        assert archival.status_filter("ARCHIVED") == ArchiveStatus.ARCHIVED

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            archival.status_filter("deleted")
        assert exc_info.value.field == "status"
