"""
Tests for dashboard aggregates.
"""

from datetime import datetime, timezone

import pytest

from issuance.dashboard import DashboardService, OTHER_LABEL

from conftest import ISSUE_TIME


@pytest.fixture
def dashboard(db_provider, config_service):
    return DashboardService(db_provider, config_service)


class TestStats:
    """Calendar boundaries in the office timezone."""

    def test_counts(self, dashboard, document_service, document_input, users):
        document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        document_service.create(document_input(), users["operator_a"],
                                now=datetime(2025, 10, 1, 3, 0, tzinfo=timezone.utc))
        document_service.create(document_input(), users["operator_a"],
                                now=datetime(2025, 2, 1, 3, 0, tzinfo=timezone.utc))

        stats = dashboard.stats(now=ISSUE_TIME)
        assert stats["documents_today"] == 1
        assert stats["documents_this_month"] == 2
        assert stats["documents_this_year"] == 3
        assert stats["total_users"] == 4

    def test_local_midnight_counts_as_today(self, dashboard, document_service, document_input, users):
        # 17:30 UTC on 14 October is 00:30 on 15 October in Jakarta
        document_service.create(document_input(), users["operator_a"],
                                now=datetime(2025, 10, 14, 17, 30, tzinfo=timezone.utc))
        assert dashboard.stats(now=ISSUE_TIME)["documents_today"] == 1

    def test_deleted_not_counted(self, dashboard, document_service, document_input, users):
        document = document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)
        document_service.delete(document.id, users["operator_a"])
        assert dashboard.stats(now=ISSUE_TIME)["documents_today"] == 0


class TestCharts:
    """Monthly series and item composition."""

    def test_monthly_buckets_use_office_timezone(self, dashboard, document_service, document_input,
                                                 users):
        # Last evening of September in UTC is already October in Jakarta
        document_service.create(document_input(), users["operator_a"],
                                now=datetime(2025, 9, 30, 20, 0, tzinfo=timezone.utc))
        document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)

        chart = dashboard.monthly_issuance(now=ISSUE_TIME)
        assert chart["labels"][9] == "Oct"
        assert chart["data"][9] == 2
        assert chart["data"][8] == 0

    def test_item_composition_folds_remainder(self, dashboard, document_service, document_input,
                                              users):
        for items in (("KTP", "SIM"), ("KTP", "ATM"), ("KTP",), ("SIM",), ("BPKB",)):
            document_service.create(document_input(items=items), users["operator_a"], now=ISSUE_TIME)

        chart = dashboard.item_composition(top=2)
        assert chart["labels"] == ["KTP", "SIM", OTHER_LABEL]
        assert chart["data"] == [3, 2, 2]

    def test_item_composition_without_remainder(self, dashboard, document_service, document_input,
                                                users):
        document_service.create(document_input(items=("KTP",)), users["operator_a"], now=ISSUE_TIME)
        assert dashboard.item_composition(top=5) == {"labels": ["KTP"], "data": [1]}
