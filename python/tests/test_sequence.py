"""
Tests for reference number formatting and per-period sequence allocation.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from database.models import DocumentSequence
from issuance.errors import ConfigurationError
from issuance.sequence import (
    SequenceAllocator,
    format_reference_number,
    local_now,
    roman_month,
    validate_number_format,
)

from conftest import ISSUE_TIME

JAKARTA = ZoneInfo("Asia/Jakarta")
TEMPLATE = "SKH/%d/%s/TUK.7.2.1/%d"


class TestFormatting:
    """Tests for the printf-style number template."""

    def test_template_example(self):
        """First document of October 2025."""
        assert format_reference_number(TEMPLATE, 1, 10, 2025) == "SKH/1/X/TUK.7.2.1/2025"

    def test_roman_months(self):
        assert roman_month(1) == "I"
        assert roman_month(4) == "IV"
        assert roman_month(9) == "IX"
        assert roman_month(12) == "XII"

    def test_roman_month_out_of_range(self):
        with pytest.raises(ValueError):
            roman_month(13)

    def test_width_flags_allowed(self):
        assert format_reference_number("No.%03d/%s/%d", 7, 2, 2024) == "No.007/II/2024"

    def test_literal_percent_allowed(self):
        validate_number_format("100%%/%d/%s/%d")

    @pytest.mark.parametrize("template", [
        "",
        "SKH/%d/%s",
        "SKH/%d/%d/%s",
        "SKH/%s/%s/%d",
        "SKH/%d/%s/%d/%d",
        "SKH/%d/%s/%",
        "no conversions at all",
    ])
    def test_invalid_templates_rejected(self, template):
        with pytest.raises(ConfigurationError):
            validate_number_format(template)

    def test_local_now_uses_office_timezone(self):
        # 20:00 UTC on 31 December is already the new year in Jakarta
        instant = datetime(2024, 12, 31, 20, 0, tzinfo=timezone.utc)
        assert local_now(JAKARTA, instant).year == 2025


class TestAllocator:
    """Tests for the counter-row allocator."""

    def test_first_allocation_starts_at_one(self, db_provider):
        with db_provider.session_scope() as session:
            number = SequenceAllocator(session).allocate(TEMPLATE, JAKARTA, 0, ISSUE_TIME)
        assert number.sequence == 1
        assert number.period_year == 2025
        assert number.reference_number == "SKH/1/X/TUK.7.2.1/2025"

    def test_consecutive_allocations_are_gapless(self, db_provider):
        values = []
        for _ in range(5):
            with db_provider.session_scope() as session:
                values.append(SequenceAllocator(session).next_number(2025))
        assert values == [1, 2, 3, 4, 5]

    def test_periods_are_independent(self, db_provider):
        with db_provider.session_scope() as session:
            allocator = SequenceAllocator(session)
            assert allocator.next_number(2025) == 1
            assert allocator.next_number(2025) == 2
            assert allocator.next_number(2026) == 1

    def test_fresh_registry_continues_configured_number(self, db_provider):
        with db_provider.session_scope() as session:
            assert SequenceAllocator(session).next_number(2025, configured_last_number=41) == 42

    def test_rollback_returns_the_number(self, db_provider):
        with db_provider.get_unit_of_work() as uow:
            assert SequenceAllocator(uow.session).next_number(2025) == 1
            uow.rollback()

        with db_provider.session_scope() as session:
            assert SequenceAllocator(session).next_number(2025) == 1

    def test_invalid_template_leaves_counter_untouched(self, db_provider):
        with db_provider.session_scope() as session:
            with pytest.raises(ConfigurationError):
                SequenceAllocator(session).allocate("SKH/%s", JAKARTA, 0, ISSUE_TIME)

        with db_provider.session_scope() as session:
            assert session.get(DocumentSequence, "2025") is None

    def test_seed_from_existing_documents(self, document_service, users, document_input, db_provider):
        """A lost counter row is re-seeded from the highest issued sequence."""
        for _ in range(3):
            document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)

        with db_provider.session_scope() as session:
            session.delete(session.get(DocumentSequence, "2025"))

        with db_provider.session_scope() as session:
            assert SequenceAllocator(session).next_number(2025, configured_last_number=100) == 4

    def test_new_period_after_documents_starts_at_one(self, document_service, users, document_input,
                                                      db_provider):
        """The configured last number only applies to an empty registry."""
        document_service.create(document_input(), users["operator_a"], now=ISSUE_TIME)

        with db_provider.session_scope() as session:
            assert SequenceAllocator(session).next_number(2026, configured_last_number=100) == 1
