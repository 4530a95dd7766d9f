"""
Reference number allocation.

Numbers are drawn from a per-period counter row in ``document_sequences``.
The counter is locked (``SELECT ... FOR UPDATE`` where the backend supports
it) and incremented inside the caller's transaction: the value becomes
visible only on commit and a rollback returns it.

The numbering period is the calendar year in the office timezone. The
reference number is rendered from a printf-style template taking exactly
three values, in order: the sequence (``%d``), the roman month (``%s``)
and the four-digit year (``%d``). Example::

    >>> format_reference_number("SKH/%d/%s/TUK.7.2.1/%d", 1, 10, 2025)
    'SKH/1/X/TUK.7.2.1/2025'
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from database.repositories import LostDocumentRepository, SequenceRepository
from issuance.errors import ConfigurationError

logger = logging.getLogger(__name__)

ROMAN_MONTHS = ("I", "II", "III", "IV", "V", "VI", "VII", "VIII", "IX", "X", "XI", "XII")

EXPECTED_CONVERSIONS = ("d", "s", "d")

# % [flags] [width] [.precision] conversion; a missing conversion is captured as ''
_CONVERSION_RE = re.compile(r"%([-#0 +]*\d*(?:\.\d+)?)([a-zA-Z%]?)")


def validate_number_format(template: str) -> None:
    """
    Check that a template takes exactly (int, month token, year).

    Raises:
        ConfigurationError: Wrong arity, wrong order, or malformed conversion
    """
    if not isinstance(template, str) or not template.strip():
        raise ConfigurationError("Number format must be a non-empty string")

    conversions = []
    for match in _CONVERSION_RE.finditer(template):
        spec, conversion = match.group(1), match.group(2)
        if conversion == "%" and not spec:
            continue
        if not conversion or conversion == "%":
            raise ConfigurationError(f"Malformed conversion in number format: {template!r}")
        conversions.append(conversion)

    if tuple(conversions) != EXPECTED_CONVERSIONS:
        raise ConfigurationError(
            f"Number format must contain exactly %d, %s, %d in that order "
            f"(sequence, month, year); found {['%' + c for c in conversions]} in {template!r}"
        )


def roman_month(month: int) -> str:
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range: {month}")
    return ROMAN_MONTHS[month - 1]


def format_reference_number(template: str, sequence: int, month: int, year: int) -> str:
    """
    Render a reference number.

    Raises:
        ConfigurationError: If the template is invalid
    """
    validate_number_format(template)
    try:
        return template % (sequence, roman_month(month), year)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Number format cannot be rendered: {template!r}") from e


def local_now(tz, now: Optional[datetime] = None) -> datetime:
    """Current instant (or ``now``) expressed in the office timezone."""
    instant = now or datetime.now(timezone.utc)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz)


@dataclass(frozen=True)
class AllocatedNumber:
    """A reserved sequence value and its rendered reference number."""
    period_year: int
    sequence: int
    reference_number: str


class SequenceAllocator:
    """
    Allocates sequence numbers inside the caller's unit of work.

    Does not commit. A concurrent first allocation in a new period
    surfaces as ``DuplicateEntityError`` from the repository; the caller
    retries the whole transaction.
    """

    def __init__(self, session: Session):
        self.session = session
        self._sequences = SequenceRepository(session)
        self._documents = LostDocumentRepository(session)

    def _seed(self, period_year: int, configured_last_number: int) -> int:
        """Starting value for a period's counter (the next number is seed + 1)."""
        highest = self._documents.max_sequence_for_period(period_year)
        if highest is not None:
            return highest
        if self._documents.count_all(include_deleted=True) == 0:
            # Fresh installation continuing a paper register
            return configured_last_number
        return 0

    def next_number(self, period_year: int, configured_last_number: int = 0) -> int:
        """
        Reserve the next sequence value for a period.

        Args:
            period_year: Numbering period
            configured_last_number: Last number used before this registry existed

        Returns:
            The reserved value (always > 0)
        """
        period = str(period_year)
        counter = self._sequences.get_for_update(period)
        if counter is None:
            seed = self._seed(period_year, configured_last_number)
            self._sequences.create(period, seed)
            logger.info("Started numbering period %s at %d", period, seed)

        value = self._sequences.increment(period)
        logger.debug("Allocated sequence %d for period %s", value, period)
        return value

    def allocate(self, template: str, tz, configured_last_number: int = 0,
                 now: Optional[datetime] = None) -> AllocatedNumber:
        """
        Reserve a number for the current period and render it.

        Raises:
            ConfigurationError: If the template is invalid
        """
        # Fail before touching the counter
        validate_number_format(template)
        local = local_now(tz, now)
        sequence = self.next_number(local.year, configured_last_number)
        reference_number = format_reference_number(template, sequence, local.month, local.year)
        return AllocatedNumber(
            period_year=local.year,
            sequence=sequence,
            reference_number=reference_number
        )
