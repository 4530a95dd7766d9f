"""
Find-or-create residents by identity.

A resident is identified by the exact pair (full_name, birth_date). There is
no national ID at intake, so two different people sharing both values are
merged into one record; the database unique constraint makes that rule
explicit instead of accidental.
"""

import logging

from sqlalchemy.orm import Session

from database.models import Resident
from database.repositories import ResidentRepository
from issuance.inputs import ResidentInput, coerce_birth_date
from issuance.errors import ValidationError

logger = logging.getLogger(__name__)


class ResidentResolver:
    """Resolves a submitted identity to a stored resident in the caller's session."""

    def __init__(self, session: Session):
        self.session = session
        self._residents = ResidentRepository(session)

    def resolve(self, resident: ResidentInput) -> Resident:
        """
        Return the existing resident for this identity or insert a new one.

        An existing record is returned unchanged; submitted descriptive
        fields (address, occupation, ...) do not overwrite it.

        Raises:
            ValidationError: Blank name or invalid birth date
            DuplicateEntityError: A concurrent writer inserted the same identity
        """
        if not resident.full_name or not resident.full_name.strip():
            raise ValidationError(
                "Resident full name is required",
                field="resident.full_name",
                code="REQUIRED"
            )
        birth_date = coerce_birth_date(resident.birth_date)

        existing = self._residents.find_by_identity(resident.full_name, birth_date)
        if existing is not None:
            logger.debug("Resolved existing resident %s", existing.id)
            return existing

        record = resident.to_record()
        record["birth_date"] = birth_date
        created = self._residents.create(record)
        logger.info("Registered new resident %s", created.id)
        return created
