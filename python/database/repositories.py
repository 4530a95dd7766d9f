"""
Repository Pattern for Lost Document Registry Database Operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns. Repositories
only flush; committing is left to the caller's unit of work.
"""

import logging
from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime, date, timezone

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError

from database.models import (
    User,
    Resident,
    LostDocument,
    LostItem,
    DocumentSequence,
    SystemConfig,
    AuditLog,
    AuditAction,
)

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"


def like_pattern(text: str) -> str:
    """Substring LIKE pattern with user-supplied wildcards taken literally."""
    escaped = (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


# ============================================
# USER REPOSITORY
# ============================================

class UserRepository:
    """Repository for office personnel."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, user_id: int, include_deleted: bool = False) -> Optional[User]:
        """
        Get user by ID.

        Args:
            user_id: ID of the user
            include_deleted: If True, include inactive (soft-deleted) users

        Returns:
            User or None
        """
        query = select(User).where(User.id == user_id)
        if not include_deleted:
            query = query.where(User.is_deleted == False)
        return self.session.execute(query).scalar_one_or_none()

    def get_by_registration_number(self, registration_number: str) -> Optional[User]:
        """Get user by personnel registration number."""
        query = select(User).where(User.registration_number == registration_number)
        return self.session.execute(query).scalar_one_or_none()

    def create(self, user_data: Dict[str, Any]) -> User:
        """
        Create a new user.

        Raises:
            DuplicateEntityError: If the registration number is taken
        """
        try:
            user = User(**user_data)
            self.session.add(user)
            self.session.flush()
            logger.debug(f"Created user: {user.id} ({user.registration_number})")
            return user
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"User already exists: {e.orig}")

    def count_active(self) -> int:
        query = select(func.count()).select_from(User).where(User.is_deleted == False)
        return self.session.execute(query).scalar_one()


# ============================================
# RESIDENT REPOSITORY
# ============================================

class ResidentRepository:
    """Repository for resident (applicant) records."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_identity(self, full_name: str, birth_date: date) -> Optional[Resident]:
        """
        Find a non-deleted resident by exact (full_name, birth_date).

        The name comparison is case-sensitive and untrimmed.
        """
        query = select(Resident).where(
            and_(
                Resident.full_name == full_name,
                Resident.birth_date == birth_date,
                Resident.is_deleted == False
            )
        )
        return self.session.execute(query).scalar_one_or_none()

    def create(self, resident_data: Dict[str, Any]) -> Resident:
        """
        Create a new resident.

        Raises:
            DuplicateEntityError: If a concurrent writer inserted the same identity
        """
        try:
            resident = Resident(**resident_data)
            self.session.add(resident)
            self.session.flush()
            logger.debug(f"Created resident: {resident.id}")
            return resident
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Resident already exists: {e.orig}")


# ============================================
# LOST DOCUMENT REPOSITORY
# ============================================

class LostDocumentRepository:
    """Repository for issued lost-document reports."""

    def __init__(self, session: Session):
        self.session = session

    def _joined(self):
        return select(LostDocument).options(
            joinedload(LostDocument.resident),
            joinedload(LostDocument.reporting_officer),
            joinedload(LostDocument.approving_official),
            joinedload(LostDocument.operator),
            joinedload(LostDocument.last_updated_by),
        )

    def create(self, document_data: Dict[str, Any], items: List[Dict[str, Any]]) -> LostDocument:
        """
        Create a document together with its items.

        Args:
            document_data: Document column values
            items: Item dictionaries (item_name, description)

        Returns:
            Created LostDocument

        Raises:
            DuplicateEntityError: If the reference number or period sequence is taken
        """
        try:
            document = LostDocument(**document_data)
            document.items = [LostItem(**item) for item in items]
            self.session.add(document)
            self.session.flush()
            logger.debug(f"Created document: {document.id} ({document.reference_number})")
            return document
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Document number already issued: {e.orig}")

    def get_by_id(self, document_id: int, include_deleted: bool = False) -> Optional[LostDocument]:
        """
        Get a document with resident, personnel and items loaded.

        Args:
            document_id: ID of the document
            include_deleted: If True, include soft-deleted documents

        Returns:
            LostDocument or None
        """
        query = self._joined().where(LostDocument.id == document_id)
        if not include_deleted:
            query = query.where(LostDocument.is_deleted == False)
        return self.session.execute(query).unique().scalar_one_or_none()

    def replace_items(self, document: LostDocument, items: List[Dict[str, Any]]) -> None:
        """Replace the full item set; orphans are deleted by the cascade."""
        document.items = [LostItem(**item) for item in items]
        self.session.flush()

    def update(self, document: LostDocument, updates: Dict[str, Any]) -> LostDocument:
        for key, value in updates.items():
            if hasattr(document, key):
                setattr(document, key, value)
        self.session.flush()
        return document

    def soft_delete(self, document: LostDocument) -> None:
        document.is_deleted = True
        document.deleted_at = datetime.now(timezone.utc)
        self.session.flush()

    def search(
        self,
        query_text: Optional[str] = None,
        archived_before: Optional[datetime] = None,
        active_since: Optional[datetime] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> Tuple[List[LostDocument], int]:
        """
        Search documents by reference number or resident name.

        Args:
            query_text: Substring matched against reference number and resident name
            archived_before: Only documents reported strictly before this instant
            active_since: Only documents reported at or after this instant
            offset: Pagination offset
            limit: Maximum results (None for all)

        Returns:
            Tuple of (documents newest first, total count)
        """
        conditions = [LostDocument.is_deleted == False]
        if query_text:
            pattern = like_pattern(query_text)
            conditions.append(
                or_(
                    LostDocument.reference_number.ilike(pattern, escape=LIKE_ESCAPE),
                    Resident.full_name.ilike(pattern, escape=LIKE_ESCAPE)
                )
            )
        if archived_before is not None:
            conditions.append(LostDocument.report_date < archived_before)
        if active_since is not None:
            conditions.append(LostDocument.report_date >= active_since)

        count_query = select(func.count()).select_from(LostDocument).join(
            Resident, LostDocument.resident_id == Resident.id
        ).where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        query = self._joined().join(
            Resident, LostDocument.resident_id == Resident.id
        ).where(and_(*conditions)).order_by(
            LostDocument.report_date.desc(), LostDocument.id.desc()
        ).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        documents = list(self.session.execute(query).unique().scalars().all())
        return documents, total

    def find_reported_between(
        self,
        operator_id: int,
        start: datetime,
        end: datetime
    ) -> List[LostDocument]:
        """Operator's own documents with start <= report_date <= end, oldest first."""
        query = self._joined().where(
            and_(
                LostDocument.operator_id == operator_id,
                LostDocument.is_deleted == False,
                LostDocument.report_date >= start,
                LostDocument.report_date <= end
            )
        ).order_by(LostDocument.report_date.asc())
        return list(self.session.execute(query).unique().scalars().all())

    def max_sequence_for_period(self, period_year: int) -> Optional[int]:
        """Highest sequence used in a period, soft-deleted documents included."""
        query = select(func.max(LostDocument.sequence_number)).where(
            LostDocument.period_year == period_year
        )
        return self.session.execute(query).scalar_one()

    def count_all(self, include_deleted: bool = True) -> int:
        query = select(func.count()).select_from(LostDocument)
        if not include_deleted:
            query = query.where(LostDocument.is_deleted == False)
        return self.session.execute(query).scalar_one()

    def count_reported_since(self, since: datetime) -> int:
        query = select(func.count()).select_from(LostDocument).where(
            and_(
                LostDocument.is_deleted == False,
                LostDocument.report_date >= since
            )
        )
        return self.session.execute(query).scalar_one()

    def report_dates_since(self, since: datetime) -> List[datetime]:
        """Report dates of live documents since an instant (bucketed by the caller)."""
        query = select(LostDocument.report_date).where(
            and_(
                LostDocument.is_deleted == False,
                LostDocument.report_date >= since
            )
        )
        return list(self.session.execute(query).scalars().all())

    def item_name_counts(self) -> List[Tuple[str, int]]:
        """Item counts grouped by name over live documents, most frequent first."""
        query = select(
            LostItem.item_name,
            func.count(LostItem.id)
        ).join(LostDocument).where(
            LostDocument.is_deleted == False
        ).group_by(LostItem.item_name).order_by(
            func.count(LostItem.id).desc(), LostItem.item_name
        )
        return [(row[0], row[1]) for row in self.session.execute(query)]


# ============================================
# SEQUENCE REPOSITORY
# ============================================

class SequenceRepository:
    """Repository for per-period numbering counters."""

    def __init__(self, session: Session):
        self.session = session

    def get_for_update(self, period: str) -> Optional[DocumentSequence]:
        """Load the counter row, locking it until the transaction ends."""
        query = select(DocumentSequence).where(
            DocumentSequence.period == period
        ).with_for_update().execution_options(populate_existing=True)
        return self.session.execute(query).scalar_one_or_none()

    def create(self, period: str, current_value: int) -> DocumentSequence:
        """
        Create the counter row for a period.

        Raises:
            DuplicateEntityError: If a concurrent writer created it first
        """
        try:
            counter = DocumentSequence(period=period, current_value=current_value)
            self.session.add(counter)
            self.session.flush()
            return counter
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Sequence for period {period} already exists: {e.orig}")

    def increment(self, period: str) -> int:
        """
        Atomically add one to the counter and return the new value.

        The increment is a single UPDATE so writers that skipped the row
        lock (SQLite ignores FOR UPDATE) still cannot lose an update.
        """
        self.session.execute(
            update(DocumentSequence)
            .where(DocumentSequence.period == period)
            .values(
                current_value=DocumentSequence.current_value + 1,
                updated_at=datetime.now(timezone.utc)
            )
        )
        query = select(DocumentSequence.current_value).where(DocumentSequence.period == period)
        return self.session.execute(query).scalar_one()


# ============================================
# CONFIG REPOSITORY
# ============================================

class ConfigRepository:
    """Repository for key/value office configuration."""

    def __init__(self, session: Session):
        self.session = session

    def get_all(self) -> Dict[str, str]:
        result = self.session.execute(select(SystemConfig))
        return {row.key: row.value for row in result.scalars().all()}

    def upsert_many(self, values: Dict[str, str]) -> None:
        """Insert or overwrite each key."""
        for key, value in values.items():
            existing = self.session.get(SystemConfig, key)
            if existing is None:
                self.session.add(SystemConfig(key=key, value=value))
            else:
                existing.value = value
        self.session.flush()


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for audit log operations."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        action: AuditAction,
        user_id: Optional[int] = None,
        detail: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: Type of action
            user_id: Acting user
            detail: Human-readable description
            resource_type: Type of resource affected
            resource_id: ID of resource
            extra: Additional structured details

        Returns:
            Created AuditLog
        """
        log = AuditLog(
            action=action,
            user_id=user_id,
            detail=detail,
            resource_type=resource_type,
            resource_id=resource_id,
            extra=extra
        )

        self.session.add(log)
        self.session.flush()
        return log

    def search(
        self,
        action: Optional[AuditAction] = None,
        resource_type: Optional[str] = None,
        user_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 100
    ) -> Tuple[List[AuditLog], int]:
        """
        Search audit logs with filters.

        Args:
            action: Filter by action type
            resource_type: Filter by resource type
            user_id: Filter by acting user
            start_date: Start of date range
            end_date: End of date range
            offset: Pagination offset
            limit: Maximum results

        Returns:
            Tuple of (logs list newest first, total count)
        """
        conditions = []

        if action:
            conditions.append(AuditLog.action == action)
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if user_id:
            conditions.append(AuditLog.user_id == user_id)
        if start_date:
            conditions.append(AuditLog.timestamp >= start_date)
        if end_date:
            conditions.append(AuditLog.timestamp <= end_date)

        # Count query
        count_query = select(func.count()).select_from(AuditLog)
        if conditions:
            count_query = count_query.where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        # Data query
        query = select(AuditLog).options(joinedload(AuditLog.user))
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(offset).limit(limit)

        result = self.session.execute(query)
        logs = list(result.scalars().all())

        return logs, total
