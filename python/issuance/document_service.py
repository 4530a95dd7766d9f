"""
Document Issuance Orchestrator

Coordinates resident resolution, number allocation and document persistence
inside one unit of work, then writes the audit entry and returns the fully
loaded document.

Key Features:
- All-or-nothing issuance: the resident, the counter bump, the document and
  its items commit together or not at all
- Bounded retry (tenacity) of the whole transaction on uniqueness conflicts
- Owner-or-administrator access checks on read, update and delete
- Derived active/archived listing and the near-expiry notification query

Usage:
    service = DocumentService(db_provider, config_service, audit_service)
    document = service.create(DocumentInput(...), operator_id=user.id)
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from config_manager import get_config
from database.connection import DatabaseSessionProvider
from database.models import AuditAction, DocumentStatus, LostDocument, User, utc_now
from database.monitoring import documents_issued_total, issuance_conflicts_total, query_timer
from database.repositories import (
    DuplicateEntityError,
    LostDocumentRepository,
    UserRepository,
)
from issuance import archival
from issuance.access_policy import ensure_access
from issuance.audit_service import AuditService
from issuance.config_service import ConfigService
from issuance.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from issuance.inputs import DocumentInput, validate_document_input
from issuance.resident_resolver import ResidentResolver
from issuance.sequence import SequenceAllocator

logger = logging.getLogger(__name__)

T = TypeVar("T")

RESOURCE_TYPE = "lost_document"


class DocumentService:
    """
    Issues, edits, deletes and queries lost-document reports.

    Owns every session it uses; callers pass plain ids and input records.
    """

    def __init__(
        self,
        db_provider: DatabaseSessionProvider,
        config_service: ConfigService,
        audit_service: Optional[AuditService] = None,
        max_attempts: Optional[int] = None,
        retry_wait_seconds: Optional[float] = None
    ):
        """
        Args:
            db_provider: Database session provider
            config_service: Office configuration provider
            audit_service: Audit writer (defaults to one on the same provider)
            max_attempts: Attempts per write before a conflict surfaces
            retry_wait_seconds: Pause between attempts
        """
        app_config = get_config()
        self._db = db_provider
        self._config = config_service
        self._audit = audit_service or AuditService(db_provider)
        self._limits = app_config.input_validation
        self._max_attempts = max_attempts or app_config.issuance.max_conflict_retries
        self._retry_wait = (app_config.issuance.retry_wait_seconds
                            if retry_wait_seconds is None else retry_wait_seconds)
        self._expiring_window_days = app_config.issuance.expiring_window_days

    # ============================================
    # TRANSACTION HELPERS
    # ============================================

    def _with_retry(self, operation: Callable[[], T]) -> T:
        """Run a whole unit of work, retrying it on ConflictError."""
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_wait),
            retry=retry_if_exception_type(ConflictError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )
        return retrying(operation)

    def _run_write(self, operation_name: str, work: Callable) -> T:
        """
        Execute ``work(session)`` in a unit of work and commit it.

        Storage errors are translated: uniqueness violations become
        ConflictError, anything else PersistenceError.
        """
        with query_timer(operation_name):
            try:
                with self._db.get_unit_of_work() as uow:
                    result = work(uow.session)
                    uow.commit()
                    return result
            except (DuplicateEntityError, IntegrityError) as e:
                issuance_conflicts_total.inc()
                logger.warning("%s hit a uniqueness conflict: %s", operation_name, type(e).__name__)
                raise ConflictError("The record was changed concurrently, please retry") from e
            except SQLAlchemyError as e:
                logger.error("%s failed: %s", operation_name, e)
                raise PersistenceError("The document could not be saved") from e

    def _require_user(self, users: UserRepository, user_id: Optional[int], field: str,
                      active_only: bool = True) -> User:
        user = users.get_by_id(user_id, include_deleted=not active_only) if user_id is not None else None
        if user is None:
            raise ValidationError(
                f"{field} does not refer to {'an active' if active_only else 'a'} user",
                field=field,
                code="UNKNOWN_USER"
            )
        return user

    def _load(self, document_id: int) -> LostDocument:
        with self._db.session_scope() as session:
            document = LostDocumentRepository(session).get_by_id(document_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found")
            return document

    def _load_for_actor(self, session, document_id: int, actor_id: int, action: str) -> LostDocument:
        """Fetch a live document and enforce access: NotFound is checked first."""
        document = LostDocumentRepository(session).get_by_id(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        actor = UserRepository(session).get_by_id(actor_id)
        if actor is None:
            raise AccessDeniedError("Unknown or inactive user")
        ensure_access(document, actor, action)
        return document

    # ============================================
    # ISSUANCE
    # ============================================

    def create(self, data: DocumentInput, operator_id: int,
               now: Optional[datetime] = None) -> LostDocument:
        """
        Issue a new lost-document report.

        Args:
            data: Resident, items, location and officers
            operator_id: Logged-in user creating the document
            now: Issuance instant (defaults to the current time)

        Returns:
            The committed document with resident, personnel and items loaded

        Raises:
            ValidationError: Invalid input or unknown users
            ConfigurationError: Unusable numbering template or timezone
            ConflictError: Uniqueness conflict persisted across all retries
            PersistenceError: Any other storage failure
        """
        validate_document_input(data, self._limits)
        office = self._config.load_config()
        tz = office.tzinfo

        def work(session) -> Tuple[int, str]:
            users = UserRepository(session)
            self._require_user(users, operator_id, "operator_id")
            self._require_user(users, data.reporting_officer_id, "reporting_officer_id")
            if data.approving_official_id is not None:
                self._require_user(users, data.approving_official_id, "approving_official_id",
                                   active_only=False)

            issued_at = now or utc_now()
            # Counter first: on SQLite its UPDATE takes the write lock for the rest of the transaction
            number = SequenceAllocator(session).allocate(
                office.number_format, tz, office.last_number, issued_at
            )
            resident = ResidentResolver(session).resolve(data.resident)

            document = LostDocumentRepository(session).create(
                {
                    "reference_number": number.reference_number,
                    "period_year": number.period_year,
                    "sequence_number": number.sequence,
                    "report_date": issued_at,
                    "status": DocumentStatus.ISSUED,
                    "loss_location": data.loss_location,
                    "resident_id": resident.id,
                    "reporting_officer_id": data.reporting_officer_id,
                    "approving_official_id": data.approving_official_id,
                    "operator_id": operator_id,
                    "approved_at": issued_at if data.approving_official_id is not None else None,
                },
                [item.to_record() for item in data.items]
            )
            return document.id, document.reference_number

        document_id, reference_number = self._with_retry(
            lambda: self._run_write("document_create", work)
        )
        documents_issued_total.inc()
        logger.info("Issued document %s (%s)", document_id, reference_number)

        self._audit.record(
            AuditAction.DOCUMENT_CREATED,
            operator_id,
            f"Created document {reference_number}",
            resource_type=RESOURCE_TYPE,
            resource_id=document_id
        )
        return self._load(document_id)

    def update(self, document_id: int, data: DocumentInput, actor_id: int,
               now: Optional[datetime] = None) -> LostDocument:
        """
        Rewrite a document's resident, items, location and officers.

        The reference number, report date and operator never change. The
        resident is re-resolved only when full name or birth date changed;
        the item set is replaced in full.

        Raises:
            NotFoundError: Absent or soft-deleted document
            AccessDeniedError: Actor is neither operator nor administrator
            ValidationError: Invalid input or unknown users
        """
        validate_document_input(data, self._limits)

        def work(session) -> str:
            document = self._load_for_actor(session, document_id, actor_id, "update")
            users = UserRepository(session)
            self._require_user(users, data.reporting_officer_id, "reporting_officer_id")
            if data.approving_official_id is not None:
                self._require_user(users, data.approving_official_id, "approving_official_id",
                                   active_only=False)

            current = document.resident
            if (current.full_name, current.birth_date) != data.resident.identity:
                document.resident = ResidentResolver(session).resolve(data.resident)

            approved_at = document.approved_at
            if data.approving_official_id is None:
                approved_at = None
            elif data.approving_official_id != document.approving_official_id:
                approved_at = now or utc_now()

            repo = LostDocumentRepository(session)
            repo.update(document, {
                "loss_location": data.loss_location,
                "reporting_officer_id": data.reporting_officer_id,
                "approving_official_id": data.approving_official_id,
                "approved_at": approved_at,
                "last_updated_by_id": actor_id,
            })
            repo.replace_items(document, [item.to_record() for item in data.items])
            return document.reference_number

        reference_number = self._with_retry(lambda: self._run_write("document_update", work))
        logger.info("Updated document %s by user %s", document_id, actor_id)

        self._audit.record(
            AuditAction.DOCUMENT_UPDATED,
            actor_id,
            f"Updated document {reference_number}",
            resource_type=RESOURCE_TYPE,
            resource_id=document_id
        )
        return self._load(document_id)

    def delete(self, document_id: int, actor_id: int) -> None:
        """
        Soft-delete a document. Its number is never reissued.

        Raises:
            NotFoundError: Absent or already deleted
            AccessDeniedError: Actor is neither operator nor administrator
        """
        def work(session) -> str:
            document = self._load_for_actor(session, document_id, actor_id, "delete")
            LostDocumentRepository(session).soft_delete(document)
            return document.reference_number

        reference_number = self._run_write("document_delete", work)
        logger.info("Deleted document %s by user %s", document_id, actor_id)

        self._audit.record(
            AuditAction.DOCUMENT_DELETED,
            actor_id,
            f"Deleted document {reference_number}",
            resource_type=RESOURCE_TYPE,
            resource_id=document_id
        )

    # ============================================
    # QUERIES
    # ============================================

    def get(self, document_id: int, actor_id: int) -> LostDocument:
        """
        Raises:
            NotFoundError: Absent or soft-deleted
            AccessDeniedError: Actor may not see this document
        """
        with query_timer("document_get"):
            with self._db.session_scope() as session:
                return self._load_for_actor(session, document_id, actor_id, "view")

    def status_of(self, document: LostDocument, now: Optional[datetime] = None) -> archival.ArchiveStatus:
        office = self._config.load_config()
        return archival.classify(document, now or utc_now(), office.archive_duration_days)

    def list_documents(
        self,
        query: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        now: Optional[datetime] = None
    ) -> Tuple[List[LostDocument], int]:
        """
        List live documents of one archive class, newest report first.

        Args:
            query: Substring of reference number or resident name
            status: 'active' (default) or 'archived'
            limit: Page size
            offset: Page offset

        Returns:
            Tuple of (documents, total matching count)
        """
        wanted = archival.status_filter(status)
        office = self._config.load_config()
        cutoff = archival.archive_cutoff(now or utc_now(), office.archive_duration_days)

        with query_timer("document_list"):
            with self._db.session_scope() as session:
                repo = LostDocumentRepository(session)
                if wanted == archival.ArchiveStatus.ARCHIVED:
                    return repo.search(query or None, archived_before=cutoff, offset=offset, limit=limit)
                return repo.search(query or None, active_since=cutoff, offset=offset, limit=limit)

    def search_global(self, query: str, limit: Optional[int] = None) -> List[LostDocument]:
        """Search active and archived documents together, newest report first."""
        with query_timer("document_search"):
            with self._db.session_scope() as session:
                documents, _ = LostDocumentRepository(session).search(query or None, limit=limit)
                return documents

    def expiring_for_user(self, actor_id: int, window_days: Optional[int] = None,
                          now: Optional[datetime] = None) -> List[LostDocument]:
        """
        The actor's own active documents that become archived within the window.

        Returns:
            Documents ordered by report date, soonest to archive first
        """
        days = self._expiring_window_days if window_days is None else window_days
        office = self._config.load_config()
        start, end = archival.expiring_window(now or utc_now(), office.archive_duration_days, days)

        with query_timer("document_expiring"):
            with self._db.session_scope() as session:
                return LostDocumentRepository(session).find_reported_between(actor_id, start, end)


