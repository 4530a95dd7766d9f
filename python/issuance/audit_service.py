"""
Best-effort audit trail writer.

Audit entries are written in their own short transaction after the business
transaction has committed. A failure here is logged and swallowed: losing an
audit row must never undo or fail an issuance that already happened.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from database.connection import DatabaseSessionProvider
from database.models import AuditAction, AuditLog
from database.repositories import AuditRepository

logger = logging.getLogger(__name__)


class AuditService:
    """Writes and reads the audit log."""

    def __init__(self, db_provider: DatabaseSessionProvider):
        self._db = db_provider

    def record(
        self,
        action: AuditAction,
        user_id: Optional[int],
        detail: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Append an audit entry.

        Returns:
            True if written, False if the write failed (already logged)
        """
        try:
            with self._db.session_scope() as session:
                AuditRepository(session).log(
                    action=action,
                    user_id=user_id,
                    detail=detail,
                    resource_type=resource_type,
                    resource_id=None if resource_id is None else str(resource_id),
                    extra=extra
                )
            return True
        # Storage failures and unserializable extra data alike
        except (SQLAlchemyError, ValueError, TypeError) as e:
            logger.error(
                "Audit write failed for %s by user %s: %s",
                action.value, user_id, type(e).__name__
            )
            return False

    def search(self, **filters) -> Tuple[List[AuditLog], int]:
        """Newest-first audit entries; see AuditRepository.search for filters."""
        with self._db.session_scope() as session:
            return AuditRepository(session).search(**filters)
