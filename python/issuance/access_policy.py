"""
Owner-or-administrator access rule for documents.
"""

from database.models import LostDocument, User, UserRole
from issuance.errors import AccessDeniedError
from security_logger import get_security_logger


def can_access(document: LostDocument, actor: User) -> bool:
    """Administrators may access any document; operators only their own."""
    if actor is None:
        return False
    if actor.role == UserRole.SUPER_ADMIN:
        return True
    return document.operator_id == actor.id


def ensure_access(document: LostDocument, actor: User, action: str = "access") -> None:
    """
    Raise unless the actor may act on the document.

    Raises:
        AccessDeniedError: Refusals are also recorded as security events
    """
    if can_access(document, actor):
        return
    get_security_logger().log_access_denied(
        actor_id=getattr(actor, "id", None),
        resource_type="lost_document",
        resource_id=document.id,
        source=f"document_{action}"
    )
    raise AccessDeniedError(f"Not allowed to {action} this document")
