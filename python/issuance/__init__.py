"""
Issuance Package for the Lost Document Registry

This package provides:
- Office configuration provider with a TTL cache
- Resident find-or-create by (full name, birth date)
- Per-period sequence allocation and reference number formatting
- The document issuance orchestrator (create, update, delete, queries)
- Owner-or-administrator access policy
- Derived archival classification and near-expiry window
- Best-effort audit trail and dashboard aggregates
"""

from issuance.errors import (
    IssuanceError,
    ValidationError,
    AccessDeniedError,
    NotFoundError,
    ConflictError,
    ConfigurationError,
    PersistenceError,
)
from issuance.inputs import (
    ResidentInput,
    ItemInput,
    DocumentInput,
    validate_document_input,
)
from issuance.config_service import ConfigService, OfficeConfig
from issuance.sequence import (
    SequenceAllocator,
    AllocatedNumber,
    format_reference_number,
    validate_number_format,
    roman_month,
)
from issuance.resident_resolver import ResidentResolver
from issuance.access_policy import can_access, ensure_access
from issuance.archival import ArchiveStatus, is_archived, is_expiring, classify
from issuance.audit_service import AuditService
from issuance.document_service import DocumentService
from issuance.dashboard import DashboardService

__all__ = [
    # Errors
    'IssuanceError',
    'ValidationError',
    'AccessDeniedError',
    'NotFoundError',
    'ConflictError',
    'ConfigurationError',
    'PersistenceError',
    # Inputs
    'ResidentInput',
    'ItemInput',
    'DocumentInput',
    'validate_document_input',
    # Configuration
    'ConfigService',
    'OfficeConfig',
    # Numbering
    'SequenceAllocator',
    'AllocatedNumber',
    'format_reference_number',
    'validate_number_format',
    'roman_month',
    # Residents and access
    'ResidentResolver',
    'can_access',
    'ensure_access',
    # Archival
    'ArchiveStatus',
    'is_archived',
    'is_expiring',
    'classify',
    # Services
    'AuditService',
    'DocumentService',
    'DashboardService',
]
