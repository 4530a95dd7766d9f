"""
SQLAlchemy ORM Models for the Lost Document Registry

This module defines the database schema for the issuance workflow:
- Normalized table design with proper foreign key constraints
- Soft delete capability for users, residents and documents
- Audit trail support (append-only)
- Timestamps for all records (created_at, updated_at)
- Integer primary keys (documents are addressed by id in the API)

Tables:
1. users - Office personnel (operators, reporting officers, approving officials)
2. residents - Applicants, deduplicated by (full_name, birth_date)
3. lost_documents - Issued lost-document reports with their reference number
4. lost_items - Items listed on a report (owned by the document)
5. document_sequences - One counter row per numbering period
6. system_configs - Key/value office configuration
7. audit_logs - System-wide audit trail
"""

from datetime import date, datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Boolean, Date, DateTime, Text,
    ForeignKey, Index, UniqueConstraint, Enum, JSON
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator

# Base class for all models
Base = declarative_base()


# ============================================
# ENUMS
# ============================================

class UserRole(str, PyEnum):
    """Role of an office user"""
    SUPER_ADMIN = "SUPER_ADMIN"
    OPERATOR = "OPERATOR"


class DocumentStatus(str, PyEnum):
    """Lifecycle status stored on a document.

    Archival is derived from the report date and is never stored here.
    """
    ISSUED = "ISSUED"


class AuditAction(str, PyEnum):
    """Type of audit action"""
    DOCUMENT_CREATED = "DOCUMENT_CREATED"
    DOCUMENT_UPDATED = "DOCUMENT_UPDATED"
    DOCUMENT_DELETED = "DOCUMENT_DELETED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"
    SYSTEM_SETUP = "SYSTEM_SETUP"
    USER_CREATED = "USER_CREATED"


# ============================================
# COLUMN TYPES
# ============================================

class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops the offset on storage, so naive values read back are
    interpreted as UTC.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        nullable=False
    )


class SoftDeleteMixin:
    """Mixin for soft delete support"""
    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True
    )


# ============================================
# PERSONNEL AND RESIDENTS
# ============================================

class User(Base, TimestampMixin, SoftDeleteMixin):
    """
    Office personnel.

    A user appears on documents as the operator who recorded them, the
    reporting officer, the approving official, or the last editor.
    Soft-deleted users are treated as inactive.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Personnel registration number (NRP)
    registration_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True
    )

    rank: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole),
        nullable=False,
        default=UserRole.OPERATOR
    )

    position: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Duty team (I, II, III)
    team: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    @property
    def is_active(self) -> bool:
        return not self.is_deleted

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.full_name}', role={self.role})>"


class Resident(Base, TimestampMixin, SoftDeleteMixin):
    """
    Applicant identity record.

    Deduplicated on (full_name, birth_date): no government ID number is
    collected at intake. Residents are shared by every document that
    references them and are never deleted by the issuance workflow.
    """
    __tablename__ = "residents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    full_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    place_of_birth: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    birth_date: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    religion: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    occupation: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")

    documents: Mapped[List["LostDocument"]] = relationship(
        "LostDocument",
        back_populates="resident",
        lazy="dynamic"
    )

    __table_args__ = (
        UniqueConstraint('full_name', 'birth_date', name='uq_resident_identity'),
    )

    def __repr__(self) -> str:
        return f"<Resident(id={self.id}, name='{self.full_name}', birth_date={self.birth_date})>"


# ============================================
# DOCUMENT MODELS
# ============================================

class LostDocument(Base, TimestampMixin, SoftDeleteMixin):
    """
    Issued lost-document report.

    The reference number is assigned once at creation and never changes.
    period_year and sequence_number are the numeric parts the reference
    number was formatted from.
    """
    __tablename__ = "lost_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    reference_number: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True
    )

    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    report_date: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        index=True
    )

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus),
        nullable=False,
        default=DocumentStatus.ISSUED
    )

    loss_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    resident_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("residents.id"),
        nullable=False,
        index=True
    )

    # Officer whose name is printed on the report
    reporting_officer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False
    )
    approving_official_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=True
    )

    # Logged-in user who created the document; never changes afterwards
    operator_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
        index=True
    )
    last_updated_by_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=True
    )

    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Relationships
    resident: Mapped["Resident"] = relationship(
        "Resident",
        back_populates="documents"
    )
    items: Mapped[List["LostItem"]] = relationship(
        "LostItem",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="LostItem.id",
        lazy="selectin"
    )
    reporting_officer: Mapped["User"] = relationship(
        "User", foreign_keys=[reporting_officer_id]
    )
    approving_official: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[approving_official_id]
    )
    operator: Mapped["User"] = relationship(
        "User", foreign_keys=[operator_id]
    )
    last_updated_by: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[last_updated_by_id]
    )

    __table_args__ = (
        UniqueConstraint('period_year', 'sequence_number', name='uq_document_period_sequence'),
        Index('ix_document_period_sequence', 'period_year', 'sequence_number'),
        Index('ix_document_operator_report_date', 'operator_id', 'report_date'),
    )

    def __repr__(self) -> str:
        return f"<LostDocument(id={self.id}, reference_number='{self.reference_number}')>"


class LostItem(Base):
    """
    Item listed on a lost-document report.

    Created and replaced in lockstep with the parent document.
    """
    __tablename__ = "lost_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("lost_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    document: Mapped["LostDocument"] = relationship(
        "LostDocument",
        back_populates="items"
    )

    def __repr__(self) -> str:
        return f"<LostItem(document_id={self.document_id}, name='{self.item_name}')>"


class DocumentSequence(Base):
    """
    Numbering counter, one row per period.

    The row is locked and incremented inside the issuing transaction, so a
    rolled back issuance does not consume a number.
    """
    __tablename__ = "document_sequences"

    period: Mapped[str] = mapped_column(String(20), primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DocumentSequence(period='{self.period}', current_value={self.current_value})>"


# ============================================
# CONFIGURATION AND AUDIT MODELS
# ============================================

class SystemConfig(Base):
    """Key/value office configuration, edited by administrators."""
    __tablename__ = "system_configs"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<SystemConfig(key='{self.key}')>"


class AuditLog(Base):
    """
    System-wide audit trail.

    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Timestamp (no updated_at - audit logs are immutable)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        nullable=False,
        index=True
    )

    user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=True,
        index=True
    )

    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction),
        nullable=False,
        index=True
    )

    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Resource being acted upon
    resource_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    extra: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    user: Mapped[Optional["User"]] = relationship("User")

    __table_args__ = (
        Index('ix_audit_timestamp_action', 'timestamp', 'action'),
        Index('ix_audit_resource', 'resource_type', 'resource_id'),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, user_id={self.user_id})>"
