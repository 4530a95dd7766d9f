"""
Pydantic request/response schemas for the Lost Document Registry API

Requests are converted to the issuance input records; responses are built
from the ORM entities with ``from_attributes``.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from issuance.inputs import DocumentInput, ItemInput, ResidentInput


# ============================================
# REQUESTS
# ============================================

class ResidentRequest(BaseModel):
    """Applicant identity as entered on the report form.

    Length and character checks follow the input_validation section of
    config.yaml and run in the issuance layer.
    """
    full_name: str = Field(..., min_length=1, description="Applicant full name")
    birth_date: date = Field(..., description="Date of birth (YYYY-MM-DD)")
    place_of_birth: str = Field(default="", description="Place of birth")
    gender: str = Field(default="", description="Gender")
    religion: str = Field(default="", description="Religion")
    occupation: str = Field(default="", description="Occupation")
    address: str = Field(default="", description="Home address")

    def to_input(self) -> ResidentInput:
        return ResidentInput(**self.model_dump())


class ItemRequest(BaseModel):
    """One lost item."""
    item_name: str = Field(..., min_length=1, description="Item name (e.g. 'KTP')")
    description: Optional[str] = Field(default=None, description="Free-text details")


class DocumentRequest(BaseModel):
    """Request schema for creating or rewriting a lost-document report."""
    resident: ResidentRequest
    items: List[ItemRequest] = Field(..., min_length=1, description="Lost items (at least one)")
    reporting_officer_id: int = Field(..., description="User id of the reporting officer")
    loss_location: Optional[str] = Field(default=None, description="Where the items were lost")
    approving_official_id: Optional[int] = Field(
        default=None,
        description="User id of the approving official, if already approved"
    )

    @field_validator('loss_location')
    @classmethod
    def blank_location_is_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat an all-whitespace location as absent."""
        if v is not None and not v.strip():
            return None
        return v

    def to_input(self) -> DocumentInput:
        return DocumentInput(
            resident=self.resident.to_input(),
            items=[ItemInput(item_name=i.item_name, description=i.description) for i in self.items],
            reporting_officer_id=self.reporting_officer_id,
            loss_location=self.loss_location,
            approving_official_id=self.approving_official_id,
        )


class SettingsUpdateRequest(BaseModel):
    """Partial update of the office configuration (only given keys change)."""
    number_format: Optional[str] = None
    last_number: Optional[int] = Field(default=None, ge=0)
    archive_duration_days: Optional[int] = Field(default=None, ge=1)
    timezone: Optional[str] = None
    office_name: Optional[str] = None
    letter_place: Optional[str] = None
    letterhead_line_1: Optional[str] = None
    letterhead_line_2: Optional[str] = None
    letterhead_line_3: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    def to_updates(self) -> Dict[str, str]:
        return {key: str(value) for key, value in self.model_dump(exclude_none=True).items()}


# ============================================
# RESPONSES
# ============================================

class UserSummary(BaseModel):
    """Personnel reference embedded in a document."""
    id: int
    full_name: str
    registration_number: str
    rank: Optional[str] = None
    position: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ResidentResponse(BaseModel):
    id: int
    full_name: str
    birth_date: date
    place_of_birth: str = ""
    gender: str = ""
    religion: str = ""
    occupation: str = ""
    address: str = ""

    model_config = ConfigDict(from_attributes=True)


class ItemResponse(BaseModel):
    id: int
    item_name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DocumentResponse(BaseModel):
    """A lost-document report with its resident, personnel and items."""
    id: int
    reference_number: str = Field(..., description="Formatted, unique reference number")
    period_year: int
    sequence_number: int
    report_date: datetime
    status: str = Field(..., description="Lifecycle status (always 'ISSUED')")
    archive_status: str = Field(..., description="Derived: 'active' or 'archived'")
    archives_at: datetime = Field(..., description="When the document reads as archived")
    loss_location: Optional[str] = None
    approved_at: Optional[datetime] = None
    resident: ResidentResponse
    items: List[ItemResponse] = Field(default_factory=list)
    reporting_officer: UserSummary
    approving_official: Optional[UserSummary] = None
    operator: UserSummary
    last_updated_by: Optional[UserSummary] = None
    created_at: datetime
    updated_at: datetime


class DocumentListResponse(BaseModel):
    """One page of documents."""
    total: int = Field(..., ge=0, description="Total matching documents")
    limit: int
    offset: int
    documents: List[DocumentResponse] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    id: int
    deleted: bool = True


class StatsResponse(BaseModel):
    """Headline dashboard counts (calendar boundaries in the office timezone)."""
    documents_today: int
    documents_this_month: int
    documents_this_year: int
    total_users: int


class ChartResponse(BaseModel):
    """Labelled series for a dashboard chart."""
    labels: List[str]
    data: List[int]


class SettingsResponse(BaseModel):
    number_format: str
    last_number: int
    archive_duration_days: int
    timezone: str
    office_name: str = ""
    letter_place: str = ""
    letterhead: List[str] = Field(default_factory=list)
    setup_complete: bool = False


class AuditLogEntry(BaseModel):
    id: int
    timestamp: datetime
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    action: str
    detail: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


class AuditLogListResponse(BaseModel):
    total: int
    limit: int
    offset: int
    entries: List[AuditLogEntry] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: Dict[str, Any] = Field(default_factory=dict, description="Database health")
    version: str = Field(..., description="API version")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
