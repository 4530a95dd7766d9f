"""
Input records for the issuance workflow and their validation.

Supports names in any script. Rejects blocked characters and control
characters that could indicate injection attempts.
"""

import logging
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from config_manager import InputValidationConfig, get_config
from issuance.errors import ValidationError
from security_logger import sanitize_for_logging

logger = logging.getLogger(__name__)


@dataclass
class ResidentInput:
    """Applicant identity and descriptive fields as submitted."""
    full_name: str
    birth_date: Any
    place_of_birth: str = ""
    gender: str = ""
    religion: str = ""
    occupation: str = ""
    address: str = ""

    @property
    def identity(self) -> Tuple[str, date]:
        return self.full_name, self.birth_date

    def to_record(self) -> Dict[str, Any]:
        return {
            "full_name": self.full_name,
            "birth_date": self.birth_date,
            "place_of_birth": self.place_of_birth or "",
            "gender": self.gender or "",
            "religion": self.religion or "",
            "occupation": self.occupation or "",
            "address": self.address or "",
        }


@dataclass
class ItemInput:
    """One lost item."""
    item_name: str
    description: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {"item_name": self.item_name, "description": self.description}


@dataclass
class DocumentInput:
    """Everything needed to issue or rewrite a lost-document report."""
    resident: ResidentInput
    items: List[ItemInput] = field(default_factory=list)
    reporting_officer_id: Optional[int] = None
    loss_location: Optional[str] = None
    approving_official_id: Optional[int] = None


def _check_text(value: Optional[str], field_name: str, max_length: int,
                blocked: str, required: bool = False) -> None:
    """Validate one free-text field."""
    if value is None or value == "":
        if required:
            raise ValidationError(
                f"{field_name} is required",
                field=field_name,
                code="REQUIRED",
                suggestion=f"Provide a value for {field_name}"
            )
        return

    if not isinstance(value, str):
        raise ValidationError(
            f"{field_name} must be text",
            field=field_name,
            code="INVALID_TYPE"
        )

    if required and not value.strip():
        raise ValidationError(
            f"{field_name} must not be blank",
            field=field_name,
            code="REQUIRED",
            suggestion=f"Provide a value for {field_name}"
        )

    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} too long ({len(value)} chars, maximum {max_length})",
            field=field_name,
            code="TOO_LONG",
            suggestion=f"Shorten {field_name} to {max_length} characters or less"
        )

    found_blocked = sorted({c for c in value if c in blocked})
    if found_blocked:
        logger.warning("Blocked characters detected in %s: %s", field_name, sanitize_for_logging(value))
        raise ValidationError(
            f"{field_name} contains blocked characters: {found_blocked}",
            field=field_name,
            code="BLOCKED_CHARACTERS",
            suggestion="Remove special characters like < > { } | \\ ` $"
        )

    for char in value:
        # Newlines are allowed in multi-line text such as addresses
        if char in "\n\r\t":
            continue
        if unicodedata.category(char).startswith('C'):
            raise ValidationError(
                f"{field_name} contains invalid control character (code: {ord(char)})",
                field=field_name,
                code="CONTROL_CHARACTER",
                suggestion="Remove invisible or control characters"
            )


def coerce_birth_date(value: Any) -> date:
    """Accept a date or an ISO 8601 string (YYYY-MM-DD)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError(
        "birth_date must be a valid date",
        field="resident.birth_date",
        code="INVALID_DATE",
        suggestion="Use ISO 8601 format: YYYY-MM-DD"
    )


def validate_resident_input(resident: ResidentInput,
                            limits: Optional[InputValidationConfig] = None) -> ResidentInput:
    """Validate a resident, returning it with birth_date coerced to a date."""
    iv = limits or get_config().input_validation
    blocked = iv.blocked_characters

    _check_text(resident.full_name, "resident.full_name", iv.name_max_length, blocked, required=True)
    resident.birth_date = coerce_birth_date(resident.birth_date)
    if resident.birth_date > date.today():
        raise ValidationError(
            "birth_date must not be in the future",
            field="resident.birth_date",
            code="INVALID_DATE"
        )

    _check_text(resident.place_of_birth, "resident.place_of_birth", iv.field_max_length, blocked)
    _check_text(resident.gender, "resident.gender", iv.field_max_length, blocked)
    _check_text(resident.religion, "resident.religion", iv.field_max_length, blocked)
    _check_text(resident.occupation, "resident.occupation", iv.field_max_length, blocked)
    _check_text(resident.address, "resident.address", iv.text_max_length, blocked)
    return resident


def validate_document_input(data: DocumentInput,
                            limits: Optional[InputValidationConfig] = None) -> DocumentInput:
    """Validate a document submission before any transaction is opened.

    Raises:
        ValidationError: On the first invalid field
    """
    iv = limits or get_config().input_validation

    validate_resident_input(data.resident, iv)

    if not data.items:
        raise ValidationError(
            "At least one lost item is required",
            field="items",
            code="ITEMS_REQUIRED",
            suggestion="List the items that were lost"
        )
    if len(data.items) > iv.max_items:
        raise ValidationError(
            f"Too many items ({len(data.items)}, maximum {iv.max_items})",
            field="items",
            code="TOO_MANY_ITEMS"
        )
    for index, item in enumerate(data.items):
        _check_text(item.item_name, f"items[{index}].item_name", iv.field_max_length,
                    iv.blocked_characters, required=True)
        _check_text(item.description, f"items[{index}].description", iv.text_max_length,
                    iv.blocked_characters)

    _check_text(data.loss_location, "loss_location", iv.text_max_length, iv.blocked_characters)

    if data.reporting_officer_id is None:
        raise ValidationError(
            "reporting_officer_id is required",
            field="reporting_officer_id",
            code="REQUIRED"
        )
    return data
