"""
Error taxonomy for the issuance workflow.

Every error carries a stable ``code`` for programmatic handling; the API
layer maps each class to one HTTP status.
"""

import config_manager


class IssuanceError(Exception):
    """Base class for issuance workflow errors."""
    code = "ISSUANCE_ERROR"

    def __init__(self, message: str, code: str = ""):
        if code:
            self.code = code
        super().__init__(message)


class ValidationError(IssuanceError, ValueError):
    """Raised when input validation fails

    Attributes:
        field: The field that failed validation
        code: Error code for programmatic handling
        suggestion: Optional suggestion for fixing the error
    """
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str = "unknown", code: str = "VALIDATION_ERROR", suggestion: str = ""):
        self.field = field
        self.suggestion = suggestion
        super().__init__(message, code)


class AccessDeniedError(IssuanceError):
    """Actor is neither the document's operator nor an administrator."""
    code = "ACCESS_DENIED"


class NotFoundError(IssuanceError):
    """Target is absent or soft-deleted."""
    code = "NOT_FOUND"


class ConflictError(IssuanceError):
    """A uniqueness invariant was hit by a concurrent writer."""
    code = "CONFLICT"


class ConfigurationError(IssuanceError, config_manager.ConfigurationError):
    """Office configuration is unusable (bad template, timezone, or number)."""
    code = "CONFIGURATION_ERROR"


class PersistenceError(IssuanceError):
    """Storage failure. The message never carries database text."""
    code = "PERSISTENCE_ERROR"
