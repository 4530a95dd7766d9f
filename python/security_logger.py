"""
Security Event Logging Module

Provides structured logging for security-related events including:
- Validation failures
- Access control denials
- Configuration errors surfaced to clients

SECURITY: Ensures user-supplied data is sanitized before logging.
"""

import logging
import json
import re
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field as dataclass_field


# Per-request correlation, safe across concurrent request workers
_request_id: ContextVar[str] = ContextVar("security_request_id", default="")
_user_id: ContextVar[str] = ContextVar("security_user_id", default="")
_source_ip: ContextVar[str] = ContextVar("security_source_ip", default="")


def sanitize_for_logging(text: Any) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if text is None or text == '':
        return ''
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:500] if len(sanitized) > 500 else sanitized


@dataclass
class SecurityEvent:
    """Structured security event for logging"""
    event_type: str  # e.g., VALIDATION_FAILED, ACCESS_DENIED
    severity: str  # WARNING, ERROR, CRITICAL
    field_name: str = ""
    error_code: str = ""
    sanitized_input: str = ""  # First 50 chars, sanitized
    source: str = ""  # Module/function that detected the event
    request_id: str = ""
    user_id: str = ""
    source_ip: str = ""
    additional_context: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'field': self.field_name,
            'error_code': self.error_code,
            'sanitized_input': self.sanitized_input,
            'source': self.source,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'source_ip': self.source_ip,
            'context': self.additional_context
        }

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), ensure_ascii=False)


class SecurityLogger:
    """Handles security event logging with structured output

    Features:
    - Optional separate security.log file
    - JSON-formatted events for easy parsing
    - Automatic sanitization of user input
    - Request ID correlation
    """

    def __init__(
        self,
        log_dir: Optional[str] = None,
        log_level: int = logging.WARNING,
        enable_console: bool = False
    ):
        """Initialize security logger

        Args:
            log_dir: Directory for security.log; None keeps events on the
                regular logging tree only
            log_level: Minimum log level to record
            enable_console: Also output to console
        """
        self.logger = logging.getLogger('security')
        self.logger.setLevel(log_level)
        self.logger.handlers.clear()

        formatter = logging.Formatter(
            '%(asctime)s - SECURITY - %(levelname)s - %(message)s'
        )

        if log_dir:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path / "security.log", encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

    def set_request_context(
        self,
        request_id: Optional[str] = None,
        user_id: str = "",
        source_ip: str = ""
    ) -> str:
        """Set context for the current request

        Args:
            request_id: Unique request identifier (auto-generated if None)
            user_id: User identifier if available
            source_ip: Source IP address if available

        Returns:
            The request ID being used
        """
        rid = request_id or f"REQ-{uuid.uuid4().hex[:8]}"
        _request_id.set(rid)
        _user_id.set(sanitize_for_logging(user_id))
        _source_ip.set(source_ip)
        return rid

    def clear_request_context(self) -> None:
        """Clear the current request context"""
        _request_id.set("")
        _user_id.set("")
        _source_ip.set("")

    def _sanitize_input(self, text: Any, max_length: int = 50) -> str:
        """Sanitize input and truncate it for security logs"""
        sanitized = sanitize_for_logging(text)
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize all values in a context dictionary for safe logging

        Args:
            context: Dictionary with context data

        Returns:
            Sanitized dictionary safe for JSON logging
        """
        if not context:
            return {}

        sanitized = {}
        for key, value in context.items():
            safe_key = self._sanitize_input(str(key), max_length=100) if key else "unknown"

            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_context(value)
            elif isinstance(value, (list, tuple)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else self._sanitize_input(str(item), max_length=200)
                    for item in value
                ]
            else:
                sanitized[safe_key] = self._sanitize_input(str(value), max_length=200)

        return sanitized

    def _event(self, **kwargs) -> SecurityEvent:
        return SecurityEvent(
            request_id=_request_id.get(),
            user_id=_user_id.get(),
            source_ip=_source_ip.get(),
            **kwargs
        )

    def log_validation_failure(
        self,
        field: str,
        error_code: str,
        input_value: Any,
        source: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a validation failure event

        Args:
            field: Field name that failed validation
            error_code: Error code for the failure
            input_value: The input that failed (will be sanitized)
            source: Source module/function
            additional_context: Additional context data (will be sanitized)
        """
        event = self._event(
            event_type="VALIDATION_FAILED",
            severity="WARNING",
            field_name=field,
            error_code=error_code,
            sanitized_input=self._sanitize_input(input_value),
            source=source,
            additional_context=self._sanitize_context(additional_context)
        )

        self.logger.warning(event.to_json())

    def log_access_denied(
        self,
        actor_id: Any,
        resource_type: str,
        resource_id: Any,
        source: str = ""
    ) -> None:
        """Log a refused access to a resource owned by someone else"""
        self.log_security_event(
            event_type="ACCESS_DENIED",
            severity="WARNING",
            error_code="ACCESS_DENIED",
            source=source,
            additional_context={
                "actor_id": actor_id,
                "resource_type": resource_type,
                "resource_id": resource_id
            }
        )

    def log_security_event(
        self,
        event_type: str,
        severity: str = "ERROR",
        field: str = "",
        error_code: str = "",
        input_value: Any = "",
        source: str = "",
        blocked: bool = True,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a security event

        Args:
            event_type: Type of security event (ACCESS_DENIED, AUTH_FAILED, ...)
            severity: WARNING, ERROR, or CRITICAL
            field: Related field if applicable
            error_code: Error code
            input_value: Suspicious input (will be sanitized)
            source: Source module/function
            blocked: Whether the attempt was blocked
            additional_context: Additional context (will be sanitized)
        """
        context = self._sanitize_context(additional_context)
        context['blocked'] = blocked

        event = self._event(
            event_type=event_type,
            severity=severity,
            field_name=field,
            error_code=error_code,
            sanitized_input=self._sanitize_input(input_value),
            source=source,
            additional_context=context
        )

        if severity == "CRITICAL":
            self.logger.critical(event.to_json())
        elif severity == "ERROR":
            self.logger.error(event.to_json())
        else:
            self.logger.warning(event.to_json())


# Global security logger instance
_security_logger: Optional[SecurityLogger] = None


def get_security_logger(
    log_dir: Optional[str] = None,
    enable_console: bool = False
) -> SecurityLogger:
    """Get or create the global security logger instance

    Args:
        log_dir: Directory for security.log (None disables the file)
        enable_console: Also output to console

    Returns:
        SecurityLogger instance
    """
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger(
            log_dir=log_dir,
            enable_console=enable_console
        )
    return _security_logger


def reset_security_logger() -> None:
    """Reset the global security logger (for testing)"""
    global _security_logger
    _security_logger = None
