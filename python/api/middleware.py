"""
FastAPI Middleware for the Lost Document Registry API

Provides CORS configuration, request logging, and the mapping from the
issuance error taxonomy to HTTP responses.
"""

import os
import re
import time
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from issuance.errors import (
    AccessDeniedError,
    ConfigurationError,
    ConflictError,
    IssuanceError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from security_logger import get_security_logger, sanitize_for_logging

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8000",
]

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
EXPOSED_HEADERS = ["X-Request-ID", "X-Processing-Time-MS"]

# Issuance error class -> HTTP status
ERROR_STATUS = (
    (ValidationError, 400),
    (AccessDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ConfigurationError, 503),
    (PersistenceError, 500),
)


def _build_cors_regex_pattern(allowed_origins: List[str]) -> Tuple[Optional[str], List[str]]:
    """Build regex pattern for CORS from allowed origins list.

    Args:
        allowed_origins: Origins, possibly with a leading subdomain wildcard
            such as ``https://*.example.org``

    Returns:
        Tuple of (combined_regex_pattern or None, exact_origins list)
    """
    regex_patterns = []
    exact_origins = []

    for origin in allowed_origins:
        if "://*." in origin:
            scheme, host = origin.split("://*.", 1)
            regex_patterns.append(rf"{re.escape(scheme)}://[\w-]+\.{re.escape(host)}")
        else:
            exact_origins.append(origin)

    if not regex_patterns:
        return None, exact_origins

    combined_regex = "|".join(f"({p})" for p in regex_patterns)
    if exact_origins:
        exact_escaped = "|".join(re.escape(o) for o in exact_origins)
        combined_regex = f"({combined_regex})|({exact_escaped})"

    return combined_regex, exact_origins


def setup_cors(app: FastAPI, origins: Optional[List[str]] = None) -> None:
    """Configure CORS middleware for the application.

    The CORS_ORIGINS environment variable (comma-separated) overrides the
    configured origins. Subdomain wildcards are turned into a regex.
    """
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        allowed_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    else:
        allowed_origins = list(origins or DEFAULT_CORS_ORIGINS)

    combined_regex, exact_origins = _build_cors_regex_pattern(allowed_origins)

    if combined_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=combined_regex,
            allow_credentials=True,
            allow_methods=CORS_METHODS,
            allow_headers=["*"],
            expose_headers=EXPOSED_HEADERS,
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=exact_origins,
            allow_credentials=True,
            allow_methods=CORS_METHODS,
            allow_headers=["*"],
            expose_headers=EXPOSED_HEADERS,
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs.

    Also binds the request id, acting user and client address to the
    security logger so that events raised while serving the request carry them.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        request.state.request_id = request_id
        request.state.start_time = start_time

        security_logger = get_security_logger()
        security_logger.set_request_context(
            request_id=sanitize_for_logging(request_id),
            user_id=sanitize_for_logging(request.headers.get("X-User-ID", "")),
            source_ip=request.client.host if request.client else "",
        )

        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)

            processing_time_ms = int((time.time() - start_time) * 1000)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            logger.info(
                "Response: status=%d processing_time_ms=%d request_id=%s",
                response.status_code,
                processing_time_ms,
                request_id,
            )
            return response

        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise
        finally:
            security_logger.clear_request_context()


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion

    return JSONResponse(status_code=status_code, content={"error": error_detail})


def status_for(exc: IssuanceError) -> int:
    """HTTP status for an issuance error (500 for anything unmapped)."""
    for error_class, status_code in ERROR_STATUS:
        if isinstance(exc, error_class):
            return status_code
    return 500


async def issuance_exception_handler(request: Request, exc: IssuanceError) -> JSONResponse:
    """Map the issuance error taxonomy onto HTTP responses.

    Storage and configuration details are logged but never returned.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = status_for(exc)

    if isinstance(exc, ValidationError):
        get_security_logger().log_validation_failure(
            field=exc.field,
            error_code=exc.code,
            input_value=str(exc),
            source=sanitize_for_logging(request.url.path),
        )
        return create_error_response(
            code=exc.code,
            message=str(exc),
            status_code=status_code,
            field=exc.field,
            suggestion=exc.suggestion or None,
        )

    if isinstance(exc, ConfigurationError):
        logger.error(
            "Configuration error: message=%s request_id=%s",
            sanitize_for_logging(str(exc)),
            request_id,
        )
        return create_error_response(
            code=exc.code,
            message="Service configuration is invalid. Please contact administrator.",
            status_code=status_code,
        )

    if status_code >= 500:
        logger.error(
            "Issuance failure: type=%s message=%s request_id=%s",
            type(exc).__name__,
            sanitize_for_logging(str(exc)),
            request_id,
        )
        return create_error_response(
            code=exc.code,
            message="The request could not be completed. Please try again later.",
            status_code=status_code,
        )

    logger.warning(
        "Request rejected: code=%s status=%d request_id=%s",
        exc.code,
        status_code,
        request_id,
    )
    return create_error_response(code=exc.code, message=str(exc), status_code=status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render pydantic body and query validation failures as 400 errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(location) or "request"
    message = first.get("msg", "Invalid request")

    get_security_logger().log_validation_failure(
        field=field,
        error_code="VALIDATION_ERROR",
        input_value=message,
        source=sanitize_for_logging(request.url.path),
    )
    return create_error_response(
        code="VALIDATION_ERROR",
        message=f"{field}: {message}",
        status_code=400,
        field=field,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    if isinstance(exc, IssuanceError):
        return await issuance_exception_handler(request, exc)

    if isinstance(exc, HTTPException):
        return create_error_response(
            code=f"HTTP_{exc.status_code}",
            message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            status_code=exc.status_code,
        )

    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(IssuanceError, issuance_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
