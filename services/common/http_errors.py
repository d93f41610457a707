"""
Shared HTTP error classes and utilities for all Haven services.

Provides:
- Base exception class for API errors
- Common subclasses (Validation, NotFound, Conflict, Service)
- Shared error response model
- Utility to convert exceptions to error responses
- FastAPI exception handler registration

Common Usage Patterns:
=====================

Basic Exception Usage:
>>> from services.common.http_errors import ValidationError, NotFoundError
>>>
>>> # Validation error with field context
>>> error = ValidationError("Invalid time format", field="time", value="25:00")
>>>
>>> # Resource not found
>>> error = NotFoundError("Schedule", "3f1c...")

FastAPI Integration:
>>> from fastapi import FastAPI
>>> from services.common.http_errors import register_haven_exception_handlers
>>>
>>> app = FastAPI()
>>> register_haven_exception_handlers(app)
>>>
>>> @app.get("/schedules/{schedule_id}")
>>> def get_schedule(schedule_id: str):
...     if not schedule_exists(schedule_id):
...         raise NotFoundError("Schedule", schedule_id)
...     return {"schedule_id": schedule_id}

Conflict Handling:
>>> from services.common.http_errors import ConflictError, ErrorCode
>>>
>>> error = ConflictError(
...     "User already has an active session schedule",
...     code=ErrorCode.ALREADY_EXISTS,
...     details={"user_id": "user-123"},
... )

Error Code Taxonomy:
===================
- VALIDATION_* : Input validation errors (422)
- NOT_FOUND : Resource not found (404)
- ALREADY_EXISTS / *_CLOSED / INVALID_STATE : Conflicts with current state (409)
- SERVICE_* : Internal service errors (5xx)
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from services.common.logging_config import get_logger, request_id_var

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """
    Standardized error codes for all Haven services.

    Error codes are organized by category and follow the ALL_CAPS naming
    convention.
    """

    # ==========================================
    # GENERAL ERRORS (4xx client errors)
    # ==========================================
    VALIDATION_FAILED = "VALIDATION_FAILED"  # HTTP 422 - Input validation failed
    NOT_FOUND = "NOT_FOUND"  # HTTP 404 - Resource not found
    ALREADY_EXISTS = "ALREADY_EXISTS"  # HTTP 409 - Resource already exists

    # ==========================================
    # SCHEDULING ERRORS
    # ==========================================
    INVALID_RULE = "INVALID_RULE"  # HTTP 422 - Malformed recurrence rule
    JOIN_WINDOW_CLOSED = "JOIN_WINDOW_CLOSED"  # HTTP 409 - Occurrence not joinable
    INVALID_STATE = "INVALID_STATE"  # HTTP 409 - Transition from a terminal state
    RECURRENCE_OVERFLOW = "RECURRENCE_OVERFLOW"  # Enumeration safety cap hit

    # ==========================================
    # SERVICE ERRORS (5xx server errors)
    # ==========================================
    SERVICE_ERROR = "SERVICE_ERROR"  # Generic service error
    DATABASE_ERROR = "DATABASE_ERROR"  # Database connectivity/operation error


class ErrorResponse(BaseModel):
    """
    Standardized error response model for all Haven services.

    Attributes:
        type: Error type categorization (e.g., "validation_error", "conflict_error")
        message: Human-readable error message for end users
        details: Optional dictionary containing additional error context
        timestamp: ISO 8601 timestamp of when the error occurred
        request_id: Unique identifier for tracing and debugging purposes
    """

    type: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: str
    request_id: str


def _current_request_id() -> str:
    request_id = request_id_var.get()
    if request_id and request_id != "uninitialized":
        return request_id
    return str(uuid.uuid4())


class HavenAPIException(Exception):
    """
    Base exception class for all Haven API errors.

    Attributes:
        message: Human-readable error message
        details: Dictionary containing additional error context
        error_type: Categorization of the error (validation_error, not_found, etc.)
        error_code: Specific error code from the ErrorCode enum
        status_code: HTTP status code to return
        timestamp: ISO 8601 timestamp when error occurred
        request_id: Unique identifier for request tracing

    Example:
        >>> error = HavenAPIException(
        ...     message="Database connection failed",
        ...     details={"database": "postgres"},
        ...     error_type="service_error",
        ...     error_code=ErrorCode.DATABASE_ERROR,
        ...     status_code=502
        ... )
        >>> response = error.to_error_response()
        >>> print(response.type)
        service_error
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_type: str = "internal_error",
        error_code: Optional[ErrorCode] = None,
        status_code: int = 500,
        request_id: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        self.error_type = error_type
        self.error_code = error_code
        self.status_code = status_code
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.request_id = request_id or _current_request_id()
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """
        Convert exception to ErrorResponse Pydantic model.

        Includes the error code in details if present.
        """
        details = {
            **self.details,
            **({"code": self.error_code.value} if self.error_code else {}),
        }
        return ErrorResponse(
            type=self.error_type,
            message=self.message,
            details=details if details else None,
            timestamp=self.timestamp,
            request_id=self.request_id,
        )


class ValidationError(HavenAPIException):
    """
    Exception for input validation errors (HTTP 422).

    Args:
        message: Human-readable description of the validation failure
        field: Optional field name that failed validation
        value: Optional invalid value that was provided
        details: Optional additional validation context
        code: Specific error code (defaults to VALIDATION_FAILED)

    Examples:
        >>> error = ValidationError(
        ...     "Invalid time format",
        ...     field="time",
        ...     value="9am"
        ... )
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        validation_details = details or {}
        if field:
            validation_details["field"] = field
        if value is not None:
            validation_details["value"] = str(value)
        super().__init__(
            message=message,
            details=validation_details,
            error_type="validation_error",
            error_code=code,
            status_code=422,
        )
        self.field = field
        self.value = value


class NotFoundError(HavenAPIException):
    """
    Exception for resource not found errors (HTTP 404).

    Examples:
        >>> error = NotFoundError("Schedule", "sched-123")
        >>> print(error.message)
        Schedule sched-123 not found

        >>> error = NotFoundError("Session")
        >>> print(error.message)
        Session not found
    """

    def __init__(
        self,
        resource: str,
        identifier: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"{resource} {identifier} not found" if identifier else f"{resource} not found"
        )
        not_found_details = details or {}
        not_found_details["resource"] = resource
        if identifier:
            not_found_details["identifier"] = identifier
        super().__init__(
            message=message,
            details=not_found_details,
            error_type="not_found",
            error_code=ErrorCode.NOT_FOUND,
            status_code=404,
        )
        self.resource = resource
        self.identifier = identifier


class ConflictError(HavenAPIException):
    """
    Exception for requests that conflict with the current resource state (HTTP 409).

    Used when the request is well formed but cannot be applied right now, such
    as creating a second active schedule or joining outside the join window.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.ALREADY_EXISTS,
        status_code: int = 409,
    ):
        super().__init__(
            message=message,
            details=details,
            error_type="conflict_error",
            error_code=code,
            status_code=status_code,
        )


class ServiceError(HavenAPIException):
    """
    Exception for internal service errors (HTTP 500).

    Examples:
        >>> error = ServiceError(
        ...     "Database connection failed",
        ...     code=ErrorCode.DATABASE_ERROR,
        ...     details={"database": "postgresql"}
        ... )
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.SERVICE_ERROR,
        status_code: int = 500,
    ):
        super().__init__(
            message=message,
            details=details,
            error_type="service_error",
            error_code=code,
            status_code=status_code,
        )


def exception_to_response(exc: Exception) -> ErrorResponse:
    """
    Convert any exception to a standardized ErrorResponse Pydantic model.

    1. HavenAPIException: Uses the built-in to_error_response() method
    2. HTTPException: Extracts detail information and normalizes format
    3. Generic Exception: Creates a safe internal error response

    Examples:
        >>> error = ValidationError("Invalid time", field="time")
        >>> exception_to_response(error).type
        'validation_error'

        >>> exception_to_response(ValueError("boom")).details["error_type"]
        'ValueError'
    """
    if isinstance(exc, HavenAPIException):
        return exc.to_error_response()
    elif isinstance(exc, HTTPException):
        detail = (
            exc.detail if isinstance(exc.detail, dict) else {"message": str(exc.detail)}
        )
        return ErrorResponse(
            type="http_error",
            message=detail.get("message", "HTTP error"),
            details=detail,
            timestamp=datetime.now(timezone.utc).isoformat(),
            request_id=_current_request_id(),
        )
    else:
        return ErrorResponse(
            type="internal_error",
            message=str(exc),
            details={"error_type": type(exc).__name__},
            timestamp=datetime.now(timezone.utc).isoformat(),
            request_id=_current_request_id(),
        )


def register_haven_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers for FastAPI applications.

    Three levels of handlers are registered:

    1. HavenAPIException: the exception's own status code and details
    2. HTTPException: normalized details, original status code
    3. Generic Exception: safe internal error response with status 500

    This function should be called once during application initialization.
    """
    from fastapi import Request
    from fastapi.responses import JSONResponse

    @app.exception_handler(HavenAPIException)
    async def haven_api_exception_handler(
        request: Request, exc: HavenAPIException
    ) -> JSONResponse:
        error_response = exc.to_error_response()
        if exc.status_code >= 500:
            logger.error(
                f"HTTP {exc.status_code} {exc.error_type}: {exc.message}",
                path=request.url.path,
            )
        else:
            logger.warning(
                f"HTTP {exc.status_code} {exc.error_type}: {exc.message}",
                path=request.url.path,
            )
        return JSONResponse(
            status_code=exc.status_code, content=error_response.model_dump()
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        error_response = exception_to_response(exc)
        return JSONResponse(
            status_code=exc.status_code, content=error_response.model_dump()
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            f"Unhandled exception: {type(exc).__name__}",
            path=request.url.path,
            exc_info=exc,
        )
        error_response = exception_to_response(exc)
        return JSONResponse(status_code=500, content=error_response.model_dump())
