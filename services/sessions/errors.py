"""
Domain errors raised by the sessions scheduler.

Each error subclasses the shared HTTP error taxonomy so routers can let them
propagate to the registered exception handlers unchanged.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from services.common.http_errors import (
    ConflictError,
    ErrorCode,
    ServiceError,
    ValidationError,
)


class InvalidRuleError(ValidationError):
    """Malformed schedule rule: missing time, empty weekly days, bad anchor, etc."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message, field=field, value=value, code=ErrorCode.INVALID_RULE)


class DuplicateScheduleError(ConflictError):
    """The user already owns a non-cancelled recurring schedule."""

    def __init__(self, user_id: str, existing_schedule_id: Optional[str] = None):
        details: Dict[str, Any] = {"user_id": user_id}
        if existing_schedule_id:
            details["existing_schedule_id"] = existing_schedule_id
        super().__init__(
            "User already has an active session schedule",
            details=details,
            code=ErrorCode.ALREADY_EXISTS,
        )
        self.user_id = user_id
        self.existing_schedule_id = existing_schedule_id


class JoinWindowClosedError(ConflictError):
    """Join attempted while the occurrence is not in the ready state."""

    def __init__(self, occurrence_id: str, status: str, scheduled_at: datetime):
        super().__init__(
            f"Occurrence {occurrence_id} cannot be joined while {status}",
            details={
                "occurrence_id": occurrence_id,
                "status": status,
                "scheduled_at": scheduled_at.isoformat(),
            },
            code=ErrorCode.JOIN_WINDOW_CLOSED,
        )
        self.occurrence_id = occurrence_id
        self.status = status


class SessionStateError(ConflictError):
    """Transition requested from a state that does not allow it."""

    def __init__(self, message: str, current: str, requested: str):
        super().__init__(
            message,
            details={"current": current, "requested": requested},
            code=ErrorCode.INVALID_STATE,
        )
        self.current = current
        self.requested = requested


class RecurrenceOverflowError(ServiceError):
    """Enumeration hit its safety cap; ``occurrences`` holds the truncated result."""

    def __init__(self, cap: int, occurrences: Sequence[datetime]):
        super().__init__(
            f"Occurrence enumeration stopped after {cap} results",
            details={
                "cap": cap,
                "last_occurrence": occurrences[-1].isoformat() if occurrences else None,
            },
            code=ErrorCode.RECURRENCE_OVERFLOW,
            status_code=422,
        )
        self.cap = cap
        self.occurrences = tuple(occurrences)
