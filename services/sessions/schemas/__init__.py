"""
Sessions service schemas.
"""

from services.sessions.schemas.sessions import (
    CleanupResponse,
    ClassificationResponse,
    CompleteRequest,
    HistoryResponse,
    InstantSessionResponse,
    JoinRequest,
    JoinResponse,
    OccurrenceListResponse,
    OccurrenceResponse,
    OccurrenceSummary,
    PreviewRequest,
    PreviewResponse,
    ScheduleCreate,
    ScheduleResponse,
    SessionContextResponse,
    TimeRemainingResponse,
    UpcomingResponse,
)

__all__ = [
    "CleanupResponse",
    "ClassificationResponse",
    "CompleteRequest",
    "HistoryResponse",
    "InstantSessionResponse",
    "JoinRequest",
    "JoinResponse",
    "OccurrenceListResponse",
    "OccurrenceResponse",
    "OccurrenceSummary",
    "PreviewRequest",
    "PreviewResponse",
    "ScheduleCreate",
    "ScheduleResponse",
    "SessionContextResponse",
    "TimeRemainingResponse",
    "UpcomingResponse",
]
