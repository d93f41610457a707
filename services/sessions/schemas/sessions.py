"""
Pydantic schemas for session scheduling.

Request models accept loose strings; rule validation happens in the
recurrence engine so the HTTP layer and direct callers share one set of
rules and one error type.
"""

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.sessions.models import (
    ContextStatus,
    ScheduleKind,
    ScheduleStatus,
    SessionContext,
    SessionSchedule,
)
from services.sessions.services.lifecycle import (
    Classification,
    SessionState,
    describe_time_remaining,
)
from services.sessions.services.recurrence import ScheduleRule, build_rule
from services.sessions.services.schedule_store import as_utc


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


class ScheduleCreate(BaseModel):
    """Schema for creating a recurring session schedule."""

    frequency: str = Field(..., description="daily, weekly or monthly")
    time: str = Field(..., description="Time of day in HH:MM format")
    days: List[str] = Field(
        default_factory=list, description="Weekdays for weekly schedules"
    )
    timezone: str = Field(default="UTC", description="IANA timezone name")
    anchor_day: Optional[int] = Field(
        None, description="Day of month for monthly schedules (1-31)"
    )

    @field_validator("frequency", "timezone", mode="before")
    @classmethod
    def strip_text(cls: type["ScheduleCreate"], v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("frequency")
    @classmethod
    def lowercase_frequency(cls: type["ScheduleCreate"], v: str) -> str:
        return v.lower()

    def to_rule(self) -> ScheduleRule:
        """Build the validated rule; raises InvalidRuleError."""
        return build_rule(
            self.frequency,
            self.time,
            days=self.days,
            timezone_name=self.timezone or "UTC",
            anchor_day=self.anchor_day,
        )


class PreviewRequest(ScheduleCreate):
    """Schema for previewing occurrences of an unsaved rule."""

    count: int = Field(5, ge=1, le=52, description="Number of occurrences")
    after: Optional[datetime] = Field(
        None, description="Exclusive lower bound; defaults to now"
    )


class JoinRequest(BaseModel):
    # Clients may echo their cached countdown state; admission ignores it
    can_join: Optional[bool] = Field(None, description="Client-side view, ignored")


class CompleteRequest(BaseModel):
    summary: str = Field(
        ..., min_length=1, max_length=10000, description="Session summary"
    )

    @field_validator("summary")
    @classmethod
    def validate_summary(cls: type["CompleteRequest"], v: str) -> str:
        if not v.strip():
            raise ValueError("Summary cannot be empty")
        return v.strip()


class TimeRemainingResponse(BaseModel):
    seconds: int
    days: int
    hours: int
    minutes: int
    message: str


class ClassificationResponse(BaseModel):
    status: SessionState
    can_join: bool
    time_remaining: TimeRemainingResponse

    @classmethod
    def from_classification(
        cls, classification: Classification
    ) -> "ClassificationResponse":
        remaining = describe_time_remaining(classification.time_remaining)
        return cls(
            status=classification.status,
            can_join=classification.can_join,
            time_remaining=TimeRemainingResponse(
                seconds=max(int(classification.time_remaining.total_seconds()), 0),
                days=remaining.days,
                hours=remaining.hours,
                minutes=remaining.minutes,
                message=remaining.message,
            ),
        )


class ScheduleResponse(BaseModel):
    """Schema for schedule responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    kind: ScheduleKind
    frequency: str
    time_of_day: str
    days: List[str]
    timezone: str
    anchor_day: Optional[int] = None
    next_occurrence: datetime
    occurrence_id: str
    status: ScheduleStatus
    last_completed_summary: Optional[str] = None
    created_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    next: Optional[ClassificationResponse] = Field(
        None, description="Classification of the next occurrence"
    )

    @classmethod
    def from_schedule(
        cls,
        schedule: SessionSchedule,
        classification: Optional[Classification] = None,
    ) -> "ScheduleResponse":
        response = cls.model_validate(schedule)
        return response.model_copy(
            update={
                "next_occurrence": as_utc(schedule.next_occurrence),
                "created_at": _utc(schedule.created_at),
                "cancelled_at": _utc(schedule.cancelled_at),
                "next": (
                    ClassificationResponse.from_classification(classification)
                    if classification is not None
                    else None
                ),
            }
        )


class SessionContextResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    occurrence_id: str
    schedule_id: UUID
    user_id: str
    scheduled_at: datetime
    joined_at: Optional[datetime] = None
    status: ContextStatus
    summary: Optional[str] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_context(cls, context: SessionContext) -> "SessionContextResponse":
        response = cls.model_validate(context)
        return response.model_copy(
            update={
                "scheduled_at": as_utc(context.scheduled_at),
                "joined_at": _utc(context.joined_at),
                "completed_at": _utc(context.completed_at),
            }
        )


class OccurrenceResponse(BaseModel):
    occurrence_id: str
    schedule_id: UUID
    kind: ScheduleKind
    scheduled_at: datetime
    timezone: str
    state: ClassificationResponse
    session: Optional[SessionContextResponse] = None


class OccurrenceSummary(BaseModel):
    id: str
    scheduled_at: datetime


class OccurrenceListResponse(BaseModel):
    schedule_id: UUID
    start: datetime
    end: datetime
    occurrences: List[OccurrenceSummary]
    truncated: bool = False


class PreviewResponse(BaseModel):
    timezone: str
    occurrences: List[datetime]


class JoinResponse(BaseModel):
    occurrence_id: str
    created: bool
    session: SessionContextResponse
    next_occurrence: Optional[datetime] = None


class InstantSessionResponse(BaseModel):
    schedule: ScheduleResponse
    session: SessionContextResponse
    reused: bool


class UpcomingResponse(BaseModel):
    sessions: List[OccurrenceResponse]


class HistoryResponse(BaseModel):
    sessions: List[SessionContextResponse]
    total: int
    page: int
    limit: int
    has_more: bool


class CleanupResponse(BaseModel):
    deleted: int
