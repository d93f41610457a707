import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.sessions.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


OPEN_RECURRING = "kind = 'recurring' AND status IN ('scheduled', 'active')"


class ScheduleStatus(str, enum.Enum):
    scheduled = "scheduled"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class ScheduleKind(str, enum.Enum):
    recurring = "recurring"
    instant = "instant"


class ContextStatus(str, enum.Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class SessionSchedule(Base):
    """One user's schedule plus the pointer to its next occurrence."""

    __tablename__ = "session_schedules"
    __table_args__ = (
        # At most one open recurring schedule per user, across processes
        Index(
            "uq_session_schedules_open_recurring",
            "user_id",
            unique=True,
            sqlite_where=text(OPEN_RECURRING),
            postgresql_where=text(OPEN_RECURRING),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    kind: Mapped[ScheduleKind] = mapped_column(
        Enum(ScheduleKind), default=ScheduleKind.recurring, nullable=False
    )
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    time_of_day: Mapped[str] = mapped_column(String(5), nullable=False)
    days: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    anchor_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_occurrence: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    occurrence_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    status: Mapped[ScheduleStatus] = mapped_column(
        Enum(ScheduleStatus), default=ScheduleStatus.scheduled, nullable=False
    )
    last_completed_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    contexts = relationship(
        "SessionContext", back_populates="schedule", cascade="all, delete-orphan"
    )


class SessionContext(Base):
    """The live session created when an occurrence is joined."""

    __tablename__ = "session_contexts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    occurrence_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("session_schedules.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    status: Mapped[ContextStatus] = mapped_column(
        Enum(ContextStatus), default=ContextStatus.active, nullable=False
    )
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    schedule = relationship("SessionSchedule", back_populates="contexts")
