"""
Persistence for session schedules.

A user owns at most one non-cancelled recurring schedule. Creation is
create-if-absent under a lock with the existence check repeated inside the
write transaction, backed by a partial unique index for writers in other
processes. Pointer moves are compare-and-set on the current
occurrence id so two writers can never advance the same occurrence twice.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from services.common.logging_config import get_logger
from services.sessions.errors import DuplicateScheduleError
from services.sessions.models import (
    ScheduleKind,
    ScheduleStatus,
    SessionSchedule,
    get_session,
)
from services.sessions.services.recurrence import (
    MonthlyRule,
    ScheduleRule,
    WeeklyRule,
    build_rule,
    format_time,
)

logger = get_logger(__name__)

OPEN_STATUSES = (ScheduleStatus.scheduled, ScheduleStatus.active)


def as_utc(instant: datetime) -> datetime:
    """Normalize to aware UTC; SQLite hands back naive values."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def make_occurrence_id(schedule_id: uuid.UUID, scheduled_at: datetime) -> str:
    return f"occ_{schedule_id.hex}_{int(as_utc(scheduled_at).timestamp())}"


@dataclass(frozen=True)
class SessionOccurrence:
    id: str
    schedule_id: uuid.UUID
    scheduled_at: datetime


def occurrence_of(schedule: SessionSchedule) -> SessionOccurrence:
    return SessionOccurrence(
        id=schedule.occurrence_id,
        schedule_id=schedule.id,
        scheduled_at=as_utc(schedule.next_occurrence),
    )


def rule_from_schedule(schedule: SessionSchedule) -> ScheduleRule:
    return build_rule(
        schedule.frequency,
        schedule.time_of_day,
        days=schedule.days or (),
        timezone_name=schedule.timezone,
        anchor_day=schedule.anchor_day,
    )


class ScheduleStore:
    """SQLAlchemy-backed store for SessionSchedule rows."""

    def __init__(self) -> None:
        self._create_lock = Lock()

    def create_if_absent(
        self,
        user_id: str,
        rule: ScheduleRule,
        next_occurrence: datetime,
        kind: ScheduleKind = ScheduleKind.recurring,
        status: ScheduleStatus = ScheduleStatus.scheduled,
    ) -> SessionSchedule:
        """
        Persist a new schedule.

        Raises DuplicateScheduleError if ``kind`` is recurring and the user
        already has a non-cancelled recurring schedule. The lock covers
        callers in this process; the partial unique index on open recurring
        schedules covers writers in other processes.
        """
        try:
            with self._create_lock, get_session() as session:
                if kind is ScheduleKind.recurring:
                    existing = session.scalars(
                        select(SessionSchedule).where(
                            SessionSchedule.user_id == user_id,
                            SessionSchedule.kind == ScheduleKind.recurring,
                            SessionSchedule.status.in_(OPEN_STATUSES),
                        )
                    ).first()
                    if existing is not None:
                        raise DuplicateScheduleError(user_id, str(existing.id))

                schedule_id = uuid.uuid4()
                schedule = SessionSchedule(
                    id=schedule_id,
                    user_id=user_id,
                    kind=kind,
                    frequency=rule.frequency.value,
                    time_of_day=format_time(rule.time),
                    days=(
                        sorted(day.value for day in rule.days)
                        if isinstance(rule, WeeklyRule)
                        else []
                    ),
                    timezone=rule.timezone,
                    anchor_day=(
                        rule.anchor_day if isinstance(rule, MonthlyRule) else None
                    ),
                    next_occurrence=as_utc(next_occurrence),
                    occurrence_id=make_occurrence_id(schedule_id, next_occurrence),
                    status=status,
                )
                session.add(schedule)
        except IntegrityError:
            if kind is not ScheduleKind.recurring:
                raise
            # Another process committed its schedule between our check and insert
            winner = self.get_open_for_user(user_id)
            raise DuplicateScheduleError(user_id, str(winner.id) if winner else None)

        logger.info(
            "Schedule created",
            schedule_id=str(schedule.id),
            kind=kind.value,
            frequency=schedule.frequency,
            next_occurrence=schedule.next_occurrence.isoformat(),
        )
        return schedule

    def get(self, schedule_id: uuid.UUID) -> Optional[SessionSchedule]:
        with get_session() as session:
            return session.get(SessionSchedule, schedule_id)

    def get_open_for_user(
        self, user_id: str, kind: ScheduleKind = ScheduleKind.recurring
    ) -> Optional[SessionSchedule]:
        with get_session() as session:
            return session.scalars(
                select(SessionSchedule)
                .where(
                    SessionSchedule.user_id == user_id,
                    SessionSchedule.kind == kind,
                    SessionSchedule.status.in_(OPEN_STATUSES),
                )
                .order_by(SessionSchedule.created_at.desc())
            ).first()

    def advance(
        self,
        schedule_id: uuid.UUID,
        expected_occurrence_id: str,
        next_occurrence: datetime,
        status: Optional[ScheduleStatus] = None,
    ) -> bool:
        """
        Move the pointer if it still refers to ``expected_occurrence_id``.

        Returns False when another writer already moved it.
        """
        values = {
            "next_occurrence": as_utc(next_occurrence),
            "occurrence_id": make_occurrence_id(schedule_id, next_occurrence),
            "updated_at": datetime.now(timezone.utc),
        }
        if status is not None:
            values["status"] = status

        with get_session() as session:
            result = session.execute(
                update(SessionSchedule)
                .where(
                    SessionSchedule.id == schedule_id,
                    SessionSchedule.occurrence_id == expected_occurrence_id,
                )
                .values(**values)
            )
            moved = result.rowcount == 1

        if moved:
            logger.info(
                "Schedule pointer advanced",
                schedule_id=str(schedule_id),
                previous_occurrence_id=expected_occurrence_id,
                next_occurrence=as_utc(next_occurrence).isoformat(),
            )
        return moved

    def set_status(
        self,
        schedule_id: uuid.UUID,
        status: ScheduleStatus,
        last_completed_summary: Optional[str] = None,
    ) -> Optional[SessionSchedule]:
        with get_session() as session:
            schedule = session.get(SessionSchedule, schedule_id)
            if schedule is None:
                return None
            schedule.status = status
            if last_completed_summary is not None:
                schedule.last_completed_summary = last_completed_summary
            if status is ScheduleStatus.cancelled:
                schedule.cancelled_at = datetime.now(timezone.utc)
            return schedule

    def delete_instant_duplicates(self, user_id: str) -> int:
        """Keep the newest instant schedule for ``user_id`` and delete the rest."""
        with get_session() as session:
            instants = list(
                session.scalars(
                    select(SessionSchedule)
                    .where(
                        SessionSchedule.user_id == user_id,
                        SessionSchedule.kind == ScheduleKind.instant,
                    )
                    .order_by(SessionSchedule.created_at.desc())
                )
            )
            for schedule in instants[1:]:
                session.delete(schedule)
            deleted = max(len(instants) - 1, 0)

        if deleted:
            logger.info(
                "Removed duplicate instant sessions", user_id=user_id, deleted=deleted
            )
        return deleted
