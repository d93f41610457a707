"""
Session context provider keyed by occurrence id.

Creation is idempotent: the first caller for an occurrence creates the
context, later callers get the same row back. Within a process a lock
serializes get-or-create; across processes the unique constraint on
``session_contexts.occurrence_id`` decides the winner.
"""

import uuid
from threading import Lock
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from services.common.logging_config import get_logger
from services.sessions.models import ContextStatus, SessionContext, get_session
from services.sessions.services.clock import Clock, SystemClock
from services.sessions.services.schedule_store import SessionOccurrence, as_utc

logger = get_logger(__name__)


class SessionContextProvider:
    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()
        self._lock = Lock()

    def get(self, occurrence_id: str) -> Optional[SessionContext]:
        with get_session() as session:
            return session.scalars(
                select(SessionContext).where(
                    SessionContext.occurrence_id == occurrence_id
                )
            ).first()

    def get_or_create(
        self, occurrence: SessionOccurrence, user_id: str
    ) -> Tuple[SessionContext, bool]:
        """Return ``(context, created)`` for ``occurrence``."""
        with self._lock:
            existing = self.get(occurrence.id)
            if existing is not None:
                return existing, False

            try:
                with get_session() as session:
                    context = SessionContext(
                        occurrence_id=occurrence.id,
                        schedule_id=occurrence.schedule_id,
                        user_id=user_id,
                        scheduled_at=as_utc(occurrence.scheduled_at),
                        joined_at=self.clock.now(),
                        status=ContextStatus.active,
                    )
                    session.add(context)
            except IntegrityError:
                # Another process created it first; attach to theirs
                winner = self.get(occurrence.id)
                if winner is None:
                    raise
                return winner, False

        logger.info(
            "Session context created",
            occurrence_id=occurrence.id,
            schedule_id=str(occurrence.schedule_id),
        )
        return context, True

    def latest_for_schedule(self, schedule_id: uuid.UUID) -> Optional[SessionContext]:
        with get_session() as session:
            return session.scalars(
                select(SessionContext)
                .where(SessionContext.schedule_id == schedule_id)
                .order_by(SessionContext.scheduled_at.desc())
            ).first()

    def set_status(
        self,
        occurrence_id: str,
        status: ContextStatus,
        summary: Optional[str] = None,
    ) -> Optional[SessionContext]:
        with get_session() as session:
            context = session.scalars(
                select(SessionContext).where(
                    SessionContext.occurrence_id == occurrence_id
                )
            ).first()
            if context is None:
                return None
            context.status = status
            if summary is not None:
                context.summary = summary
            if status is ContextStatus.completed:
                context.completed_at = self.clock.now()
            return context

    def history(
        self, user_id: str, limit: int, page: int = 1
    ) -> Tuple[List[SessionContext], int]:
        """Completed sessions for ``user_id``, newest first, plus the total count."""
        criteria = (
            SessionContext.user_id == user_id,
            SessionContext.status == ContextStatus.completed,
        )
        with get_session() as session:
            total = session.scalar(
                select(func.count()).select_from(SessionContext).where(*criteria)
            )
            rows = list(
                session.scalars(
                    select(SessionContext)
                    .where(*criteria)
                    .order_by(
                        SessionContext.completed_at.desc(),
                        SessionContext.scheduled_at.desc(),
                    )
                    .limit(limit)
                    .offset((max(page, 1) - 1) * limit)
                )
            )
        return rows, int(total or 0)
