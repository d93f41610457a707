"""
Session scheduler: the mutating shell around recurrence and lifecycle.

Creates, cancels, joins and completes sessions. All time-dependent decisions
are made here with the scheduler's own clock; nothing a client reports about
an occurrence's state is trusted.

Occurrence ids are ``occ_<schedule uuid hex>_<unix seconds>`` so any id can be
traced back to its schedule and instant, including ids whose pointer has
already moved on.
"""

import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from services.common.http_errors import NotFoundError
from services.common.logging_config import get_logger
from services.sessions.errors import (
    JoinWindowClosedError,
    RecurrenceOverflowError,
    SessionStateError,
)
from services.sessions.models import (
    ContextStatus,
    ScheduleKind,
    ScheduleStatus,
    SessionContext,
    SessionSchedule,
)
from services.sessions.services.clock import Clock, SystemClock
from services.sessions.services.lifecycle import (
    Classification,
    SessionCountdown,
    SessionState,
    can_transition,
    classify,
)
from services.sessions.services.recurrence import (
    DailyRule,
    MonthlyRule,
    ScheduleRule,
    compute_next_occurrence,
    enumerate_occurrences,
    resolve_anchor,
)
from services.sessions.services.schedule_store import (
    OPEN_STATUSES,
    ScheduleStore,
    SessionOccurrence,
    as_utc,
    make_occurrence_id,
    occurrence_of,
    rule_from_schedule,
)
from services.sessions.services.session_contexts import SessionContextProvider
from services.sessions.settings import Settings, get_settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class OccurrenceView:
    """An occurrence as seen by the scheduler at one instant."""

    schedule: SessionSchedule
    occurrence: SessionOccurrence
    classification: Classification
    context: Optional[SessionContext] = None


@dataclass(frozen=True)
class JoinResult:
    context: SessionContext
    created: bool
    next_occurrence: Optional[datetime] = None


@dataclass(frozen=True)
class InstantSession:
    schedule: SessionSchedule
    context: SessionContext
    reused: bool


@dataclass(frozen=True)
class OccurrenceListing:
    schedule_id: uuid.UUID
    occurrences: List[SessionOccurrence]
    truncated: bool = False


def parse_occurrence_id(occurrence_id: str) -> Tuple[uuid.UUID, datetime]:
    """
    Split an occurrence id into its schedule id and scheduled instant.

    Only the canonical spelling is accepted, so every occurrence has exactly
    one id to key its session context on.
    """
    prefix, _, rest = occurrence_id.partition("_")
    schedule_hex, _, seconds = rest.partition("_")
    try:
        if prefix != "occ":
            raise ValueError(occurrence_id)
        schedule_id = uuid.UUID(hex=schedule_hex)
        scheduled_at = datetime.fromtimestamp(int(seconds), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        raise NotFoundError("Occurrence", occurrence_id)

    if make_occurrence_id(schedule_id, scheduled_at) != occurrence_id:
        raise NotFoundError("Occurrence", occurrence_id)
    return schedule_id, scheduled_at


class _KeyedLocks:
    """One lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: Dict[str, Tuple[Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, waiters = self._locks.get(key, (Lock(), 0))
            self._locks[key] = (lock, waiters + 1)
        try:
            with lock:
                yield
        finally:
            with self._guard:
                lock, waiters = self._locks[key]
                if waiters <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, waiters - 1)


class SessionScheduler:
    def __init__(
        self,
        store: Optional[ScheduleStore] = None,
        contexts: Optional[SessionContextProvider] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or ScheduleStore()
        self.clock = clock or SystemClock()
        self.contexts = contexts or SessionContextProvider(clock=self.clock)
        self.join_window = timedelta(minutes=self.settings.join_window_minutes)
        self.starting_soon = timedelta(minutes=self.settings.starting_soon_minutes)
        self._occurrence_locks = _KeyedLocks()

    def classify(
        self, scheduled_at: datetime, now: Optional[datetime] = None
    ) -> Classification:
        return classify(
            scheduled_at,
            now or self.clock.now(),
            join_window=self.join_window,
            starting_soon=self.starting_soon,
        )

    # Schedules

    def create_schedule(self, user_id: str, rule: ScheduleRule) -> SessionSchedule:
        """
        Create the user's recurring schedule.

        A monthly rule without an anchor is pinned to today's day-of-month in
        the rule's timezone so later recomputation keeps the same day.
        """
        now = self.clock.now()
        if isinstance(rule, MonthlyRule) and rule.anchor_day is None:
            anchor_day = resolve_anchor(rule, now)
            assert anchor_day is not None
            rule = rule.anchored(anchor_day)

        next_occurrence = compute_next_occurrence(rule, now)
        return self.store.create_if_absent(user_id, rule, next_occurrence)

    def get_schedule(self, user_id: str) -> Optional[SessionSchedule]:
        schedule = self.store.get_open_for_user(user_id)
        if schedule is None:
            return None
        return self.refresh(schedule)

    def refresh(self, schedule: SessionSchedule) -> SessionSchedule:
        """
        Bring a recurring schedule up to date with the clock.

        An ``active`` schedule whose joined session is over returns to
        ``scheduled``, and an expired pointer rolls forward to the first
        occurrence whose join window is still open.
        """
        if (
            schedule.kind is not ScheduleKind.recurring
            or schedule.status not in OPEN_STATUSES
        ):
            return schedule

        now = self.clock.now()
        if schedule.status is ScheduleStatus.active:
            context = self.contexts.latest_for_schedule(schedule.id)
            if (
                context is None
                or context.status is not ContextStatus.active
                or not self.classify(context.scheduled_at, now).can_join
            ):
                schedule = (
                    self.store.set_status(schedule.id, ScheduleStatus.scheduled)
                    or schedule
                )

        if self.classify(schedule.next_occurrence, now).status is SessionState.expired:
            next_occurrence = compute_next_occurrence(
                rule_from_schedule(schedule), now - self.join_window
            )
            if self.store.advance(schedule.id, schedule.occurrence_id, next_occurrence):
                logger.info(
                    "Expired occurrence rolled forward",
                    schedule_id=str(schedule.id),
                    expired_occurrence_id=schedule.occurrence_id,
                    next_occurrence=next_occurrence.isoformat(),
                )
            schedule = self.store.get(schedule.id) or schedule

        return schedule

    # Occurrences

    def _resolve(
        self, occurrence_id: str, user_id: Optional[str] = None
    ) -> Tuple[SessionSchedule, SessionOccurrence]:
        """
        Find the schedule that owns ``occurrence_id`` and check the id is real.

        A recurring occurrence must be an instant the rule actually produces;
        an instant session has exactly one occurrence. The schedule comes back
        refreshed, so its pointer is the occurrence that is live right now.
        """
        schedule_id, scheduled_at = parse_occurrence_id(occurrence_id)
        schedule = self.store.get(schedule_id)
        if schedule is None or (user_id is not None and schedule.user_id != user_id):
            raise NotFoundError("Occurrence", occurrence_id)

        schedule = self.refresh(schedule)
        if schedule.occurrence_id == occurrence_id:
            return schedule, occurrence_of(schedule)

        if schedule.kind is ScheduleKind.instant:
            raise NotFoundError("Occurrence", occurrence_id)

        expected = compute_next_occurrence(
            rule_from_schedule(schedule), scheduled_at - timedelta(seconds=1)
        )
        if as_utc(expected) != scheduled_at:
            raise NotFoundError("Occurrence", occurrence_id)

        return schedule, SessionOccurrence(
            id=occurrence_id, schedule_id=schedule.id, scheduled_at=scheduled_at
        )

    def _view(
        self,
        schedule: SessionSchedule,
        occurrence: SessionOccurrence,
        context: Optional[SessionContext],
        now: datetime,
    ) -> OccurrenceView:
        classification = self.classify(occurrence.scheduled_at, now)

        if context is not None:
            if context.status is ContextStatus.cancelled:
                classification = Classification(
                    SessionState.cancelled, timedelta(0), False
                )
            else:
                joinable = context.status is ContextStatus.active and (
                    schedule.kind is ScheduleKind.instant or classification.can_join
                )
                classification = Classification(
                    SessionState.active, classification.time_remaining, joinable
                )
        elif schedule.status is ScheduleStatus.cancelled:
            classification = Classification(SessionState.cancelled, timedelta(0), False)

        return OccurrenceView(schedule, occurrence, classification, context)

    def describe_occurrence(
        self, occurrence_id: str, user_id: Optional[str] = None
    ) -> OccurrenceView:
        """Authoritative state of one occurrence as of the scheduler's clock."""
        schedule, occurrence = self._resolve(occurrence_id, user_id)
        return self._view(
            schedule, occurrence, self.contexts.get(occurrence_id), self.clock.now()
        )

    def countdown(
        self,
        occurrence_id: str,
        on_tick: Callable[[Classification], None],
        user_id: Optional[str] = None,
    ) -> SessionCountdown:
        """Unstarted ticker for one occurrence on this scheduler's clock."""
        _, occurrence = self._resolve(occurrence_id, user_id)
        return SessionCountdown(
            occurrence.scheduled_at,
            self.clock,
            on_tick,
            interval_seconds=self.settings.countdown_tick_seconds,
            join_window=self.join_window,
            starting_soon=self.starting_soon,
        )

    def join(self, occurrence_id: str, user_id: Optional[str] = None) -> JoinResult:
        """
        Join an occurrence, creating its session context on first entry.

        The join window is re-checked here regardless of what the caller last
        saw. Repeated joins while the context is live attach to the same
        context; only the first one advances the schedule pointer.
        """
        with self._occurrence_locks.hold(occurrence_id):
            schedule, occurrence = self._resolve(occurrence_id, user_id)
            now = self.clock.now()
            classification = self.classify(occurrence.scheduled_at, now)

            existing = self.contexts.get(occurrence_id)
            if existing is not None:
                if existing.status is not ContextStatus.active:
                    raise SessionStateError(
                        f"Session for occurrence {occurrence_id} is {existing.status.value}",
                        current=existing.status.value,
                        requested=SessionState.active.value,
                    )
                if (
                    schedule.kind is ScheduleKind.recurring
                    and not classification.can_join
                ):
                    raise JoinWindowClosedError(
                        occurrence_id,
                        classification.status.value,
                        occurrence.scheduled_at,
                    )
                logger.info(
                    "Attached to existing session",
                    occurrence_id=occurrence_id,
                    context_id=str(existing.id),
                )
                return JoinResult(existing, created=False)

            if schedule.status is ScheduleStatus.cancelled:
                raise SessionStateError(
                    "Schedule has been cancelled",
                    current=SessionState.cancelled.value,
                    requested=SessionState.active.value,
                )
            if not can_transition(classification.status, SessionState.active):
                logger.info(
                    "Join rejected outside join window",
                    occurrence_id=occurrence_id,
                    status=classification.status.value,
                )
                raise JoinWindowClosedError(
                    occurrence_id, classification.status.value, occurrence.scheduled_at
                )
            if occurrence_id != schedule.occurrence_id:
                raise SessionStateError(
                    f"Occurrence {occurrence_id} is no longer the next occurrence",
                    current=classification.status.value,
                    requested=SessionState.active.value,
                )

            context, created = self.contexts.get_or_create(
                occurrence, schedule.user_id
            )

            next_occurrence = compute_next_occurrence(
                rule_from_schedule(schedule), occurrence.scheduled_at
            )
            self.store.advance(
                schedule.id,
                occurrence_id,
                next_occurrence,
                status=ScheduleStatus.active,
            )
            logger.info(
                "Occurrence joined",
                occurrence_id=occurrence_id,
                schedule_id=str(schedule.id),
                user_id=schedule.user_id,
                next_occurrence=next_occurrence.isoformat(),
            )
            return JoinResult(context, created, next_occurrence)

    def cancel(self, target: str, user_id: Optional[str] = None) -> SessionSchedule:
        """
        Cancel by schedule id or occurrence id.

        Cancelling a recurring occurrence cancels the whole schedule. An id the
        pointer has already moved past is judged by the schedule's next
        occurrence. Already cancelled schedules are returned unchanged.
        """
        if target.startswith("occ_"):
            return self._cancel_occurrence(target, user_id)

        try:
            schedule_id = uuid.UUID(target)
        except ValueError:
            raise NotFoundError("Schedule", target)

        schedule = self.store.get(schedule_id)
        if schedule is None or (user_id is not None and schedule.user_id != user_id):
            raise NotFoundError("Schedule", target)
        return self._cancel_schedule(schedule)

    def _cancel_occurrence(
        self, occurrence_id: str, user_id: Optional[str]
    ) -> SessionSchedule:
        with self._occurrence_locks.hold(occurrence_id):
            schedule, occurrence = self._resolve(occurrence_id, user_id)
            if schedule.status is ScheduleStatus.cancelled:
                return schedule

            context = self.contexts.get(occurrence_id)
            if context is not None:
                if (
                    schedule.kind is ScheduleKind.instant
                    and context.status is ContextStatus.active
                ):
                    return self._cancel_schedule(schedule)
                raise SessionStateError(
                    f"Occurrence {occurrence_id} has already been joined",
                    current=SessionState.active.value,
                    requested=SessionState.cancelled.value,
                )

            if schedule.kind is ScheduleKind.recurring and occurrence.scheduled_at < (
                as_utc(schedule.next_occurrence)
            ):
                # Superseded by the rolled-forward pointer; the live one decides
                occurrence = occurrence_of(schedule)

            classification = self.classify(occurrence.scheduled_at)
            if not can_transition(classification.status, SessionState.cancelled):
                raise SessionStateError(
                    f"Occurrence {occurrence_id} cannot be cancelled while "
                    f"{classification.status.value}",
                    current=classification.status.value,
                    requested=SessionState.cancelled.value,
                )
            return self._cancel_schedule(schedule)

    def _cancel_schedule(self, schedule: SessionSchedule) -> SessionSchedule:
        if schedule.status is ScheduleStatus.cancelled:
            return schedule
        if schedule.status is ScheduleStatus.completed:
            raise SessionStateError(
                "Completed sessions cannot be cancelled",
                current=ScheduleStatus.completed.value,
                requested=ScheduleStatus.cancelled.value,
            )

        if schedule.kind is ScheduleKind.instant:
            self.contexts.set_status(schedule.occurrence_id, ContextStatus.cancelled)

        cancelled = self.store.set_status(schedule.id, ScheduleStatus.cancelled)
        if cancelled is None:
            raise NotFoundError("Schedule", str(schedule.id))
        logger.info(
            "Schedule cancelled",
            schedule_id=str(schedule.id),
            kind=schedule.kind.value,
            user_id=schedule.user_id,
        )
        return cancelled

    def start_instant(self, user_id: str) -> InstantSession:
        """
        Reuse the user's live instant session or start a new one now.

        The reuse check and the creation run under one per-user lock so
        concurrent starts end up sharing a single session.
        """
        with self._occurrence_locks.hold(f"instant:{user_id}"):
            existing = self.store.get_open_for_user(user_id, kind=ScheduleKind.instant)
            if existing is not None:
                context = self.contexts.get(existing.occurrence_id)
                if context is not None and context.status is ContextStatus.active:
                    logger.info(
                        "Reusing active instant session",
                        schedule_id=str(existing.id),
                        user_id=user_id,
                    )
                    return InstantSession(existing, context, reused=True)

            now = self.clock.now().astimezone(timezone.utc).replace(microsecond=0)
            rule = DailyRule(time=time(now.hour, now.minute), timezone="UTC")
            schedule = self.store.create_if_absent(
                user_id,
                rule,
                now,
                kind=ScheduleKind.instant,
                status=ScheduleStatus.active,
            )
            context, _ = self.contexts.get_or_create(occurrence_of(schedule), user_id)

        logger.info(
            "Instant session started",
            schedule_id=str(schedule.id),
            occurrence_id=schedule.occurrence_id,
            user_id=user_id,
        )
        return InstantSession(schedule, context, reused=False)

    def complete(
        self, occurrence_id: str, summary: str, user_id: Optional[str] = None
    ) -> SessionContext:
        """Close a live session and record its summary on the schedule."""
        with self._occurrence_locks.hold(occurrence_id):
            context = self.contexts.get(occurrence_id)
            if context is None or (user_id is not None and context.user_id != user_id):
                raise NotFoundError("Session", occurrence_id)
            if context.status is not ContextStatus.active:
                raise SessionStateError(
                    f"Session for occurrence {occurrence_id} is not active",
                    current=context.status.value,
                    requested=ContextStatus.completed.value,
                )

            completed = self.contexts.set_status(
                occurrence_id, ContextStatus.completed, summary=summary
            )
            if completed is None:
                raise NotFoundError("Session", occurrence_id)

            schedule = self.store.get(context.schedule_id)
            if schedule is not None:
                if schedule.kind is ScheduleKind.instant:
                    status = ScheduleStatus.completed
                elif schedule.status is ScheduleStatus.active:
                    status = ScheduleStatus.scheduled
                else:
                    status = schedule.status
                self.store.set_status(
                    schedule.id, status, last_completed_summary=summary
                )

            logger.info(
                "Session completed",
                occurrence_id=occurrence_id,
                context_id=str(completed.id),
                user_id=completed.user_id,
            )
            return completed

    # Queries

    def enumerate_for_user(
        self, user_id: str, start: datetime, end: datetime
    ) -> OccurrenceListing:
        """
        Occurrences of the user's schedule inside ``[start, end]``.

        Ranges holding more than the configured cap come back truncated.
        """
        schedule = self.get_schedule(user_id)
        if schedule is None:
            raise NotFoundError("Schedule", user_id)

        rule = rule_from_schedule(schedule)
        truncated = False
        try:
            instants = list(
                enumerate_occurrences(
                    rule, start, end, cap=self.settings.enumeration_cap
                )
            )
        except RecurrenceOverflowError as e:
            logger.warning(
                "Occurrence enumeration truncated",
                schedule_id=str(schedule.id),
                cap=e.cap,
            )
            instants = list(e.occurrences)
            truncated = True

        occurrences = [
            SessionOccurrence(
                id=make_occurrence_id(schedule.id, instant),
                schedule_id=schedule.id,
                scheduled_at=instant,
            )
            for instant in instants
        ]
        return OccurrenceListing(schedule.id, occurrences, truncated)

    def preview(
        self, rule: ScheduleRule, count: int = 5, after: Optional[datetime] = None
    ) -> List[datetime]:
        """Next ``count`` occurrences of an unsaved rule."""
        after = after or self.clock.now()
        anchor = resolve_anchor(rule, after)
        occurrences: List[datetime] = []
        for _ in range(max(min(count, self.settings.enumeration_cap), 0)):
            after = compute_next_occurrence(rule, after, anchor)
            occurrences.append(after)
        return occurrences

    def upcoming(self, user_id: str, limit: Optional[int] = None) -> List[OccurrenceView]:
        """Newest live session of each kind, soonest first."""
        limit = limit if limit is not None else self.settings.upcoming_default_limit
        now = self.clock.now()
        views: List[OccurrenceView] = []

        recurring = self.get_schedule(user_id)
        if recurring is not None:
            occurrence = occurrence_of(recurring)
            views.append(
                self._view(
                    recurring, occurrence, self.contexts.get(occurrence.id), now
                )
            )

        instant = self.store.get_open_for_user(user_id, kind=ScheduleKind.instant)
        if instant is not None:
            context = self.contexts.get(instant.occurrence_id)
            if context is not None and context.status is ContextStatus.active:
                views.append(
                    self._view(instant, occurrence_of(instant), context, now)
                )

        views = [
            view
            for view in views
            if view.classification.status is not SessionState.expired
        ]
        views.sort(key=lambda view: view.occurrence.scheduled_at)
        return views[: max(limit, 0)]

    def history(
        self, user_id: str, limit: Optional[int] = None, page: int = 1
    ) -> Tuple[List[SessionContext], int]:
        limit = limit if limit is not None else self.settings.history_page_size
        return self.contexts.history(user_id, limit=limit, page=page)

    def cleanup_instant_duplicates(self, user_id: str) -> int:
        return self.store.delete_instant_duplicates(user_id)
