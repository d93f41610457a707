"""
Session lifecycle: the join-window state machine.

An occurrence moves through upcoming -> starting_soon -> ready -> expired purely
as time passes. Two explicit transitions leave that line: join (ready ->
active) and cancel (upcoming/starting_soon/ready -> cancelled). Expired,
cancelled and active are terminal for an occurrence.

``classify`` is pure and total. Presentation clients may call it every tick for
countdowns; admission recomputes it with the server clock before granting a
join, so a client's view is only ever advisory.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Event, Thread
from typing import Callable, Dict, FrozenSet, Optional

from services.common.logging_config import get_logger
from services.sessions.services.clock import Clock

logger = get_logger(__name__)

JOIN_WINDOW = timedelta(hours=1)
STARTING_SOON = timedelta(minutes=10)


class SessionState(str, enum.Enum):
    upcoming = "upcoming"
    starting_soon = "starting_soon"
    ready = "ready"
    expired = "expired"
    active = "active"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[SessionState] = frozenset(
    {SessionState.expired, SessionState.active, SessionState.cancelled}
)

# Explicit (non time-driven) transitions
_ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.upcoming: frozenset({SessionState.cancelled}),
    SessionState.starting_soon: frozenset({SessionState.cancelled}),
    SessionState.ready: frozenset({SessionState.active, SessionState.cancelled}),
}


@dataclass(frozen=True)
class Classification:
    status: SessionState
    time_remaining: timedelta
    can_join: bool


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def classify(
    scheduled_at: datetime,
    now: datetime,
    join_window: timedelta = JOIN_WINDOW,
    starting_soon: timedelta = STARTING_SOON,
) -> Classification:
    """
    Classify an occurrence scheduled at ``scheduled_at`` as seen at ``now``.

    For ``ready`` the remaining time counts down to the end of the join window;
    for ``upcoming`` and ``starting_soon`` it counts down to the start.
    """
    elapsed = _as_utc(now) - _as_utc(scheduled_at)

    if elapsed >= join_window:
        return Classification(SessionState.expired, timedelta(0), False)
    if elapsed >= timedelta(0):
        return Classification(SessionState.ready, join_window - elapsed, True)

    delta = -elapsed
    if delta <= starting_soon:
        return Classification(SessionState.starting_soon, delta, False)
    return Classification(SessionState.upcoming, delta, False)


def can_transition(current: SessionState, target: SessionState) -> bool:
    """Whether an explicit join/cancel may move ``current`` to ``target``."""
    return target in _ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class TimeRemaining:
    days: int
    hours: int
    minutes: int
    message: str


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count != 1 else ''} remaining"


def describe_time_remaining(remaining: timedelta) -> TimeRemaining:
    """Break a positive duration into days/hours/minutes with a display message."""
    total_minutes = max(int(remaining.total_seconds() // 60), 0)
    days, rest = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rest, 60)

    if days > 0:
        message = _plural(days, "day")
    elif hours > 0:
        message = _plural(hours, "hour")
    else:
        message = _plural(minutes, "minute")
    return TimeRemaining(days=days, hours=hours, minutes=minutes, message=message)


class SessionCountdown:
    """
    Per-instance ticker that re-evaluates ``classify`` on a fixed interval.

    Each countdown owns its own thread and stop event; nothing is shared
    between instances. ``stop()`` must be called on disposal (or use the
    instance as a context manager).
    """

    def __init__(
        self,
        scheduled_at: datetime,
        clock: Clock,
        on_tick: Callable[[Classification], None],
        interval_seconds: float = 1.0,
        join_window: timedelta = JOIN_WINDOW,
        starting_soon: timedelta = STARTING_SOON,
    ) -> None:
        self.scheduled_at = scheduled_at
        self.clock = clock
        self.on_tick = on_tick
        self.interval_seconds = interval_seconds
        self.join_window = join_window
        self.starting_soon = starting_soon
        self.last: Optional[Classification] = None
        self._stop = Event()
        self._thread: Optional[Thread] = None

    def evaluate(self) -> Classification:
        self.last = classify(
            self.scheduled_at, self.clock.now(), self.join_window, self.starting_soon
        )
        return self.last

    def start(self) -> "SessionCountdown":
        if self._thread and self._thread.is_alive():
            return self
        self._stop.clear()
        self._thread = Thread(target=self._loop, daemon=True)
        self._thread.start()
        return self

    def _loop(self) -> None:
        while not self._stop.is_set():
            classification = self.evaluate()
            try:
                self.on_tick(classification)
            except Exception as e:
                logger.error(f"Countdown tick callback failed: {e}")
            # Expired is final; no further ticks can change the state
            if classification.status is SessionState.expired:
                break
            self._stop.wait(self.interval_seconds)

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> "SessionCountdown":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
