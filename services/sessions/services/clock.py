"""
Injectable time source.

Everything that needs "now" takes a Clock so classification and recurrence can
be evaluated against arbitrary instants in tests.
"""

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """A manually driven clock for tests and simulations."""

    def __init__(self, instant: datetime) -> None:
        self._lock = Lock()
        self._instant = _ensure_aware(instant)

    def now(self) -> datetime:
        with self._lock:
            return self._instant

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._instant = _ensure_aware(instant)

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new instant."""
        with self._lock:
            self._instant = self._instant + timedelta(**delta)
            return self._instant


def _ensure_aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant
