"""
Recurrence engine for scheduled sessions.

Turns a validated schedule rule plus a reference instant into the next due
occurrence, and enumerates occurrences inside a bounded range. Everything in
this module is pure: no clock reads, no I/O, no shared mutable state.

Monthly anchors that do not exist in a month (e.g. the 31st in April) are
clamped to the last day of that month.
"""

import calendar
import enum
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import FrozenSet, Iterable, Iterator, List, Optional, Union

import pytz

from services.sessions.errors import InvalidRuleError, RecurrenceOverflowError

DEFAULT_ENUMERATION_CAP = 366

_TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


class Frequency(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class Weekday(str, enum.Enum):
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"
    sunday = "sunday"

    @property
    def index(self) -> int:
        """Python weekday number (Monday == 0)."""
        return list(Weekday).index(self)


def _validate_timezone(name: str) -> None:
    if not name or name not in pytz.all_timezones_set:
        raise InvalidRuleError("Unknown timezone", field="timezone", value=name)


def _validate_time(value: time) -> None:
    if not isinstance(value, time):
        raise InvalidRuleError("Schedule time is required", field="time", value=value)


def _validate_anchor(anchor_day: int) -> None:
    if isinstance(anchor_day, bool) or not isinstance(anchor_day, int):
        raise InvalidRuleError(
            "Anchor day must be an integer", field="anchor_day", value=anchor_day
        )
    if not 1 <= anchor_day <= 31:
        raise InvalidRuleError(
            "Anchor day must be between 1 and 31", field="anchor_day", value=anchor_day
        )


@dataclass(frozen=True)
class DailyRule:
    time: time
    timezone: str = "UTC"

    frequency = Frequency.daily

    def __post_init__(self) -> None:
        _validate_time(self.time)
        _validate_timezone(self.timezone)


@dataclass(frozen=True)
class WeeklyRule:
    time: time
    days: FrozenSet[Weekday] = field(default_factory=frozenset)
    timezone: str = "UTC"

    frequency = Frequency.weekly

    def __post_init__(self) -> None:
        _validate_time(self.time)
        _validate_timezone(self.timezone)
        if not self.days:
            raise InvalidRuleError(
                "Weekly schedules need at least one day", field="days"
            )
        try:
            weekdays = frozenset(Weekday(d) for d in self.days)
        except ValueError:
            raise InvalidRuleError(
                "Invalid weekday in days", field="days", value=list(self.days)
            )
        object.__setattr__(self, "days", weekdays)


@dataclass(frozen=True)
class MonthlyRule:
    time: time
    timezone: str = "UTC"
    anchor_day: Optional[int] = None

    frequency = Frequency.monthly

    def __post_init__(self) -> None:
        _validate_time(self.time)
        _validate_timezone(self.timezone)
        if self.anchor_day is not None:
            _validate_anchor(self.anchor_day)

    def anchored(self, anchor_day: int) -> "MonthlyRule":
        return MonthlyRule(time=self.time, timezone=self.timezone, anchor_day=anchor_day)


ScheduleRule = Union[DailyRule, WeeklyRule, MonthlyRule]


def parse_time(value: str) -> time:
    """Parse a 24-hour ``HH:MM`` string."""
    match = _TIME_PATTERN.match(value or "")
    if not match:
        raise InvalidRuleError(
            "Invalid time format. Use HH:MM (24-hour format)", field="time", value=value
        )
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def format_time(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def build_rule(
    frequency: Union[Frequency, str],
    time_of_day: Union[time, str, None],
    days: Optional[Iterable[Union[Weekday, str]]] = None,
    timezone_name: str = "UTC",
    anchor_day: Optional[int] = None,
) -> ScheduleRule:
    """
    Validate raw schedule fields and build the matching rule variant.

    Raises InvalidRuleError for an unknown frequency, a missing or malformed
    time, an empty weekly day set, days on a non-weekly rule, an anchor outside
    1-31, an anchor on a non-monthly rule, or an unknown timezone.
    """
    try:
        frequency = Frequency(frequency)
    except ValueError:
        raise InvalidRuleError(
            "Invalid frequency. Must be daily, weekly, or monthly",
            field="frequency",
            value=frequency,
        )

    if time_of_day is None or time_of_day == "":
        raise InvalidRuleError("Schedule time is required", field="time")
    if isinstance(time_of_day, str):
        time_of_day = parse_time(time_of_day)

    try:
        weekdays = frozenset(
            d if isinstance(d, Weekday) else Weekday(str(d).strip().lower())
            for d in (days or ())
        )
    except ValueError:
        raise InvalidRuleError("Invalid weekday in days", field="days", value=days)

    if frequency is not Frequency.weekly and weekdays:
        raise InvalidRuleError(
            "Days are only allowed on weekly schedules", field="days", value=days
        )
    if frequency is not Frequency.monthly and anchor_day is not None:
        raise InvalidRuleError(
            "Anchor day is only allowed on monthly schedules",
            field="anchor_day",
            value=anchor_day,
        )

    if frequency is Frequency.daily:
        return DailyRule(time=time_of_day, timezone=timezone_name)
    if frequency is Frequency.weekly:
        return WeeklyRule(time=time_of_day, days=weekdays, timezone=timezone_name)
    return MonthlyRule(time=time_of_day, timezone=timezone_name, anchor_day=anchor_day)


def _as_utc(instant: datetime) -> datetime:
    # Naive instants are taken to be UTC
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def _at(tz: pytz.BaseTzInfo, day: date, time_of_day: time) -> datetime:
    # normalize() moves times that fall in a DST gap forward onto the wall clock
    return tz.normalize(tz.localize(datetime.combine(day, time_of_day)))


def _next_daily(rule: DailyRule, tz: pytz.BaseTzInfo, after: datetime) -> datetime:
    local_day = after.astimezone(tz).date()
    candidate = _at(tz, local_day, rule.time)
    if candidate <= after:
        candidate = _at(tz, local_day + timedelta(days=1), rule.time)
    return candidate


def _next_weekly(rule: WeeklyRule, tz: pytz.BaseTzInfo, after: datetime) -> datetime:
    local_day = after.astimezone(tz).date()
    wanted = {day.index for day in rule.days}
    # Offset 7 revisits today's weekday one week later
    for offset in range(8):
        day = local_day + timedelta(days=offset)
        if day.weekday() not in wanted:
            continue
        candidate = _at(tz, day, rule.time)
        if candidate > after:
            return candidate
    raise RuntimeError(f"No weekly occurrence found after {after.isoformat()}")


def _next_monthly(
    rule: MonthlyRule, tz: pytz.BaseTzInfo, after: datetime, anchor_day: int
) -> datetime:
    local_after = after.astimezone(tz)
    year, month = local_after.year, local_after.month
    for _ in range(3):
        last_day = calendar.monthrange(year, month)[1]
        candidate = _at(tz, date(year, month, min(anchor_day, last_day)), rule.time)
        if candidate > after:
            return candidate
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    raise RuntimeError(f"No monthly occurrence found after {after.isoformat()}")


def resolve_anchor(
    rule: ScheduleRule, reference: datetime, anchor: Optional[int] = None
) -> Optional[int]:
    """
    Anchor day a monthly rule should use when evaluated from ``reference``.

    Explicit argument first, then the rule's own anchor, then the day-of-month
    of ``reference`` in the rule's timezone. Non-monthly rules have no anchor.
    """
    if not isinstance(rule, MonthlyRule):
        return None
    if anchor is not None:
        _validate_anchor(anchor)
        return anchor
    if rule.anchor_day is not None:
        return rule.anchor_day
    return _as_utc(reference).astimezone(pytz.timezone(rule.timezone)).day


def compute_next_occurrence(
    rule: ScheduleRule, after: datetime, anchor: Optional[int] = None
) -> datetime:
    """
    Return the smallest instant strictly greater than ``after`` matching ``rule``.

    The result is expressed in the rule's timezone. ``anchor`` only applies to
    monthly rules and overrides the rule's own anchor day.
    """
    after = _as_utc(after)
    tz = pytz.timezone(rule.timezone)

    if isinstance(rule, DailyRule):
        result = _next_daily(rule, tz, after)
    elif isinstance(rule, WeeklyRule):
        result = _next_weekly(rule, tz, after)
    elif isinstance(rule, MonthlyRule):
        anchor_day = resolve_anchor(rule, after, anchor)
        assert anchor_day is not None
        result = _next_monthly(rule, tz, after, anchor_day)
    else:
        raise TypeError(f"Unsupported schedule rule: {rule!r}")

    if result <= after:
        raise RuntimeError(
            f"Recurrence produced {result.isoformat()} which is not after "
            f"{after.isoformat()}"
        )
    return result


class OccurrenceRange:
    """
    Lazy, restartable sequence of occurrences inside ``[start, end]``.

    Every iteration starts from ``start`` again. When more than ``cap``
    occurrences fall in the range, iteration stops after ``cap`` of them and
    raises RecurrenceOverflowError carrying the truncated sequence.
    """

    def __init__(
        self,
        rule: ScheduleRule,
        start: datetime,
        end: datetime,
        anchor: Optional[int] = None,
        cap: int = DEFAULT_ENUMERATION_CAP,
    ) -> None:
        if cap < 1:
            raise ValueError("cap must be positive")
        self.rule = rule
        self.start = _as_utc(start)
        self.end = _as_utc(end)
        self.cap = cap
        # Fixed once so successive monthly steps share the same anchor
        self.anchor = resolve_anchor(rule, self.start, anchor)

    def __iter__(self) -> Iterator[datetime]:
        produced: List[datetime] = []
        after = self.start - timedelta(microseconds=1)
        while True:
            occurrence = compute_next_occurrence(self.rule, after, self.anchor)
            if occurrence > self.end:
                return
            if len(produced) >= self.cap:
                raise RecurrenceOverflowError(self.cap, produced)
            produced.append(occurrence)
            yield occurrence
            after = occurrence

    def to_list(self) -> List[datetime]:
        return list(self)


def enumerate_occurrences(
    rule: ScheduleRule,
    start: datetime,
    end: datetime,
    anchor: Optional[int] = None,
    cap: int = DEFAULT_ENUMERATION_CAP,
) -> OccurrenceRange:
    return OccurrenceRange(rule, start, end, anchor=anchor, cap=cap)
