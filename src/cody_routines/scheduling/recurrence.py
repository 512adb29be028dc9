"""Schedule expressions and the recurrences they describe.

A schedule expression is either a cron expression ("0 9 * * 1-5") or a
recurring phrase ("every 30 minutes", "every weekday at 08:30"). Expressions
made only of digits, ``*``, ``,``, ``-``, ``/`` and whitespace are cron;
everything else is a phrase. A bare number such as "15" therefore classifies
as cron and is rejected when the recurrence is built.

Recurrences are evaluated in the wall clock of their timezone, or in the
system timezone when none is configured.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Protocol

from croniter import CroniterBadDateError, croniter

from cody_routines.errors import RecurrenceParseError
from cody_routines.templates import local_timezone, resolve_timezone

CRON_PATTERN = re.compile(r"^[\d*,\-/\s]+$")


class ScheduleKind(Enum):
    CRON = "cron"
    INTERVAL = "interval"


def classify(expression: str) -> ScheduleKind:
    """Classify a schedule expression as cron or recurring phrase."""
    if CRON_PATTERN.match(expression.strip()):
        return ScheduleKind.CRON
    return ScheduleKind.INTERVAL


class Recurrence(Protocol):
    """Something that yields fire times."""

    kind: ScheduleKind
    expression: str
    timezone: str | None

    def next_after(self, moment: datetime) -> datetime:
        """Return the first fire time strictly after ``moment``."""
        ...


def _resolve(expression: str, timezone: str | None) -> tzinfo:
    try:
        return resolve_timezone(timezone) or local_timezone()
    except ValueError as e:
        raise RecurrenceParseError(expression, str(e)) from e


# =============================================================================
# Cron
# =============================================================================


@dataclass(frozen=True)
class CronRecurrence:
    """Five-field (or six-field, seconds first) cron expression."""

    expression: str
    timezone: str | None = None
    kind: ScheduleKind = field(default=ScheduleKind.CRON, init=False)
    _tz: tzinfo = field(  # type: ignore[assignment]
        default=None, init=False, repr=False, compare=False
    )
    _with_seconds: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        expression = " ".join(self.expression.split())
        fields = expression.split(" ")
        if len(fields) not in (5, 6):
            raise RecurrenceParseError(
                self.expression,
                f"expected 5 or 6 cron fields, got {len(fields)}",
            )
        with_seconds = len(fields) == 6
        tz = _resolve(self.expression, self.timezone)

        # croniter accepts impossible dates such as "0 0 30 2 *" and only
        # fails when asked for an occurrence, so ask for one up front.
        try:
            croniter(
                expression, datetime.now(tz), second_at_beginning=with_seconds
            ).get_next(datetime)
        except CroniterBadDateError as e:
            raise RecurrenceParseError(
                self.expression, "expression never matches a calendar date"
            ) from e
        except (ValueError, KeyError) as e:
            raise RecurrenceParseError(self.expression, str(e)) from e

        object.__setattr__(self, "expression", expression)
        object.__setattr__(self, "_with_seconds", with_seconds)
        object.__setattr__(self, "_tz", tz)

    def next_after(self, moment: datetime) -> datetime:
        itr = croniter(
            self.expression,
            moment.astimezone(self._tz),
            second_at_beginning=self._with_seconds,
        )
        return itr.get_next(datetime)


# =============================================================================
# Recurring phrases
# =============================================================================

# Unit spellings, mapped to their canonical short form
_UNITS: dict[str, str] = {
    "ms": "ms",
    "millisecond": "ms",
    "s": "s",
    "sec": "s",
    "second": "s",
    "m": "m",
    "min": "m",
    "minute": "m",
    "h": "h",
    "hr": "h",
    "hour": "h",
    "d": "d",
    "day": "d",
    "w": "w",
    "week": "w",
}

_UNIT_DELTAS: dict[str, timedelta] = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}

# Units whose "every N <unit>" phrases line up with the clock
_CLOCK_UNITS = frozenset({"s", "m", "h", "d"})

_WEEKDAYS: dict[str, int] = {
    "mon": 0,
    "monday": 0,
    "tue": 1,
    "tues": 1,
    "tuesday": 1,
    "wed": 2,
    "wednesday": 2,
    "thu": 3,
    "thur": 3,
    "thurs": 3,
    "thursday": 3,
    "fri": 4,
    "friday": 4,
    "sat": 5,
    "saturday": 5,
    "sun": 6,
    "sunday": 6,
}

_DAY_GROUPS: dict[str, frozenset[int] | None] = {
    "day": None,
    "weekday": frozenset(range(5)),
    "weekend": frozenset({5, 6}),
}

_SHORT_DURATION = re.compile(r"^(\d+)\s*(ms|s|m|h|d|w)$")
_EVERY_DURATION = re.compile(r"^every\s+(?:(\d+)\s*)?([a-z]+)$")
_EVERY_AT = re.compile(r"^(?:every\s+(.+?)\s+)?at\s+(.+)$")
_TIME = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$")
_LIST_SEPARATOR = re.compile(r"\s*(?:,|\band\b)\s*")


def _unit(name: str) -> str | None:
    name = name.rstrip("s") if name not in _UNITS else name
    return _UNITS.get(name)


@dataclass(frozen=True)
class _Duration:
    count: int
    unit: str
    # False for short forms ("30m") and sub-second or weekly phrases, which
    # count from the previous firing instead of the clock
    on_clock: bool

    @property
    def period(self) -> timedelta:
        return _UNIT_DELTAS[self.unit] * self.count


def _parse_duration(phrase: str) -> _Duration | None:
    if match := _SHORT_DURATION.match(phrase):
        duration = _Duration(int(match.group(1)), match.group(2), on_clock=False)
    elif match := _EVERY_DURATION.match(phrase):
        unit = _unit(match.group(2))
        if unit is None:
            return None
        count = int(match.group(1)) if match.group(1) else 1
        duration = _Duration(count, unit, on_clock=unit in _CLOCK_UNITS)
    else:
        return None
    if duration.count <= 0:
        raise RecurrenceParseError(phrase, "interval must be greater than zero")
    return duration


def _parse_time(text: str, phrase: str) -> time:
    if text == "noon":
        return time(12, 0)
    if text == "midnight":
        return time(0, 0)
    match = _TIME.match(text)
    if not match:
        raise RecurrenceParseError(phrase, f"unrecognized time '{text}'")
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = match.group(3)
    if meridiem:
        if not 1 <= hour <= 12:
            raise RecurrenceParseError(phrase, f"invalid 12-hour time '{text}'")
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59:
        raise RecurrenceParseError(phrase, f"invalid time '{text}'")
    return time(hour, minute)


def _parse_days(text: str, phrase: str) -> frozenset[int] | None:
    if text in _DAY_GROUPS:
        return _DAY_GROUPS[text]
    days: set[int] = set()
    for name in filter(None, _LIST_SEPARATOR.split(text)):
        # Plurals are accepted: "mondays and fridays"
        day = _WEEKDAYS.get(name, _WEEKDAYS.get(name.removesuffix("s")))
        if day is None:
            raise RecurrenceParseError(phrase, f"unrecognized day '{name}'")
        days.add(day)
    return frozenset(days)


def _truncate(moment: datetime, unit: str) -> datetime:
    if unit == "s":
        return moment.replace(microsecond=0)
    if unit == "m":
        return moment.replace(second=0, microsecond=0)
    if unit == "h":
        return moment.replace(minute=0, second=0, microsecond=0)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _clock_value(moment: datetime, unit: str) -> int:
    if unit == "s":
        return moment.second
    if unit == "m":
        return moment.minute
    if unit == "h":
        return moment.hour
    # Days of the month count from 1
    return moment.day - 1


@dataclass(frozen=True)
class _ClockRule:
    """Every ``step``-th value of a clock field, counted from zero.

    "every 30 minutes" fires at :00 and :30 of each hour, "every 2 hours" on
    even hours and "every 3 days" on days 1, 4, 7... of each month. Steps
    that do not divide the field evenly restart with each enclosing period:
    "every 45 minutes" fires at :00 and :45.
    """

    unit: str
    step: int

    def next_after(self, local: datetime) -> datetime:
        candidate = _truncate(local, self.unit)
        increment = _UNIT_DELTAS[self.unit]
        while True:
            candidate += increment
            # Wall-clock steps drop fold, so in a repeated hour a candidate
            # can land before the starting instant
            if candidate.timestamp() <= local.timestamp():
                continue
            if _clock_value(candidate, self.unit) % self.step == 0:
                return candidate


@dataclass(frozen=True)
class _CalendarRule:
    times: tuple[time, ...]
    weekdays: frozenset[int] | None  # None means every day

    def next_after(self, local: datetime, tz: tzinfo) -> datetime:
        start: date = local.date()
        # Eight days covers a full week plus today's remaining slots.
        for offset in range(8):
            day = start + timedelta(days=offset)
            if self.weekdays is not None and day.weekday() not in self.weekdays:
                continue
            for slot in self.times:
                candidate = datetime.combine(day, slot, tzinfo=tz)
                if candidate > local:
                    return candidate
        raise RuntimeError("calendar rule produced no occurrence")


@dataclass(frozen=True)
class IntervalRecurrence:
    """Human-readable recurring phrase.

    Supported forms:
        every 30 minutes, every hour, every 2 days (aligned to the clock)
        30m, 1h, 250ms, every 500 milliseconds, every week (from last firing)
        every day at 09:00, at 9am, every day at 9:00 and 17:30
        every weekday at 08:30, every weekend at 10am
        every monday at 9:00, every mon, wed and fri at 18:00
    """

    expression: str
    timezone: str | None = None
    kind: ScheduleKind = field(default=ScheduleKind.INTERVAL, init=False)
    _tz: tzinfo = field(  # type: ignore[assignment]
        default=None, init=False, repr=False, compare=False
    )
    _duration: _Duration | None = field(default=None, init=False, repr=False)
    _calendar: _CalendarRule | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        phrase = " ".join(self.expression.lower().split())
        if not phrase:
            raise RecurrenceParseError(self.expression, "empty schedule")

        duration = _parse_duration(phrase)
        calendar = None
        if duration is None:
            calendar = self._parse_calendar(phrase)

        object.__setattr__(self, "_duration", duration)
        object.__setattr__(self, "_calendar", calendar)
        object.__setattr__(self, "_tz", _resolve(self.expression, self.timezone))

    def _parse_calendar(self, phrase: str) -> _CalendarRule:
        match = _EVERY_AT.match(phrase)
        if not match:
            raise RecurrenceParseError(self.expression, "unrecognized schedule phrase")
        days_text, times_text = match.group(1), match.group(2)
        weekdays = _parse_days(days_text, self.expression) if days_text else None
        times = sorted(
            {
                _parse_time(part.strip(), self.expression)
                for part in _LIST_SEPARATOR.split(times_text)
                if part.strip()
            }
        )
        if not times:
            raise RecurrenceParseError(self.expression, "missing time of day")
        return _CalendarRule(times=tuple(times), weekdays=weekdays)

    @property
    def period(self) -> timedelta | None:
        """Nominal period for duration phrases, None for calendar phrases."""
        return self._duration.period if self._duration else None

    @property
    def on_clock(self) -> bool:
        """Whether firings line up with clock boundaries."""
        return self._duration is None or self._duration.on_clock

    def next_after(self, moment: datetime) -> datetime:
        local = moment.astimezone(self._tz)
        if self._duration is not None:
            if self._duration.on_clock:
                rule = _ClockRule(self._duration.unit, self._duration.count)
                return rule.next_after(local)
            return local + self._duration.period
        assert self._calendar is not None
        return self._calendar.next_after(local, self._tz)


def build_recurrence(expression: str, timezone: str | None = None) -> Recurrence:
    """Classify an expression and build its recurrence.

    Raises:
        RecurrenceParseError: If the expression (or timezone) is invalid.
    """
    if classify(expression) is ScheduleKind.CRON:
        return CronRecurrence(expression.strip(), timezone)
    return IntervalRecurrence(expression.strip(), timezone)
