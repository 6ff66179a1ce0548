"""
Working-hours schedule model and slot generation.

All times are wall-clock minutes of the day. Callers pass dates and times
already expressed in the resource's local time; nothing here converts
time zones.
"""

from dataclasses import dataclass
from datetime import date, time
from typing import Iterator, Mapping, Optional, Tuple, Union

from .types import DEFAULT_SLOT_STEP_MINUTES, MINUTES_PER_DAY, TimeWindow


WEEKDAY_NAMES = (
    'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday',
)


def to_minutes(value: time) -> int:
    """Minute of day for a time value (seconds are dropped)."""
    return value.hour * 60 + value.minute


def to_time(minutes: int) -> time:
    """Time value for a minute of day."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"Minute of day out of range: {minutes}")
    return time(minutes // 60, minutes % 60)


def parse_minutes(value: Union[str, time]) -> int:
    """Parse 'HH:MM' (or 'HH:MM:SS') or a time into a minute of day."""
    if isinstance(value, time):
        return to_minutes(value)
    parts = value.strip().split(':')
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hours * 60 + minutes


def _optional_minutes(value) -> Optional[int]:
    if value is None or value == '':
        return None
    return parse_minutes(value)


@dataclass(frozen=True)
class DaySchedule:
    """Working hours of one weekday, with an optional break."""

    is_working: bool = False
    start_minute: Optional[int] = None
    end_minute: Optional[int] = None
    break_start_minute: Optional[int] = None
    break_end_minute: Optional[int] = None

    def __post_init__(self):
        if not self.is_working:
            return
        if self.start_minute is None or self.end_minute is None:
            raise ValueError("A working day needs a start and an end time")
        if self.start_minute >= self.end_minute:
            raise ValueError("Start time must be before end time")
        if (self.break_start_minute is None) != (self.break_end_minute is None):
            raise ValueError("A break needs both a start and an end time")
        if self.has_break and not (
            self.start_minute <= self.break_start_minute
            < self.break_end_minute <= self.end_minute
        ):
            raise ValueError("Break must lie within working hours and end after it starts")

    @classmethod
    def from_times(cls, is_working, start_time=None, end_time=None,
                   break_start=None, break_end=None) -> 'DaySchedule':
        """Build from time values or 'HH:MM' strings."""
        if not is_working:
            return cls()
        return cls(
            is_working=True,
            start_minute=_optional_minutes(start_time),
            end_minute=_optional_minutes(end_time),
            break_start_minute=_optional_minutes(break_start),
            break_end_minute=_optional_minutes(break_end),
        )

    @property
    def has_break(self) -> bool:
        return self.break_start_minute is not None

    def overlaps_break(self, start: int, end: int) -> bool:
        if not self.has_break:
            return False
        return start < self.break_end_minute and self.break_start_minute < end

    def fits(self, start: int, end: int) -> bool:
        """True if [start, end) lies in working hours and clear of the break."""
        if not self.is_working or start >= end:
            return False
        if start < self.start_minute or end > self.end_minute:
            return False
        return not self.overlaps_break(start, end)


NOT_WORKING = DaySchedule()


@dataclass(frozen=True)
class WeeklySchedule:
    """Seven DaySchedule entries, Monday first."""

    days: Tuple[DaySchedule, ...] = (NOT_WORKING,) * 7

    def __post_init__(self):
        if len(self.days) != 7:
            raise ValueError("A weekly schedule needs exactly seven days")

    @classmethod
    def from_mapping(cls, entries: Mapping) -> 'WeeklySchedule':
        """
        Build from a mapping keyed by weekday number (0=Monday) or name.

        Missing weekdays are treated as days off.
        """
        days = [NOT_WORKING] * 7
        for key, day in entries.items():
            index = WEEKDAY_NAMES.index(key.lower()) if isinstance(key, str) else int(key)
            days[index] = day
        return cls(days=tuple(days))

    def for_weekday(self, weekday: int) -> DaySchedule:
        return self.days[weekday]

    def for_date(self, day: date) -> DaySchedule:
        return self.days[day.weekday()]


@dataclass(frozen=True, order=True)
class TimeSlot:
    """A candidate window [start_minute, end_minute) on some date."""

    start_minute: int
    end_minute: int

    @property
    def start_time(self) -> time:
        return to_time(self.start_minute)

    @property
    def end_time(self) -> time:
        return to_time(self.end_minute)

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute

    def as_window(self, day: date) -> TimeWindow:
        return TimeWindow(date=day, start_time=self.start_time, end_time=self.end_time)

    def __str__(self):
        return f"{self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"


def generate_slots(
    schedule: Union[WeeklySchedule, DaySchedule],
    day: date,
    duration_minutes: int,
    step_minutes: int = DEFAULT_SLOT_STEP_MINUTES
) -> Iterator[TimeSlot]:
    """
    Generate candidate slots for a date.

    Args:
        schedule: WeeklySchedule (or the DaySchedule of the date)
        day: Date to generate slots for
        duration_minutes: Length of each slot
        step_minutes: Distance between consecutive slot starts

    Returns:
        Lazy iterator of TimeSlot in start order; empty on a day off

    Raises:
        ValueError: If duration_minutes or step_minutes is not positive
    """
    if duration_minutes <= 0:
        raise ValueError("Duration must be positive")
    if step_minutes <= 0:
        raise ValueError("Step must be positive")

    day_schedule = schedule.for_date(day) if isinstance(schedule, WeeklySchedule) else schedule
    return _iter_slots(day_schedule, duration_minutes, step_minutes)


def _iter_slots(day_schedule: DaySchedule, duration: int, step: int) -> Iterator[TimeSlot]:
    if not day_schedule.is_working:
        return

    start = day_schedule.start_minute
    while start + duration <= day_schedule.end_minute:
        end = start + duration
        if not day_schedule.overlaps_break(start, end):
            yield TimeSlot(start, end)
        start += step
