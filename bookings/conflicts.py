"""
Interval-overlap conflict detection shared by appointments and reservations.

Both booking kinds reduce their window to one Interval:
- appointments at minute granularity (absolute minutes, so dates are part of
  the comparison)
- reservations at day granularity (date ordinals)

Intervals are half-open, so a booking ending exactly when another starts
does not conflict.
"""

import enum
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .availability import to_minutes
from .types import MINUTES_PER_DAY, DateRange, TimeWindow


class Granularity(enum.Enum):
    MINUTE = 'minute'
    DAY = 'day'


@dataclass(frozen=True)
class Interval:
    """Half-open interval [start, end) at a given granularity."""

    start: int
    end: int
    granularity: Granularity

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Interval must end after it starts: [{self.start}, {self.end})")

    @classmethod
    def from_time_window(cls, window: TimeWindow) -> 'Interval':
        if window.end_time is None:
            raise ValueError("Time window has no end time")
        base = window.date.toordinal() * MINUTES_PER_DAY
        return cls(
            base + to_minutes(window.start_time),
            base + to_minutes(window.end_time),
            Granularity.MINUTE,
        )

    @classmethod
    def from_date_range(cls, window: DateRange) -> 'Interval':
        return cls(
            window.check_in_date.toordinal(),
            window.check_out_date.toordinal(),
            Granularity.DAY,
        )

    @classmethod
    def for_window(cls, window) -> 'Interval':
        """Interval of a TimeWindow or DateRange."""
        if isinstance(window, TimeWindow):
            return cls.from_time_window(window)
        if isinstance(window, DateRange):
            return cls.from_date_range(window)
        raise TypeError(f"Unsupported booking window: {window!r}")


def overlaps(first: Interval, second: Interval) -> bool:
    """
    Half-open overlap test.

    Raises:
        ValueError: If the intervals have different granularities
    """
    if first.granularity is not second.granularity:
        raise ValueError("Cannot compare intervals of different granularity")
    return first.start < second.end and second.start < first.end


def _excluded_pk(exclude) -> Optional[int]:
    if exclude is None:
        return None
    return getattr(exclude, 'pk', exclude)


def find_conflicts(candidate, bookings: Iterable, exclude=None) -> List:
    """
    Return the active bookings whose interval overlaps the candidate.

    Args:
        candidate: Interval, TimeWindow or DateRange being requested
        bookings: Existing bookings of the resource, in any order
        exclude: Booking (or primary key) to leave out, e.g. the one being
            rescheduled

    Returns:
        List of conflicting bookings, in input order
    """
    interval = candidate if isinstance(candidate, Interval) else Interval.for_window(candidate)
    excluded = _excluded_pk(exclude)

    conflicts = []
    for booking in bookings:
        if excluded is not None and booking.pk == excluded:
            continue
        if not booking.is_active:
            continue
        if overlaps(interval, booking.interval):
            conflicts.append(booking)
    return conflicts


def has_conflict(candidate, bookings: Iterable, exclude=None) -> bool:
    """True if any active booking overlaps the candidate."""
    return bool(find_conflicts(candidate, bookings, exclude=exclude))
