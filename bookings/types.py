"""
Data types and constants for the booking engine.

This module contains:
- Booking windows (time-of-day window for appointments, date range for
  reservations)
- Constants used across the application
"""

from dataclasses import dataclass, replace
from typing import Optional
from datetime import date, time


DEFAULT_SLOT_STEP_MINUTES = 30
MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class TimeWindow:
    """Window on a single date, booked by time of day (appointments)."""
    date: date
    start_time: time
    end_time: Optional[time] = None

    def with_end(self, end_time: time) -> 'TimeWindow':
        return replace(self, end_time=end_time)

    def __str__(self):
        end = self.end_time.strftime('%H:%M') if self.end_time else '?'
        return f"{self.date.isoformat()} {self.start_time.strftime('%H:%M')}-{end}"


@dataclass(frozen=True)
class DateRange:
    """Check-in/check-out range at day granularity (reservations)."""
    check_in_date: date
    check_out_date: date

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days

    def __str__(self):
        return f"{self.check_in_date.isoformat()} to {self.check_out_date.isoformat()}"
