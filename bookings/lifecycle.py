"""
Booking lifecycle definitions.

Each booking kind has one explicit edge list. Anything not listed here is an
invalid transition; there is no direct status overwrite.
"""

import enum
from dataclasses import dataclass
from typing import FrozenSet, Mapping

from .exceptions import InvalidTransition


class BookingKind(str, enum.Enum):
    """Tag distinguishing the two booking variants."""

    APPOINTMENT = 'appointment'
    RESERVATION = 'reservation'


class ReminderFlag(enum.IntFlag):
    """Time-relative notifications that have already fired for a booking."""

    NONE = 0
    HOUR_BEFORE = 1
    DAY_BEFORE = 2
    SAME_DAY = 4
    CHECKIN_TOMORROW = 8
    CHECKOUT_PENDING = 16


def reminder_names(flags) -> list:
    """List the flag names set in a stored bitmask."""
    value = ReminderFlag(flags)
    return [flag.name.lower() for flag in ReminderFlag if flag and flag in value]


SCHEDULED = 'scheduled'
CONFIRMED = 'confirmed'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
NO_SHOW = 'no_show'
CHECKED_IN = 'checked_in'
CHECKED_OUT = 'checked_out'

APPOINTMENT_STATUS_CHOICES = [
    (SCHEDULED, 'Scheduled'),
    (CONFIRMED, 'Confirmed'),
    (COMPLETED, 'Completed'),
    (CANCELLED, 'Cancelled'),
    (NO_SHOW, 'No show'),
]

RESERVATION_STATUS_CHOICES = [
    (CONFIRMED, 'Confirmed'),
    (CHECKED_IN, 'Checked in'),
    (CHECKED_OUT, 'Checked out'),
    (CANCELLED, 'Cancelled'),
]


@dataclass(frozen=True)
class LifecyclePolicy:
    """Edge list, initial state and conflict-blocking states of one kind."""

    kind: BookingKind
    initial: str
    transitions: Mapping[str, FrozenSet[str]]
    active: FrozenSet[str]

    @property
    def states(self) -> FrozenSet[str]:
        targets = set()
        for allowed in self.transitions.values():
            targets |= allowed
        return frozenset(self.transitions) | frozenset(targets)

    @property
    def terminal(self) -> FrozenSet[str]:
        return frozenset(
            state for state in self.states if not self.transitions.get(state)
        )

    def is_active(self, status: str) -> bool:
        return status in self.active

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.transitions.get(current, frozenset())

    def check_transition(self, current: str, target: str) -> None:
        """
        Validate a single edge.

        Raises:
            InvalidTransition: If the edge is not in the list
        """
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target, kind=self.kind.value)


APPOINTMENT_LIFECYCLE = LifecyclePolicy(
    kind=BookingKind.APPOINTMENT,
    initial=SCHEDULED,
    transitions={
        SCHEDULED: frozenset({CONFIRMED, CANCELLED, NO_SHOW}),
        CONFIRMED: frozenset({COMPLETED, CANCELLED, NO_SHOW}),
        COMPLETED: frozenset(),
        CANCELLED: frozenset(),
        NO_SHOW: frozenset(),
    },
    active=frozenset({SCHEDULED, CONFIRMED}),
)

RESERVATION_LIFECYCLE = LifecyclePolicy(
    kind=BookingKind.RESERVATION,
    initial=CONFIRMED,
    transitions={
        CONFIRMED: frozenset({CHECKED_IN, CANCELLED}),
        CHECKED_IN: frozenset({CHECKED_OUT}),
        CHECKED_OUT: frozenset(),
        CANCELLED: frozenset(),
    },
    active=frozenset({CONFIRMED, CHECKED_IN}),
)

LIFECYCLES = {
    BookingKind.APPOINTMENT: APPOINTMENT_LIFECYCLE,
    BookingKind.RESERVATION: RESERVATION_LIFECYCLE,
}


def lifecycle_for(kind) -> LifecyclePolicy:
    """Return the policy for a BookingKind or its string value."""
    return LIFECYCLES[BookingKind(kind)]
