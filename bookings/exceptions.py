"""
Domain errors raised by the booking engine.

Validation and conflict errors carry enough context (resource, window,
current/requested state) for a caller to offer an alternative.
"""


class BookingError(Exception):
    """Base class for booking engine errors."""

    retryable = False

    def as_dict(self):
        """Structured representation for API and assistant callers."""
        return {
            'error': type(self).__name__,
            'message': str(self),
            'retryable': self.retryable,
        }


class ResourceInactiveOrNotFound(BookingError):
    """The professional, room, service or client is missing or inactive."""

    def __init__(self, resource_type, resource_id):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} {resource_id} not found or inactive")

    def as_dict(self):
        data = super().as_dict()
        data.update(resource_type=self.resource_type, resource_id=self.resource_id)
        return data


class BookingNotFound(BookingError):
    """No appointment or reservation with the given id."""

    def __init__(self, booking_kind, booking_id):
        self.booking_kind = booking_kind
        self.booking_id = booking_id
        super().__init__(f"{booking_kind} {booking_id} not found")

    def as_dict(self):
        data = super().as_dict()
        data.update(booking_kind=self.booking_kind, booking_id=self.booking_id)
        return data


class SlotUnavailable(BookingError):
    """The requested window overlaps an active booking or the schedule."""

    def __init__(self, resource, window, conflicts=(), reason='overlaps an active booking'):
        self.resource = resource
        self.window = window
        self.conflicts = list(conflicts)
        self.reason = reason
        super().__init__(f"{resource} is not available for {window}: {reason}")

    def as_dict(self):
        data = super().as_dict()
        data.update(
            resource=str(self.resource),
            window=str(self.window),
            reason=self.reason,
            conflicting_ids=[booking.pk for booking in self.conflicts],
        )
        return data


class InvalidTransition(BookingError):
    """The requested state change is not in the booking's edge list."""

    def __init__(self, current, requested, kind=None):
        self.current = current
        self.requested = requested
        self.kind = kind
        label = f"{kind} " if kind else ''
        super().__init__(
            f"Cannot move {label}booking from '{current}' to '{requested}'"
        )

    def as_dict(self):
        data = super().as_dict()
        data.update(current=self.current, requested=self.requested)
        return data


class PersistenceTimeout(BookingError):
    """The record store did not answer in time; the operation can be retried."""

    retryable = True


class NotifyFailure(BookingError):
    """A notifier backend could not deliver a message."""

    retryable = True


class BookingNotDeletable(BookingError):
    """Future-dated bookings in a non-terminal state cannot be deleted."""
