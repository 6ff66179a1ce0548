"""
Custom managers and querysets for booking models.

QuerySets define chainable query methods.
Managers use QuerySets to enable method chaining.
No business logic should be here - only query operations.
"""

from django.db import models
from django.db.models import F

from .lifecycle import (
    APPOINTMENT_LIFECYCLE,
    CHECKED_IN,
    CONFIRMED,
    RESERVATION_LIFECYCLE,
)


class ReminderQuerySetMixin:
    """Filtering on the reminder_flags bitmask."""

    def _masked(self, flag):
        name = f'reminder_mask_{int(flag)}'
        return self.alias(**{name: F('reminder_flags').bitand(int(flag))}), name

    def without_flag(self, flag):
        """Bookings for which the given reminder has not fired yet."""
        queryset, name = self._masked(flag)
        return queryset.filter(**{name: 0})

    def with_flag(self, flag):
        """Bookings for which the given reminder has already fired."""
        queryset, name = self._masked(flag)
        return queryset.exclude(**{name: 0})


class AppointmentQuerySet(ReminderQuerySetMixin, models.QuerySet):
    """Custom queryset for Appointment model with chainable methods."""

    def active(self):
        """Get appointments that still block their time slot."""
        return self.filter(status__in=APPOINTMENT_LIFECYCLE.active)

    def for_professional(self, professional):
        return self.filter(professional=professional)

    def on_date(self, day):
        return self.filter(date=day)

    def active_for(self, professional, day):
        """
        Get the active appointments of a professional on a date.

        Args:
            professional: Professional instance or primary key
            day: date object
        """
        return self.active().for_professional(professional).on_date(day)


class AppointmentManager(models.Manager):
    """Custom manager for Appointment model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return AppointmentQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def for_professional(self, professional):
        return self.get_queryset().for_professional(professional)

    def on_date(self, day):
        return self.get_queryset().on_date(day)

    def active_for(self, professional, day):
        return self.get_queryset().active_for(professional, day)


class ReservationQuerySet(ReminderQuerySetMixin, models.QuerySet):
    """Custom queryset for Reservation model with chainable methods."""

    def active(self):
        """Get reservations that still block their room."""
        return self.filter(status__in=RESERVATION_LIFECYCLE.active)

    def confirmed(self):
        return self.filter(status=CONFIRMED)

    def checked_in(self):
        return self.filter(status=CHECKED_IN)

    def for_room(self, room):
        return self.filter(room=room)

    def touching(self, check_in_date, check_out_date):
        """
        Get reservations whose stay meets or crosses a date range.

        This is a coarse pre-filter; the conflict detector applies the exact
        half-open rule.
        """
        return self.filter(
            check_in_date__lte=check_out_date,
            check_out_date__gte=check_in_date
        )

    def active_for(self, room, check_in_date, check_out_date):
        """
        Get the active reservations of a room around a date range.

        Args:
            room: Room instance or primary key
            check_in_date: date object
            check_out_date: date object
        """
        return self.active().for_room(room).touching(check_in_date, check_out_date)

    def checking_in_on(self, day):
        """Get confirmed reservations arriving on a date."""
        return self.confirmed().filter(check_in_date=day)

    def checkout_due(self, day):
        """Get checked-in reservations due to leave on or before a date."""
        return self.checked_in().filter(check_out_date__lte=day)


class ReservationManager(models.Manager):
    """Custom manager for Reservation model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return ReservationQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def confirmed(self):
        return self.get_queryset().confirmed()

    def checked_in(self):
        return self.get_queryset().checked_in()

    def active_for(self, room, check_in_date, check_out_date):
        return self.get_queryset().active_for(room, check_in_date, check_out_date)

    def checking_in_on(self, day):
        return self.get_queryset().checking_in_on(day)

    def checkout_due(self, day):
        return self.get_queryset().checkout_due(day)


class NotificationQuerySet(models.QuerySet):
    """Custom queryset for Notification model."""

    def failed(self):
        return self.filter(status='failed')

    def retryable(self, max_attempts):
        """Get failed notifications that the sweeper should send again."""
        return self.failed().filter(retry_on_sweep=True, attempts__lt=max_attempts)

    def older_than(self, cutoff):
        return self.filter(created_at__lt=cutoff)

    def for_booking(self, booking):
        return self.filter(booking_kind=booking.kind.value, booking_id=booking.pk)


class NotificationManager(models.Manager):
    """Custom manager for Notification model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return NotificationQuerySet(self.model, using=self._db)

    def retryable(self, max_attempts):
        return self.get_queryset().retryable(max_attempts)

    def older_than(self, cutoff):
        return self.get_queryset().older_than(cutoff)

    def for_booking(self, booking):
        return self.get_queryset().for_booking(booking)
