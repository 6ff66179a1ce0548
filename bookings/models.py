"""
Models for the booking engine.

Resources (read-only to the engine):
- Professional with weekly WorkingHours, booked by time of day
- Room, booked by date range
- Service and Client, referenced by appointments

Bookings share one lifecycle shape:
- Appointment (professional + service on a date and start time)
- Reservation (room for a check-in/check-out date range)

Notification keeps a record of every message sent through the engine.
"""

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from .availability import NOT_WORKING, DaySchedule, WeeklySchedule
from .conflicts import Interval
from .lifecycle import (
    APPOINTMENT_LIFECYCLE,
    APPOINTMENT_STATUS_CHOICES,
    RESERVATION_LIFECYCLE,
    RESERVATION_STATUS_CHOICES,
    BookingKind,
    ReminderFlag,
    reminder_names,
)
from .managers import AppointmentManager, NotificationManager, ReservationManager
from .types import DateRange, TimeWindow


WEEKDAY_CHOICES = [
    (0, 'Monday'),
    (1, 'Tuesday'),
    (2, 'Wednesday'),
    (3, 'Thursday'),
    (4, 'Friday'),
    (5, 'Saturday'),
    (6, 'Sunday'),
]


class Professional(models.Model):
    """A person whose calendar is booked by time of day."""

    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True, default='')
    phone = models.CharField(max_length=30, blank=True, default='')
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"Professional {self.name}"

    def weekly_schedule(self):
        """Build the WeeklySchedule from this professional's working hours."""
        return WeeklySchedule.from_mapping({
            entry.weekday: entry.to_day_schedule()
            for entry in self.working_hours.all()
        })


class WorkingHours(models.Model):
    """
    Working hours of a professional on one weekday.

    A weekday without a row is a day off.
    """

    professional = models.ForeignKey(
        Professional,
        on_delete=models.CASCADE,
        related_name='working_hours'
    )
    weekday = models.IntegerField(
        choices=WEEKDAY_CHOICES,
        help_text="Day of week (0=Monday, 6=Sunday)"
    )
    is_working = models.BooleanField(default=True)
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)
    break_start = models.TimeField(null=True, blank=True)
    break_end = models.TimeField(null=True, blank=True)

    class Meta:
        ordering = ['professional', 'weekday']
        constraints = [
            models.UniqueConstraint(
                fields=['professional', 'weekday'],
                name='unique_working_hours_per_weekday'
            ),
        ]

    def __str__(self):
        weekday_name = dict(WEEKDAY_CHOICES).get(self.weekday, 'Unknown')
        if not self.is_working:
            return f"{weekday_name}: off"
        return (
            f"{weekday_name}: {self.start_time.strftime('%H:%M')}"
            f"-{self.end_time.strftime('%H:%M')}"
        )

    @property
    def weekday_name(self):
        """Get human-readable weekday name."""
        return dict(WEEKDAY_CHOICES).get(self.weekday, 'Unknown')

    def to_day_schedule(self):
        if not self.is_working:
            return NOT_WORKING
        return DaySchedule.from_times(
            True,
            self.start_time,
            self.end_time,
            self.break_start,
            self.break_end,
        )

    def clean(self):
        """Validate working hours and break bounds."""
        super().clean()

        if not self.is_working:
            return
        if self.start_time is None or self.end_time is None:
            raise ValidationError('A working day needs a start and an end time.')
        try:
            self.to_day_schedule()
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)


class Service(models.Model):
    """Something a professional offers; defines the appointment length."""

    name = models.CharField(max_length=200)
    duration_minutes = models.PositiveIntegerField(
        default=60,
        validators=[MinValueValidator(1)]
    )
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.duration_minutes} min)"


class Client(models.Model):
    """Person receiving appointment messages."""

    name = models.CharField(max_length=200)
    phone = models.CharField(max_length=30, blank=True, default='')
    email = models.EmailField(blank=True, default='')

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def contact(self):
        return self.phone or self.email or self.name


class Room(models.Model):
    """A hotel room, booked by date range."""

    number = models.CharField(max_length=20, unique=True)
    room_type = models.CharField(max_length=50, blank=True, default='')
    capacity = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)]
    )
    is_active = models.BooleanField(default=True)
    is_occupied = models.BooleanField(
        default=False,
        help_text="Set on check-in, cleared on check-out"
    )

    class Meta:
        ordering = ['number']

    def __str__(self):
        return f"Room {self.number}"


class Booking(models.Model):
    """
    Fields and behaviour shared by appointments and reservations.

    Subclasses set ``kind`` and ``lifecycle`` and provide ``window`` and
    ``resource``.
    """

    kind = None
    lifecycle = None

    notes = models.TextField(blank=True, default='')
    reminder_flags = models.PositiveIntegerField(
        default=0,
        help_text="Bitmask of reminders already sent"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    @property
    def window(self):
        raise NotImplementedError

    @property
    def resource(self):
        raise NotImplementedError

    @property
    def interval(self):
        return Interval.for_window(self.window)

    @property
    def is_active(self):
        return self.lifecycle.is_active(self.status)

    @property
    def is_terminal(self):
        return self.lifecycle.is_terminal(self.status)

    @property
    def reminders(self):
        return ReminderFlag(self.reminder_flags)

    @property
    def reminder_names(self):
        return reminder_names(self.reminder_flags)

    def has_reminder(self, flag):
        return bool(self.reminders & flag)


class Appointment(Booking):
    """A client's appointment with a professional for one service."""

    kind = BookingKind.APPOINTMENT
    lifecycle = APPOINTMENT_LIFECYCLE

    status = models.CharField(
        max_length=20,
        choices=APPOINTMENT_STATUS_CHOICES,
        default=APPOINTMENT_LIFECYCLE.initial
    )
    professional = models.ForeignKey(
        Professional,
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    client = models.ForeignKey(
        Client,
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    service = models.ForeignKey(
        Service,
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    date = models.DateField()
    start_time = models.TimeField()
    end_time = models.TimeField(help_text="start_time + service duration")

    objects = AppointmentManager()

    class Meta:
        ordering = ['date', 'start_time']
        indexes = [
            models.Index(fields=['professional', 'date', 'status']),
            models.Index(fields=['date', 'status']),
        ]

    def __str__(self):
        status_str = f" [{self.status}]" if self.status != self.lifecycle.initial else ""
        return f"Appointment {self.pk} - {self.window}{status_str}"

    @property
    def window(self):
        return TimeWindow(date=self.date, start_time=self.start_time, end_time=self.end_time)

    @property
    def resource(self):
        return self.professional

    @property
    def recipient(self):
        return self.client.contact

    def clean(self):
        """Validate appointment data."""
        super().clean()

        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValidationError({'end_time': 'End time must be after start time.'})

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)


class Reservation(Booking):
    """A guest's stay in a room."""

    kind = BookingKind.RESERVATION
    lifecycle = RESERVATION_LIFECYCLE

    status = models.CharField(
        max_length=20,
        choices=RESERVATION_STATUS_CHOICES,
        default=RESERVATION_LIFECYCLE.initial
    )
    room = models.ForeignKey(
        Room,
        on_delete=models.PROTECT,
        related_name='reservations'
    )
    guest_name = models.CharField(max_length=200)
    guest_phone = models.CharField(max_length=30, blank=True, default='')
    guest_email = models.EmailField(blank=True, default='')
    guest_count = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)]
    )
    check_in_date = models.DateField()
    check_out_date = models.DateField()
    checked_in_at = models.DateTimeField(null=True, blank=True)
    checked_out_at = models.DateTimeField(null=True, blank=True)

    objects = ReservationManager()

    class Meta:
        ordering = ['check_in_date', 'room']
        indexes = [
            models.Index(fields=['room', 'status']),
            models.Index(fields=['check_in_date', 'status']),
            models.Index(fields=['check_out_date', 'status']),
        ]

    def __str__(self):
        status_str = f" [{self.status}]" if self.status != self.lifecycle.initial else ""
        return f"Reservation {self.pk} - {self.guest_name} {self.window}{status_str}"

    @property
    def window(self):
        return DateRange(check_in_date=self.check_in_date, check_out_date=self.check_out_date)

    @property
    def resource(self):
        return self.room

    @property
    def recipient(self):
        return self.guest_phone or self.guest_email or self.guest_name

    @property
    def nights(self):
        return self.window.nights

    def clean(self):
        """Validate reservation data."""
        super().clean()

        if self.check_in_date and self.check_out_date and self.check_in_date >= self.check_out_date:
            raise ValidationError({
                'check_out_date': 'Check-out date must be after check-in date.'
            })
        # Capacity is checked only when the stay is booked.
        if (
            self._state.adding
            and self.room_id
            and self.guest_count
            and self.guest_count > self.room.capacity
        ):
            raise ValidationError({
                'guest_count': (
                    f"Guest count ({self.guest_count}) exceeds room capacity "
                    f"({self.room.capacity})."
                )
            })

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)


class Notification(models.Model):
    """One message sent (or attempted) through the notifier."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('sent', 'Sent'),
        ('failed', 'Failed'),
    ]

    recipient = models.CharField(max_length=255)
    kind = models.CharField(max_length=50)
    payload = models.JSONField(default=dict, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    attempts = models.PositiveIntegerField(default=0)
    error_message = models.TextField(blank=True, default='')
    retry_on_sweep = models.BooleanField(
        default=True,
        help_text="False for reminders, which are re-triggered by their flag instead"
    )

    booking_kind = models.CharField(max_length=20, blank=True, default='')
    booking_id = models.BigIntegerField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    sent_at = models.DateTimeField(null=True, blank=True)

    objects = NotificationManager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'retry_on_sweep']),
            models.Index(fields=['booking_kind', 'booking_id']),
            models.Index(fields=['created_at']),
        ]

    def __str__(self):
        return f"{self.kind} to {self.recipient} [{self.status}]"
