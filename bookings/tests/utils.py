"""Shared fixtures for the booking tests."""

from datetime import date, datetime, time, timedelta

from django.utils import timezone

from bookings.availability import to_minutes, to_time
from bookings.exceptions import NotifyFailure
from bookings.lifecycle import CONFIRMED, SCHEDULED
from bookings.models import (
    Appointment,
    Client,
    Professional,
    Reservation,
    Room,
    Service,
    WorkingHours,
)
from bookings.notifications import Notifier


MONDAY = date(2024, 3, 4)
SATURDAY = date(2024, 3, 9)


def aware(day, hour, minute=0):
    """Aware datetime in the current time zone."""
    return timezone.make_aware(datetime.combine(day, time(hour, minute)))


def make_professional(name="Dr. Silva", weekdays=range(5), start=time(9, 0), end=time(18, 0),
                      break_start=time(12, 0), break_end=time(13, 0), is_active=True):
    """Professional working the given weekdays (Mon-Fri by default) with a lunch break."""
    professional = Professional.objects.create(name=name, is_active=is_active)
    for weekday in weekdays:
        WorkingHours.objects.create(
            professional=professional,
            weekday=weekday,
            start_time=start,
            end_time=end,
            break_start=break_start,
            break_end=break_end,
        )
    return professional


def make_service(name="Consultation", duration=60, is_active=True):
    return Service.objects.create(name=name, duration_minutes=duration, is_active=is_active)


def make_client(name="Carla Souza", phone="+5511999990000"):
    return Client.objects.create(name=name, phone=phone)


def make_room(number="101", capacity=2, is_active=True):
    return Room.objects.create(number=number, capacity=capacity, is_active=is_active)


def make_appointment(professional, client, service, day, start, status=SCHEDULED, **kwargs):
    """Insert an appointment directly, bypassing the service layer."""
    end = to_time(to_minutes(start) + service.duration_minutes)
    return Appointment.objects.create(
        professional=professional,
        client=client,
        service=service,
        date=day,
        start_time=start,
        end_time=end,
        status=status,
        **kwargs
    )


def make_reservation(room, check_in_date, check_out_date, status=CONFIRMED,
                     guest_name="Guest", guest_count=1, **kwargs):
    """Insert a reservation directly, bypassing the service layer."""
    return Reservation.objects.create(
        room=room,
        guest_name=guest_name,
        guest_phone="+5511988887777",
        guest_count=guest_count,
        check_in_date=check_in_date,
        check_out_date=check_out_date,
        status=status,
        **kwargs
    )


def days(n):
    return timedelta(days=n)


class RecordingNotifier(Notifier):
    """Notifier that keeps delivered messages in memory."""

    def __init__(self):
        self.delivered = []

    def deliver(self, recipient, kind, payload):
        self.delivered.append((recipient, kind, payload))

    @property
    def kinds(self):
        return [kind for _, kind, _ in self.delivered]


class FailingNotifier(Notifier):
    """Notifier whose channel is always down."""

    def __init__(self):
        self.calls = 0

    def deliver(self, recipient, kind, payload):
        self.calls += 1
        raise NotifyFailure("channel unavailable")
