"""
Service layer for booking business logic.

Every write runs in one transaction with the resource row locked, and
re-reads the resource's active bookings inside that transaction before
checking for conflicts. Notifications are sent after the transaction has
committed; a failed send is logged and never undoes the booking.
"""

import logging
from contextlib import contextmanager
from datetime import date, time
from typing import List, Optional

from django.db import OperationalError, transaction
from django.utils import timezone

from .availability import TimeSlot, generate_slots, to_minutes, to_time
from .conf import get_setting
from .conflicts import find_conflicts, has_conflict
from .exceptions import (
    BookingNotDeletable,
    BookingNotFound,
    InvalidTransition,
    PersistenceTimeout,
    ResourceInactiveOrNotFound,
    SlotUnavailable,
)
from .lifecycle import (
    CANCELLED,
    CHECKED_IN,
    CHECKED_OUT,
    COMPLETED,
    CONFIRMED,
    NO_SHOW,
    BookingKind,
    ReminderFlag,
)
from .models import Appointment, Client, Professional, Reservation, Room, Service
from .notifications import (
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    BOOKING_CREATED,
    BOOKING_RESCHEDULED,
    CHECKED_IN as CHECKED_IN_MESSAGE,
    CHECKED_OUT as CHECKED_OUT_MESSAGE,
    booking_payload,
    get_notifier,
)
from .types import MINUTES_PER_DAY, DateRange, TimeWindow

logger = logging.getLogger(__name__)


BOOKING_MODELS = {
    BookingKind.APPOINTMENT: Appointment,
    BookingKind.RESERVATION: Reservation,
}

TRANSITION_MESSAGES = {
    (BookingKind.APPOINTMENT, CONFIRMED): BOOKING_CONFIRMED,
    (BookingKind.APPOINTMENT, CANCELLED): BOOKING_CANCELLED,
    (BookingKind.RESERVATION, CANCELLED): BOOKING_CANCELLED,
    (BookingKind.RESERVATION, CHECKED_IN): CHECKED_IN_MESSAGE,
    (BookingKind.RESERVATION, CHECKED_OUT): CHECKED_OUT_MESSAGE,
}

OUTSIDE_WORKING_HOURS = 'outside working hours'


@contextmanager
def _persistence_guard(operation: str):
    """Turn record store timeouts into a retryable PersistenceTimeout."""
    try:
        yield
    except OperationalError as exc:
        logger.error("Record store unavailable during %s: %s", operation, exc)
        raise PersistenceTimeout(
            f"Record store did not answer during {operation}; try again"
        ) from exc


def check_availability(
    professional_id: int,
    day: date,
    service_duration: int,
    step_minutes: Optional[int] = None
) -> List[TimeSlot]:
    """
    List the free slots of a professional on a date.

    Args:
        professional_id: Professional primary key
        day: Date to check
        service_duration: Slot length in minutes
        step_minutes: Distance between slot starts (defaults to
            SLOT_STEP_MINUTES)

    Returns:
        TimeSlot list in start order; empty on a day off

    Raises:
        ResourceInactiveOrNotFound: If the professional is missing or inactive
        ValueError: If service_duration or step_minutes is not positive
    """
    if step_minutes is None:
        step_minutes = get_setting('SLOT_STEP_MINUTES')

    professional = _get_professional(professional_id)
    slots = generate_slots(professional.weekly_schedule(), day, service_duration, step_minutes)
    booked = list(Appointment.objects.active_for(professional, day))

    return [slot for slot in slots if not has_conflict(slot.as_window(day), booked)]


def find_available_rooms(
    check_in_date: date,
    check_out_date: date,
    guest_count: int = 1
) -> List[Room]:
    """
    List active rooms free for a stay and large enough for the guests.

    Raises:
        ValueError: If the dates are not ordered or guest_count is below 1
    """
    _validate_stay(check_in_date, check_out_date, guest_count)
    window = DateRange(check_in_date, check_out_date)

    rooms = list(Room.objects.filter(is_active=True, capacity__gte=guest_count))
    touching = list(
        Reservation.objects.active()
        .filter(room__in=rooms)
        .touching(check_in_date, check_out_date)
    )
    by_room = {}
    for reservation in touching:
        by_room.setdefault(reservation.room_id, []).append(reservation)

    return [room for room in rooms if not has_conflict(window, by_room.get(room.pk, []))]


def create_appointment(
    professional_id: int,
    client_id: int,
    service_id: int,
    day: date,
    start_time: time,
    notes: str = '',
    notifier=None
) -> Appointment:
    """
    Book a professional for one service.

    Args:
        professional_id: Professional primary key
        client_id: Client primary key
        service_id: Service primary key (defines the duration)
        day: Appointment date
        start_time: Start time; the end is start + service duration
        notes: Free-text notes
        notifier: Notifier to use instead of the configured one

    Returns:
        Created Appointment, in 'scheduled'

    Raises:
        ResourceInactiveOrNotFound: If a referenced record is missing or inactive
        SlotUnavailable: If the window is outside working hours, crosses the
            break or overlaps an active appointment
        PersistenceTimeout: If the record store timed out
    """
    with _persistence_guard('create_appointment'), transaction.atomic():
        professional = _lock_professional(professional_id)
        service = _get_service(service_id)
        client = _get_client(client_id)

        window = _appointment_window(professional, day, start_time, service.duration_minutes)
        _ensure_free(professional, window, Appointment.objects.active_for(professional, day))

        appointment = Appointment.objects.create(
            professional=professional,
            client=client,
            service=service,
            date=window.date,
            start_time=window.start_time,
            end_time=window.end_time,
            notes=notes,
        )

    logger.info("Created appointment %s for %s at %s", appointment.pk, professional, window)
    _notify(notifier, appointment, BOOKING_CREATED)
    return appointment


def create_reservation(
    room_id: int,
    check_in_date: date,
    check_out_date: date,
    guest_name: str,
    guest_count: int = 1,
    guest_phone: str = '',
    guest_email: str = '',
    notes: str = '',
    notifier=None
) -> Reservation:
    """
    Reserve a room for a date range.

    Returns:
        Created Reservation, in 'confirmed'

    Raises:
        ValueError: If dates are not ordered or guest_count does not fit the room
        ResourceInactiveOrNotFound: If the room is missing or inactive
        SlotUnavailable: If the stay overlaps an active reservation
        PersistenceTimeout: If the record store timed out
    """
    _validate_stay(check_in_date, check_out_date, guest_count)
    window = DateRange(check_in_date, check_out_date)

    with _persistence_guard('create_reservation'), transaction.atomic():
        room = _lock_room(room_id)
        _validate_capacity(room, guest_count)
        _ensure_free(room, window, Reservation.objects.active_for(room, check_in_date, check_out_date))

        reservation = Reservation.objects.create(
            room=room,
            guest_name=guest_name,
            guest_phone=guest_phone,
            guest_email=guest_email,
            guest_count=guest_count,
            check_in_date=check_in_date,
            check_out_date=check_out_date,
            notes=notes,
        )

    logger.info("Created reservation %s for %s, %s", reservation.pk, room, window)
    _notify(notifier, reservation, BOOKING_CREATED)
    return reservation


def create_booking(resource_id: int, window, payload: dict, notifier=None):
    """
    Create an appointment or a reservation depending on the window type.

    Args:
        resource_id: Professional id for a TimeWindow, room id for a DateRange
        window: TimeWindow or DateRange
        payload: Remaining fields. Appointments need client_id and
            service_id; reservations need guest_name.

    Raises:
        ValueError: If a required payload field is missing
        TypeError: If window is neither a TimeWindow nor a DateRange
    """
    if isinstance(window, TimeWindow):
        return create_appointment(
            professional_id=resource_id,
            client_id=_require(payload, 'client_id'),
            service_id=_require(payload, 'service_id'),
            day=window.date,
            start_time=window.start_time,
            notes=payload.get('notes', ''),
            notifier=notifier,
        )
    if isinstance(window, DateRange):
        return create_reservation(
            room_id=resource_id,
            check_in_date=window.check_in_date,
            check_out_date=window.check_out_date,
            guest_name=_require(payload, 'guest_name'),
            guest_count=payload.get('guest_count', 1),
            guest_phone=payload.get('guest_phone', ''),
            guest_email=payload.get('guest_email', ''),
            notes=payload.get('notes', ''),
            notifier=notifier,
        )
    raise TypeError(f"Unsupported booking window: {window!r}")


def reschedule_booking(booking, new_window, notifier=None):
    """
    Move an active booking to a new window.

    Only the window fields change; status is untouched. Reminder flags tied
    to the changed fields are cleared so the reminders fire again for the
    new window.

    Args:
        booking: Appointment or Reservation
        new_window: TimeWindow for appointments (end is recomputed from the
            service duration), DateRange for reservations

    Returns:
        The updated booking

    Raises:
        ResourceInactiveOrNotFound: If the professional or room was deactivated
        InvalidTransition: If the booking is not active, or a checked-in
            reservation would change its check-in date
        SlotUnavailable: If the new window is not free
        ValueError: If the window type does not match the booking
    """
    with _persistence_guard('reschedule_booking'), transaction.atomic():
        resource = _lock_resource_row(booking)
        if not resource.is_active:
            raise ResourceInactiveOrNotFound(_resource_type(booking), resource.pk)
        locked = _lock_booking(booking)

        if not locked.is_active:
            raise InvalidTransition(locked.status, 'rescheduled', kind=locked.kind.value)

        if locked.kind is BookingKind.APPOINTMENT:
            _reschedule_appointment(locked, new_window)
        else:
            _reschedule_reservation(locked, new_window)

    logger.info("Rescheduled %s %s to %s", locked.kind.value, locked.pk, locked.window)
    _notify(notifier, locked, BOOKING_RESCHEDULED)
    return locked


def _reschedule_appointment(appointment: Appointment, new_window) -> None:
    if not isinstance(new_window, TimeWindow):
        raise ValueError("Appointments are rescheduled with a TimeWindow")

    professional = appointment.professional
    window = _appointment_window(
        professional, new_window.date, new_window.start_time,
        appointment.service.duration_minutes
    )
    _ensure_free(
        professional, window,
        Appointment.objects.active_for(professional, window.date),
        exclude=appointment
    )

    cleared = ReminderFlag.NONE
    if window.date != appointment.date:
        cleared |= ReminderFlag.HOUR_BEFORE | ReminderFlag.DAY_BEFORE | ReminderFlag.SAME_DAY
    elif window.start_time != appointment.start_time:
        cleared |= ReminderFlag.HOUR_BEFORE

    appointment.date = window.date
    appointment.start_time = window.start_time
    appointment.end_time = window.end_time
    appointment.reminder_flags = appointment.reminder_flags & ~int(cleared)
    appointment.save(update_fields=['date', 'start_time', 'end_time', 'reminder_flags', 'updated_at'])


def _reschedule_reservation(reservation: Reservation, new_window) -> None:
    if not isinstance(new_window, DateRange):
        raise ValueError("Reservations are rescheduled with a DateRange")

    _validate_stay(new_window.check_in_date, new_window.check_out_date, reservation.guest_count)

    check_in_changed = new_window.check_in_date != reservation.check_in_date
    if reservation.status == CHECKED_IN and check_in_changed:
        raise InvalidTransition(reservation.status, 'rescheduled', kind=reservation.kind.value)

    room = reservation.room
    _ensure_free(
        room, new_window,
        Reservation.objects.active_for(room, new_window.check_in_date, new_window.check_out_date),
        exclude=reservation
    )

    cleared = ReminderFlag.NONE
    if check_in_changed:
        cleared |= ReminderFlag.CHECKIN_TOMORROW
    if new_window.check_out_date != reservation.check_out_date:
        cleared |= ReminderFlag.CHECKOUT_PENDING

    reservation.check_in_date = new_window.check_in_date
    reservation.check_out_date = new_window.check_out_date
    reservation.reminder_flags = reservation.reminder_flags & ~int(cleared)
    reservation.save(
        update_fields=['check_in_date', 'check_out_date', 'reminder_flags', 'updated_at']
    )


def transition_booking(booking, target: str, reason: Optional[str] = None, now=None, notifier=None):
    """
    Move a booking along one edge of its lifecycle.

    Args:
        booking: Appointment or Reservation
        target: Requested status
        reason: Cancellation reason, appended to the notes
        now: Timestamp recorded on check-in/check-out (defaults to now)

    Returns:
        The updated booking

    Raises:
        InvalidTransition: If the edge is not allowed; nothing is changed
        PersistenceTimeout: If the record store timed out
    """
    now = now or timezone.now()

    with _persistence_guard('transition_booking'), transaction.atomic():
        resource = _lock_resource_row(booking)
        locked = _lock_booking(booking)
        current = locked.status
        locked.lifecycle.check_transition(current, target)

        update_fields = ['status', 'updated_at']
        if target == CANCELLED:
            locked.notes = _append_note(locked.notes, reason)
            update_fields.append('notes')
        elif target == CHECKED_IN:
            locked.checked_in_at = now
            update_fields.append('checked_in_at')
            Room.objects.filter(pk=resource.pk).update(is_occupied=True)
        elif target == CHECKED_OUT:
            locked.checked_out_at = now
            update_fields.append('checked_out_at')
            Room.objects.filter(pk=resource.pk).update(is_occupied=False)

        locked.status = target
        locked.save(update_fields=update_fields)

    logger.info("%s %s moved from %s to %s", locked.kind.value, locked.pk, current, target)

    message = TRANSITION_MESSAGES.get((locked.kind, target))
    if message:
        extra = {'reason': reason} if reason else {}
        _notify(notifier, locked, message, **extra)
    return locked


def cancel_booking(booking, reason: Optional[str] = None, notifier=None):
    return transition_booking(booking, CANCELLED, reason=reason, notifier=notifier)


def confirm_appointment(appointment: Appointment, notifier=None) -> Appointment:
    return transition_booking(appointment, CONFIRMED, notifier=notifier)


def complete_appointment(appointment: Appointment, notifier=None) -> Appointment:
    return transition_booking(appointment, COMPLETED, notifier=notifier)


def mark_no_show(appointment: Appointment, notifier=None) -> Appointment:
    return transition_booking(appointment, NO_SHOW, notifier=notifier)


def check_in(reservation: Reservation, now=None, notifier=None) -> Reservation:
    """Check a guest in; the reservation must be exactly 'confirmed'."""
    return transition_booking(reservation, CHECKED_IN, now=now, notifier=notifier)


def check_out(reservation: Reservation, now=None, notifier=None) -> Reservation:
    return transition_booking(reservation, CHECKED_OUT, now=now, notifier=notifier)


def get_booking(kind, booking_id: int):
    """
    Fetch an appointment or reservation by kind and id.

    Raises:
        BookingNotFound: If there is no such booking
        ValueError: If kind is not a booking kind
    """
    model = BOOKING_MODELS[BookingKind(kind)]
    try:
        return model.objects.get(pk=booking_id)
    except model.DoesNotExist:
        raise BookingNotFound(BookingKind(kind).value, booking_id) from None


def appointments_for_day(
    day: Optional[date] = None,
    professional_id: Optional[int] = None
) -> List[Appointment]:
    """
    Get the active appointments on a date, in start order.

    Args:
        day: Date to list (defaults to today)
        professional_id: Only this professional's appointments
    """
    day = day or timezone.localdate()
    queryset = Appointment.objects.active().on_date(day)
    if professional_id is not None:
        queryset = queryset.for_professional(professional_id)
    return list(queryset.select_related('professional', 'client', 'service').order_by('start_time'))


def pending_check_ins(day: Optional[date] = None) -> List[Reservation]:
    """
    Get confirmed reservations waiting for their guests.

    Args:
        day: Only arrivals on this date. Without it, arrivals from today on.
    """
    queryset = Reservation.objects.confirmed()
    if day is not None:
        queryset = queryset.filter(check_in_date=day)
    else:
        queryset = queryset.filter(check_in_date__gte=timezone.localdate())
    return list(queryset.select_related('room').order_by('check_in_date', 'room__number'))


def pending_check_outs(day: Optional[date] = None) -> List[Reservation]:
    """
    Get checked-in reservations that have not checked out.

    Args:
        day: Only departures on this date. Without it, departures due today
            or earlier.
    """
    if day is not None:
        queryset = Reservation.objects.checked_in().filter(check_out_date=day)
    else:
        queryset = Reservation.objects.checkout_due(timezone.localdate())
    return list(queryset.select_related('room').order_by('check_out_date', 'room__number'))


def ensure_deletable(booking, today: Optional[date] = None) -> None:
    """
    Raises:
        BookingNotDeletable: If the booking is future-dated and not terminal
    """
    today = today or timezone.localdate()
    if booking.is_terminal:
        return
    if _booking_start_date(booking) > today:
        raise BookingNotDeletable(
            f"{booking.kind.value} {booking.pk} is still {booking.status} on "
            f"{_booking_start_date(booking)}; cancel it before deleting"
        )


@transaction.atomic
def delete_booking(booking, today: Optional[date] = None) -> None:
    """Delete a booking that passes ensure_deletable."""
    ensure_deletable(booking, today)
    logger.info("Deleting %s %s", booking.kind.value, booking.pk)
    booking.delete()


def _booking_start_date(booking) -> date:
    if booking.kind is BookingKind.APPOINTMENT:
        return booking.date
    return booking.check_in_date


def _get_professional(professional_id) -> Professional:
    try:
        return Professional.objects.get(pk=professional_id, is_active=True)
    except Professional.DoesNotExist:
        raise ResourceInactiveOrNotFound('professional', professional_id) from None


def _lock_professional(professional_id) -> Professional:
    try:
        return Professional.objects.select_for_update().get(pk=professional_id, is_active=True)
    except Professional.DoesNotExist:
        raise ResourceInactiveOrNotFound('professional', professional_id) from None


def _lock_room(room_id) -> Room:
    try:
        return Room.objects.select_for_update().get(pk=room_id, is_active=True)
    except Room.DoesNotExist:
        raise ResourceInactiveOrNotFound('room', room_id) from None


def _get_service(service_id) -> Service:
    try:
        return Service.objects.get(pk=service_id, is_active=True)
    except Service.DoesNotExist:
        raise ResourceInactiveOrNotFound('service', service_id) from None


def _get_client(client_id) -> Client:
    try:
        return Client.objects.get(pk=client_id)
    except Client.DoesNotExist:
        raise ResourceInactiveOrNotFound('client', client_id) from None


def _resource_type(booking) -> str:
    return 'professional' if booking.kind is BookingKind.APPOINTMENT else 'room'


def _lock_resource_row(booking):
    """Lock the resource of an existing booking, active or not."""
    if booking.kind is BookingKind.APPOINTMENT:
        return Professional.objects.select_for_update().get(pk=booking.professional_id)
    return Room.objects.select_for_update().get(pk=booking.room_id)


def _lock_booking(booking):
    model = type(booking)
    try:
        return model.objects.select_for_update().get(pk=booking.pk)
    except model.DoesNotExist:
        raise BookingNotFound(booking.kind.value, booking.pk) from None


def _appointment_window(professional, day, start_time, duration_minutes) -> TimeWindow:
    """Window [start, start + duration) that fits the professional's hours."""
    start = to_minutes(start_time)
    end = start + duration_minutes
    day_schedule = professional.weekly_schedule().for_date(day)

    if end >= MINUTES_PER_DAY or not day_schedule.fits(start, end):
        end_time = to_time(end) if end < MINUTES_PER_DAY else None
        raise SlotUnavailable(
            professional,
            TimeWindow(day, to_time(start), end_time),
            reason=OUTSIDE_WORKING_HOURS
        )
    return TimeWindow(day, to_time(start), to_time(end))


def _ensure_free(resource, window, bookings, exclude=None) -> None:
    conflicts = find_conflicts(window, bookings, exclude=exclude)
    if conflicts:
        logger.info(
            "%s is not free for %s; conflicts with %s",
            resource, window, [booking.pk for booking in conflicts]
        )
        raise SlotUnavailable(resource, window, conflicts)


def _validate_stay(check_in_date: date, check_out_date: date, guest_count: int) -> None:
    if check_in_date >= check_out_date:
        raise ValueError("Check-out date must be after check-in date")
    if guest_count < 1:
        raise ValueError("Guest count must be at least 1")


def _validate_capacity(room: Room, guest_count: int) -> None:
    if guest_count > room.capacity:
        raise ValueError(
            f"Guest count ({guest_count}) exceeds room capacity ({room.capacity})"
        )


def _append_note(notes: str, reason: Optional[str]) -> str:
    line = f"Cancelled: {reason}" if reason else "Cancelled"
    return f"{notes}\n{line}" if notes else line


def _require(payload: dict, key: str):
    value = payload.get(key)
    if value is None or value == '':
        raise ValueError(f"Missing required field: {key}")
    return value


def _notify(notifier, booking, kind: str, **extra) -> bool:
    """Send a booking event; failures are logged, never raised."""
    try:
        notifier = notifier or get_notifier()
        return notifier.send(
            booking.recipient,
            kind,
            booking_payload(booking, **extra),
            booking=booking,
        )
    except Exception:
        logger.exception(
            "Could not send %s for %s %s", kind, booking.kind.value, booking.pk
        )
        return False
