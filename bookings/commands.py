"""
Structured command interface.

Callers (the HTTP layer, the conversational assistant, scripts) send a
command name and a plain dict payload. Payloads are validated with the
serializers in ``serializers.py`` and handed to ``services``; results come
back as plain dicts:

    {'ok': True, 'result': {...}}
    {'ok': False, 'error': {'error': 'SlotUnavailable', 'message': ..., ...}}
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from . import services
from .exceptions import BookingError, ResourceInactiveOrNotFound
from .lifecycle import BookingKind
from .models import Service
from .serializers import (
    CREATE_SERIALIZERS,
    AppointmentReadSerializer,
    AvailabilityQuerySerializer,
    BookingRefSerializer,
    CreateBookingSerializer,
    DayListSerializer,
    ReservationReadSerializer,
    RescheduleSerializer,
    RoomSearchSerializer,
    RoomSerializer,
    TimeSlotSerializer,
    TransitionSerializer,
    booking_read_serializer,
)
from .types import DateRange, TimeWindow

logger = logging.getLogger(__name__)


def check_availability(payload):
    serializer = AvailabilityQuerySerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    duration = data.get('service_duration')
    if duration is None:
        duration = _service_duration(data['service_id'])

    slots = services.check_availability(
        professional_id=data['resource_id'],
        day=data['date'],
        service_duration=duration,
        step_minutes=data.get('step_minutes')
    )
    return {
        'resource_id': data['resource_id'],
        'date': data['date'].isoformat(),
        'slots': TimeSlotSerializer(slots, many=True).data,
    }


def find_available_rooms(payload):
    serializer = RoomSearchSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    rooms = services.find_available_rooms(
        data['check_in_date'],
        data['check_out_date'],
        data['guest_count']
    )
    return {'rooms': RoomSerializer(rooms, many=True).data}


def create_booking(payload):
    """Create an appointment or a reservation; ``booking_type`` selects which."""
    type_serializer = CreateBookingSerializer(data=payload)
    type_serializer.is_valid(raise_exception=True)
    kind = BookingKind(type_serializer.validated_data['booking_type'])

    serializer = CREATE_SERIALIZERS[kind](data=payload)
    serializer.is_valid(raise_exception=True)
    data = dict(serializer.validated_data)
    resource_id = data.pop('resource_id')

    if kind is BookingKind.APPOINTMENT:
        window = TimeWindow(date=data.pop('date'), start_time=data.pop('start_time'))
    else:
        window = DateRange(
            check_in_date=data.pop('check_in_date'),
            check_out_date=data.pop('check_out_date')
        )

    booking = services.create_booking(resource_id, window, data)
    return booking_read_serializer(booking).data


def get_booking(payload):
    serializer = BookingRefSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    booking = services.get_booking(data['booking_type'], data['booking_id'])
    return booking_read_serializer(booking).data


def transition_booking(payload):
    serializer = TransitionSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    booking = services.get_booking(data['booking_type'], data['booking_id'])
    updated = services.transition_booking(booking, data['target_state'], reason=data.get('reason'))
    return booking_read_serializer(updated).data


def reschedule_booking(payload):
    serializer = RescheduleSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    booking = services.get_booking(data['booking_type'], data['booking_id'])
    if booking.kind is BookingKind.APPOINTMENT:
        window = TimeWindow(date=data['date'], start_time=data['start_time'])
    else:
        window = DateRange(check_in_date=data['check_in_date'], check_out_date=data['check_out_date'])

    updated = services.reschedule_booking(booking, window)
    return booking_read_serializer(updated).data


def list_appointments(payload):
    serializer = DayListSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    appointments = services.appointments_for_day(data.get('date'), data.get('resource_id'))
    return {'bookings': AppointmentReadSerializer(appointments, many=True).data}


def list_pending_check_ins(payload):
    serializer = DayListSerializer(data=payload)
    serializer.is_valid(raise_exception=True)

    reservations = services.pending_check_ins(serializer.validated_data.get('date'))
    return {'bookings': ReservationReadSerializer(reservations, many=True).data}


def list_pending_check_outs(payload):
    serializer = DayListSerializer(data=payload)
    serializer.is_valid(raise_exception=True)

    reservations = services.pending_check_outs(serializer.validated_data.get('date'))
    return {'bookings': ReservationReadSerializer(reservations, many=True).data}


COMMANDS = {
    'check_availability': check_availability,
    'find_available_rooms': find_available_rooms,
    'create_booking': create_booking,
    'get_booking': get_booking,
    'transition_booking': transition_booking,
    'reschedule_booking': reschedule_booking,
    'list_appointments': list_appointments,
    'list_pending_check_ins': list_pending_check_ins,
    'list_pending_check_outs': list_pending_check_outs,
}


def run_command(name, payload=None):
    """
    Run one command and return a result envelope.

    Domain errors and invalid payloads come back as ``ok: False`` with a
    structured error; anything else propagates.
    """
    handler = COMMANDS.get(name)
    if handler is None:
        return _error_envelope(
            'UnknownCommand',
            f"Unknown command: {name}",
            commands=sorted(COMMANDS)
        )

    try:
        result = handler(payload or {})
    except serializers.ValidationError as exc:
        logger.info("Command %s rejected: %s", name, exc.detail)
        return _error_envelope('ValidationError', 'Invalid payload', details=exc.detail)
    except DjangoValidationError as exc:
        logger.info("Command %s rejected by model validation: %s", name, exc.messages)
        details = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
        return _error_envelope('ValidationError', 'Invalid booking data', details=details)
    except ValueError as exc:
        logger.info("Command %s rejected: %s", name, exc)
        return _error_envelope('ValidationError', str(exc))
    except BookingError as exc:
        logger.info("Command %s failed: %s", name, exc)
        return {'ok': False, 'error': exc.as_dict()}

    return {'ok': True, 'result': result}


def _error_envelope(error, message, **extra):
    body = {'error': error, 'message': message, 'retryable': False}
    body.update(extra)
    return {'ok': False, 'error': body}


def _service_duration(service_id):
    duration = (
        Service.objects.filter(pk=service_id, is_active=True)
        .values_list('duration_minutes', flat=True)
        .first()
    )
    if duration is None:
        raise ResourceInactiveOrNotFound('service', service_id)
    return duration
