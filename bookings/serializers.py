"""
Serializers for the booking command interface.
"""

from rest_framework import serializers

from .lifecycle import BookingKind
from .models import Appointment, Reservation, Room


BOOKING_TYPE_CHOICES = [kind.value for kind in BookingKind]


class TimeSlotSerializer(serializers.Serializer):
    """Serializer for a free slot (output)."""

    start_time = serializers.TimeField(format='%H:%M')
    end_time = serializers.TimeField(format='%H:%M')
    duration_minutes = serializers.IntegerField()


class RoomSerializer(serializers.ModelSerializer):

    class Meta:
        model = Room
        fields = ['id', 'number', 'room_type', 'capacity', 'is_occupied']


class AppointmentReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying Appointment (output)."""

    booking_type = serializers.SerializerMethodField()
    reminders = serializers.ListField(source='reminder_names', read_only=True)

    class Meta:
        model = Appointment
        fields = [
            'id',
            'booking_type',
            'professional',
            'client',
            'service',
            'date',
            'start_time',
            'end_time',
            'status',
            'notes',
            'reminders',
            'created_at',
            'updated_at',
        ]

    def get_booking_type(self, obj):
        return obj.kind.value


class ReservationReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying Reservation (output)."""

    booking_type = serializers.SerializerMethodField()
    nights = serializers.ReadOnlyField()
    reminders = serializers.ListField(source='reminder_names', read_only=True)

    class Meta:
        model = Reservation
        fields = [
            'id',
            'booking_type',
            'room',
            'guest_name',
            'guest_phone',
            'guest_email',
            'guest_count',
            'check_in_date',
            'check_out_date',
            'nights',
            'status',
            'checked_in_at',
            'checked_out_at',
            'notes',
            'reminders',
            'created_at',
            'updated_at',
        ]

    def get_booking_type(self, obj):
        return obj.kind.value


def booking_read_serializer(booking):
    if booking.kind is BookingKind.APPOINTMENT:
        return AppointmentReadSerializer(booking)
    return ReservationReadSerializer(booking)


class AvailabilityQuerySerializer(serializers.Serializer):
    """Serializer for slot availability queries."""

    resource_id = serializers.IntegerField(min_value=1)
    date = serializers.DateField()
    service_duration = serializers.IntegerField(min_value=1, required=False)
    service_id = serializers.IntegerField(min_value=1, required=False)
    step_minutes = serializers.IntegerField(min_value=1, required=False)

    def validate(self, data):
        """Require either a duration or a service to take it from."""
        if 'service_duration' not in data and 'service_id' not in data:
            raise serializers.ValidationError(
                "Either service_duration or service_id is required."
            )
        return data


class RoomSearchSerializer(serializers.Serializer):
    """Serializer for free-room search."""

    check_in_date = serializers.DateField()
    check_out_date = serializers.DateField()
    guest_count = serializers.IntegerField(min_value=1, default=1)

    def validate(self, data):
        if data['check_in_date'] >= data['check_out_date']:
            raise serializers.ValidationError({
                'check_out_date': 'Check-out date must be after check-in date.'
            })
        return data


class DayListSerializer(serializers.Serializer):
    """Serializer for daily lists; both fields are optional."""

    date = serializers.DateField(required=False)
    resource_id = serializers.IntegerField(min_value=1, required=False)


class AppointmentCreateSerializer(serializers.Serializer):
    """Serializer for booking an appointment."""

    resource_id = serializers.IntegerField(min_value=1)
    client_id = serializers.IntegerField(min_value=1)
    service_id = serializers.IntegerField(min_value=1)
    date = serializers.DateField()
    start_time = serializers.TimeField()
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class ReservationCreateSerializer(serializers.Serializer):
    """Serializer for reserving a room."""

    resource_id = serializers.IntegerField(min_value=1)
    check_in_date = serializers.DateField()
    check_out_date = serializers.DateField()
    guest_name = serializers.CharField(max_length=200)
    guest_count = serializers.IntegerField(min_value=1, default=1)
    guest_phone = serializers.CharField(max_length=30, required=False, allow_blank=True, default='')
    guest_email = serializers.EmailField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, data):
        if data['check_in_date'] >= data['check_out_date']:
            raise serializers.ValidationError({
                'check_out_date': 'Check-out date must be after check-in date.'
            })
        return data


CREATE_SERIALIZERS = {
    BookingKind.APPOINTMENT: AppointmentCreateSerializer,
    BookingKind.RESERVATION: ReservationCreateSerializer,
}


class BookingRefSerializer(serializers.Serializer):
    """Identifies one booking; the two kinds are numbered separately."""

    booking_type = serializers.ChoiceField(choices=BOOKING_TYPE_CHOICES)
    booking_id = serializers.IntegerField(min_value=1)


class CreateBookingSerializer(serializers.Serializer):

    booking_type = serializers.ChoiceField(choices=BOOKING_TYPE_CHOICES)


class TransitionSerializer(BookingRefSerializer):
    """Serializer for a lifecycle transition request."""

    target_state = serializers.CharField(max_length=20)
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class RescheduleSerializer(BookingRefSerializer):
    """
    Serializer for moving a booking.

    Appointments take date and start_time; reservations take check_in_date
    and check_out_date.
    """

    date = serializers.DateField(required=False)
    start_time = serializers.TimeField(required=False)
    check_in_date = serializers.DateField(required=False)
    check_out_date = serializers.DateField(required=False)

    def validate(self, data):
        if data['booking_type'] == BookingKind.APPOINTMENT.value:
            required = ('date', 'start_time')
        else:
            required = ('check_in_date', 'check_out_date')

        missing = {name: 'This field is required.' for name in required if name not in data}
        if missing:
            raise serializers.ValidationError(missing)

        if data['booking_type'] == BookingKind.RESERVATION.value:
            if data['check_in_date'] >= data['check_out_date']:
                raise serializers.ValidationError({
                    'check_out_date': 'Check-out date must be after check-in date.'
                })
        return data
