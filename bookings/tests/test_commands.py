"""
Tests for the structured command interface.
"""

from datetime import date, time

from django.test import TestCase

from bookings.commands import COMMANDS, run_command
from bookings.lifecycle import CANCELLED, CONFIRMED, ReminderFlag
from bookings.models import Appointment, Reservation, Room

from .utils import (
    MONDAY,
    make_appointment,
    make_client,
    make_professional,
    make_reservation,
    make_room,
    make_service,
)


class AppointmentCommandTests(TestCase):
    """Test appointment commands end to end."""

    def setUp(self):
        self.professional = make_professional()
        self.client_record = make_client()
        self.service = make_service(duration=60)

    def create_payload(self, start='10:00', **overrides):
        payload = {
            'booking_type': 'appointment',
            'resource_id': self.professional.pk,
            'client_id': self.client_record.pk,
            'service_id': self.service.pk,
            'date': '2024-03-04',
            'start_time': start,
        }
        payload.update(overrides)
        return payload

    def test_check_availability_by_duration(self):
        response = run_command('check_availability', {
            'resource_id': self.professional.pk,
            'date': '2024-03-04',
            'service_duration': 60,
        })

        self.assertTrue(response['ok'])
        starts = [slot['start_time'] for slot in response['result']['slots']]
        self.assertIn('11:00', starts)
        self.assertNotIn('11:30', starts)
        self.assertEqual(response['result']['slots'][0], {
            'start_time': '09:00', 'end_time': '10:00', 'duration_minutes': 60,
        })

    def test_check_availability_by_service(self):
        make_appointment(self.professional, self.client_record, self.service, MONDAY, time(9, 0))

        response = run_command('check_availability', {
            'resource_id': self.professional.pk,
            'date': '2024-03-04',
            'service_id': self.service.pk,
        })

        starts = [slot['start_time'] for slot in response['result']['slots']]
        self.assertEqual(starts[0], '10:00')

    def test_check_availability_needs_a_duration(self):
        response = run_command('check_availability', {
            'resource_id': self.professional.pk,
            'date': '2024-03-04',
        })

        self.assertFalse(response['ok'])
        self.assertEqual(response['error']['error'], 'ValidationError')

    def test_create_booking(self):
        response = run_command('create_booking', self.create_payload(notes="via assistant"))

        self.assertTrue(response['ok'])
        result = response['result']
        self.assertEqual(result['booking_type'], 'appointment')
        self.assertEqual(result['status'], 'scheduled')
        self.assertEqual(result['start_time'], '10:00:00')
        self.assertEqual(result['end_time'], '11:00:00')
        self.assertEqual(result['reminders'], [])

    def test_create_booking_conflict(self):
        existing = make_appointment(self.professional, self.client_record, self.service, MONDAY,
                                    time(14, 0), status=CONFIRMED)

        response = run_command('create_booking', self.create_payload(start='13:30'))

        self.assertFalse(response['ok'])
        self.assertEqual(response['error']['error'], 'SlotUnavailable')
        self.assertEqual(response['error']['conflicting_ids'], [existing.pk])
        self.assertEqual(Appointment.objects.count(), 1)

    def test_create_booking_with_bad_payload(self):
        response = run_command('create_booking', self.create_payload(start='not a time'))

        self.assertFalse(response['ok'])
        self.assertIn('start_time', response['error']['details'])

    def test_transition_and_illegal_transition(self):
        appointment = make_appointment(self.professional, self.client_record, self.service, MONDAY,
                                       time(10, 0))
        ref = {'booking_type': 'appointment', 'booking_id': appointment.pk}

        illegal = run_command('transition_booking', dict(ref, target_state='completed'))
        self.assertFalse(illegal['ok'])
        self.assertEqual(illegal['error']['error'], 'InvalidTransition')
        self.assertEqual(illegal['error']['current'], 'scheduled')
        self.assertEqual(illegal['error']['requested'], 'completed')

        cancelled = run_command('transition_booking', dict(ref, target_state='cancelled', reason='sick'))
        self.assertTrue(cancelled['ok'])
        self.assertEqual(cancelled['result']['status'], CANCELLED)
        self.assertEqual(cancelled['result']['notes'], 'Cancelled: sick')

    def test_state_of_the_other_kind_is_an_invalid_transition(self):
        appointment = make_appointment(self.professional, self.client_record, self.service, MONDAY,
                                       time(10, 0), status=CONFIRMED)

        response = run_command('transition_booking', {
            'booking_type': 'appointment', 'booking_id': appointment.pk, 'target_state': 'checked_in',
        })

        self.assertFalse(response['ok'])
        self.assertEqual(response['error']['error'], 'InvalidTransition')
        self.assertEqual(response['error']['current'], CONFIRMED)
        self.assertEqual(response['error']['requested'], 'checked_in')
        appointment.refresh_from_db()
        self.assertEqual(appointment.status, CONFIRMED)

    def test_list_appointments(self):
        first = make_appointment(self.professional, self.client_record, self.service, MONDAY, time(9, 0))
        make_appointment(self.professional, self.client_record, self.service, MONDAY, time(14, 0),
                         status=CANCELLED)

        response = run_command('list_appointments', {
            'date': '2024-03-04', 'resource_id': self.professional.pk,
        })

        self.assertTrue(response['ok'])
        self.assertEqual([item['id'] for item in response['result']['bookings']], [first.pk])

    def test_reschedule(self):
        appointment = make_appointment(self.professional, self.client_record, self.service, MONDAY,
                                       time(10, 0), reminder_flags=int(ReminderFlag.HOUR_BEFORE))

        response = run_command('reschedule_booking', {
            'booking_type': 'appointment',
            'booking_id': appointment.pk,
            'date': '2024-03-05',
            'start_time': '15:00',
        })

        self.assertTrue(response['ok'])
        self.assertEqual(response['result']['date'], '2024-03-05')
        self.assertEqual(response['result']['reminders'], [])

    def test_reschedule_requires_window_fields(self):
        response = run_command('reschedule_booking', {
            'booking_type': 'appointment', 'booking_id': 1, 'date': '2024-03-05',
        })

        self.assertFalse(response['ok'])
        self.assertIn('start_time', response['error']['details'])


class ReservationCommandTests(TestCase):
    """Test reservation commands end to end."""

    def setUp(self):
        self.room = make_room(number="101", capacity=2)

    def test_create_and_fetch_reservation(self):
        response = run_command('create_booking', {
            'booking_type': 'reservation',
            'resource_id': self.room.pk,
            'check_in_date': '2024-03-01',
            'check_out_date': '2024-03-05',
            'guest_name': 'Marta',
            'guest_count': 2,
        })

        self.assertTrue(response['ok'])
        self.assertEqual(response['result']['nights'], 4)
        self.assertEqual(response['result']['status'], CONFIRMED)

        fetched = run_command('get_booking', {
            'booking_type': 'reservation', 'booking_id': response['result']['id'],
        })
        self.assertEqual(fetched['result']['guest_name'], 'Marta')

    def test_capacity_error_is_reported(self):
        response = run_command('create_booking', {
            'booking_type': 'reservation',
            'resource_id': self.room.pk,
            'check_in_date': '2024-03-01',
            'check_out_date': '2024-03-05',
            'guest_name': 'Marta',
            'guest_count': 3,
        })

        self.assertFalse(response['ok'])
        self.assertIn('capacity', response['error']['message'])
        self.assertFalse(Reservation.objects.exists())

    def test_date_order_is_validated(self):
        response = run_command('create_booking', {
            'booking_type': 'reservation',
            'resource_id': self.room.pk,
            'check_in_date': '2024-03-05',
            'check_out_date': '2024-03-01',
            'guest_name': 'Marta',
        })

        self.assertFalse(response['ok'])
        self.assertIn('check_out_date', response['error']['details'])

    def test_find_available_rooms(self):
        other = make_room(number="102", capacity=2)
        make_reservation(self.room, date(2024, 3, 1), date(2024, 3, 5))

        response = run_command('find_available_rooms', {
            'check_in_date': '2024-03-04',
            'check_out_date': '2024-03-06',
        })

        self.assertEqual([room['id'] for room in response['result']['rooms']], [other.pk])

    def test_check_in_through_transition(self):
        stay = make_reservation(self.room, date(2024, 3, 1), date(2024, 3, 5))

        response = run_command('transition_booking', {
            'booking_type': 'reservation', 'booking_id': stay.pk, 'target_state': 'checked_in',
        })

        self.assertTrue(response['ok'])
        self.assertIsNotNone(response['result']['checked_in_at'])
        self.room.refresh_from_db()
        self.assertTrue(self.room.is_occupied)

    def test_check_in_after_room_capacity_was_lowered(self):
        stay = make_reservation(self.room, date(2024, 3, 1), date(2024, 3, 5), guest_count=2)
        Room.objects.filter(pk=self.room.pk).update(capacity=1)

        response = run_command('transition_booking', {
            'booking_type': 'reservation', 'booking_id': stay.pk, 'target_state': 'checked_in',
        })

        self.assertTrue(response['ok'])
        self.assertEqual(response['result']['status'], 'checked_in')

    def test_pending_arrivals_and_departures(self):
        arriving = make_reservation(self.room, date(2024, 3, 10), date(2024, 3, 12))
        other = make_room(number="102")
        leaving = make_reservation(other, date(2024, 3, 7), date(2024, 3, 10), status='checked_in')

        check_ins = run_command('list_pending_check_ins', {'date': '2024-03-10'})
        check_outs = run_command('list_pending_check_outs', {'date': '2024-03-10'})

        self.assertEqual([item['id'] for item in check_ins['result']['bookings']], [arriving.pk])
        self.assertEqual([item['id'] for item in check_outs['result']['bookings']], [leaving.pk])
        self.assertEqual(check_outs['result']['bookings'][0]['status'], 'checked_in')

    def test_missing_booking(self):
        response = run_command('get_booking', {'booking_type': 'reservation', 'booking_id': 4242})

        self.assertFalse(response['ok'])
        self.assertEqual(response['error']['error'], 'BookingNotFound')


class RunCommandTests(TestCase):

    def test_unknown_command(self):
        response = run_command('delete_everything', {})

        self.assertFalse(response['ok'])
        self.assertEqual(response['error']['error'], 'UnknownCommand')
        self.assertEqual(response['error']['commands'], sorted(COMMANDS))

    def test_unknown_booking_type(self):
        response = run_command('create_booking', {'booking_type': 'table'})

        self.assertFalse(response['ok'])
        self.assertIn('booking_type', response['error']['details'])
