"""
Tests for the schedule model and slot generation.
"""

from datetime import time

from django.core.exceptions import ValidationError
from django.test import SimpleTestCase, TestCase

from bookings import services
from bookings.availability import (
    NOT_WORKING,
    DaySchedule,
    TimeSlot,
    WeeklySchedule,
    generate_slots,
    parse_minutes,
    to_time,
)
from bookings.exceptions import ResourceInactiveOrNotFound
from bookings.lifecycle import CANCELLED, CONFIRMED
from bookings.models import WorkingHours

from .utils import (
    MONDAY,
    SATURDAY,
    make_appointment,
    make_client,
    make_professional,
    make_service,
)


def monday_schedule():
    """Mon 09:00-18:00 with a 12:00-13:00 break; every other day off."""
    return WeeklySchedule.from_mapping({
        'monday': DaySchedule.from_times(True, '09:00', '18:00', '12:00', '13:00'),
    })


def labels(slots):
    return [str(slot) for slot in slots]


class SlotGenerationTests(SimpleTestCase):
    """Test generate_slots against working hours and breaks."""

    def test_break_excludes_overlapping_slots(self):
        """60 minute slots every 30 minutes skip anything touching the break."""
        slots = labels(generate_slots(monday_schedule(), MONDAY, 60, 30))

        self.assertIn('11:00-12:00', slots)
        self.assertIn('13:00-14:00', slots)
        self.assertNotIn('11:30-12:30', slots)
        self.assertNotIn('12:30-13:30', slots)
        self.assertNotIn('12:00-13:00', slots)

    def test_full_day_listing(self):
        slots = labels(generate_slots(monday_schedule(), MONDAY, 60, 30))

        self.assertEqual(slots[0], '09:00-10:00')
        self.assertEqual(slots[-1], '17:00-18:00')
        self.assertEqual(len(slots), 14)

    def test_slots_never_run_past_closing(self):
        slots = list(generate_slots(monday_schedule(), MONDAY, 45, 30))

        self.assertTrue(all(slot.end_minute <= 18 * 60 for slot in slots))
        self.assertEqual(str(slots[-1]), '17:00-17:45')

    def test_non_working_day_is_empty(self):
        self.assertEqual(list(generate_slots(monday_schedule(), SATURDAY, 60, 30)), [])

    def test_deterministic_and_restartable(self):
        schedule = monday_schedule()
        first = list(generate_slots(schedule, MONDAY, 30, 15))
        second = list(generate_slots(schedule, MONDAY, 30, 15))

        self.assertEqual(first, second)
        self.assertEqual(first, sorted(first))

    def test_generator_is_lazy(self):
        slots = generate_slots(monday_schedule(), MONDAY, 60, 30)

        self.assertEqual(next(slots), TimeSlot(9 * 60, 10 * 60))
        self.assertEqual(next(slots), TimeSlot(9 * 60 + 30, 10 * 60 + 30))

    def test_accepts_a_single_day_schedule(self):
        day = DaySchedule.from_times(True, '10:00', '12:00')
        self.assertEqual(labels(generate_slots(day, SATURDAY, 60, 60)), ['10:00-11:00', '11:00-12:00'])

    def test_rejects_non_positive_duration_and_step(self):
        with self.assertRaises(ValueError):
            generate_slots(monday_schedule(), MONDAY, 0, 30)
        with self.assertRaises(ValueError):
            generate_slots(monday_schedule(), MONDAY, 60, 0)

    def test_duration_longer_than_day_yields_nothing(self):
        self.assertEqual(list(generate_slots(monday_schedule(), MONDAY, 10 * 60, 30)), [])


class ScheduleModelTests(SimpleTestCase):
    """Test DaySchedule invariants and time helpers."""

    def test_start_must_precede_end(self):
        with self.assertRaises(ValueError):
            DaySchedule.from_times(True, '18:00', '09:00')

    def test_break_must_lie_within_hours(self):
        with self.assertRaises(ValueError):
            DaySchedule.from_times(True, '09:00', '18:00', '08:00', '10:00')
        with self.assertRaises(ValueError):
            DaySchedule.from_times(True, '09:00', '18:00', '13:00', '12:00')

    def test_break_needs_both_ends(self):
        with self.assertRaises(ValueError):
            DaySchedule.from_times(True, '09:00', '18:00', '12:00', None)

    def test_off_day_ignores_times(self):
        self.assertEqual(DaySchedule.from_times(False, '18:00', '09:00'), NOT_WORKING)

    def test_fits(self):
        day = DaySchedule.from_times(True, '09:00', '18:00', '12:00', '13:00')

        self.assertTrue(day.fits(9 * 60, 10 * 60))
        self.assertTrue(day.fits(13 * 60, 14 * 60))
        self.assertFalse(day.fits(11 * 60 + 30, 12 * 60 + 30))
        self.assertFalse(day.fits(8 * 60 + 30, 9 * 60 + 30))
        self.assertFalse(day.fits(17 * 60 + 30, 18 * 60 + 30))
        self.assertFalse(NOT_WORKING.fits(9 * 60, 10 * 60))

    def test_parse_minutes(self):
        self.assertEqual(parse_minutes('08:30'), 510)
        self.assertEqual(parse_minutes('08:30:00'), 510)
        self.assertEqual(parse_minutes(time(18, 0)), 1080)
        with self.assertRaises(ValueError):
            parse_minutes('25:00')
        with self.assertRaises(ValueError):
            parse_minutes('noon')

    def test_to_time_range(self):
        self.assertEqual(to_time(0), time(0, 0))
        self.assertEqual(to_time(1439), time(23, 59))
        with self.assertRaises(ValueError):
            to_time(1440)

    def test_weekly_schedule_requires_seven_days(self):
        with self.assertRaises(ValueError):
            WeeklySchedule(days=(NOT_WORKING,) * 6)


class WorkingHoursModelTests(TestCase):
    """Test WorkingHours validation and conversion."""

    def setUp(self):
        self.professional = make_professional(weekdays=[])

    def test_break_outside_hours_rejected(self):
        with self.assertRaises(ValidationError):
            WorkingHours.objects.create(
                professional=self.professional,
                weekday=0,
                start_time=time(9, 0),
                end_time=time(18, 0),
                break_start=time(17, 30),
                break_end=time(19, 0),
            )

    def test_working_day_needs_hours(self):
        with self.assertRaises(ValidationError):
            WorkingHours.objects.create(professional=self.professional, weekday=0)

    def test_day_off_row(self):
        WorkingHours.objects.create(professional=self.professional, weekday=0, is_working=False)

        schedule = self.professional.weekly_schedule()
        self.assertFalse(schedule.for_date(MONDAY).is_working)

    def test_weekly_schedule_from_rows(self):
        professional = make_professional(name="Dr. Lima")
        schedule = professional.weekly_schedule()

        self.assertTrue(schedule.for_date(MONDAY).is_working)
        self.assertEqual(schedule.for_date(MONDAY).break_start_minute, 12 * 60)
        self.assertFalse(schedule.for_date(SATURDAY).is_working)


class CheckAvailabilityTests(TestCase):
    """Test the availability query against stored bookings."""

    def setUp(self):
        self.professional = make_professional()
        self.client_record = make_client()
        self.service = make_service(duration=60)

    def test_booked_slots_are_removed(self):
        make_appointment(self.professional, self.client_record, self.service, MONDAY, time(14, 0),
                         status=CONFIRMED)

        slots = labels(services.check_availability(self.professional.pk, MONDAY, 60))

        self.assertNotIn('13:30-14:30', slots)
        self.assertNotIn('14:00-15:00', slots)
        self.assertNotIn('14:30-15:30', slots)
        self.assertIn('13:00-14:00', slots)
        self.assertIn('15:00-16:00', slots)

    def test_cancelled_appointments_free_their_slot(self):
        make_appointment(self.professional, self.client_record, self.service, MONDAY, time(14, 0),
                         status=CANCELLED)

        slots = labels(services.check_availability(self.professional.pk, MONDAY, 60))
        self.assertIn('14:00-15:00', slots)

    def test_day_off_has_no_slots(self):
        self.assertEqual(services.check_availability(self.professional.pk, SATURDAY, 60), [])

    def test_inactive_professional(self):
        inactive = make_professional(name="Dr. Gone", is_active=False)

        with self.assertRaises(ResourceInactiveOrNotFound):
            services.check_availability(inactive.pk, MONDAY, 60)

    def test_unknown_professional(self):
        with self.assertRaises(ResourceInactiveOrNotFound):
            services.check_availability(999999, MONDAY, 60)
