"""
Lifecycle sweep: time-triggered reminders and notification upkeep.

A sweep looks at the local wall clock once and then, for each trigger,
visits the bookings that are due and whose flag is not set yet. Each visit
runs in its own transaction with the booking row locked: the flag and the
trigger condition are checked again, the notifier is called, and the flag is
set only when the send succeeded. A failed send leaves the flag clear, so
the next sweep tries again.

The sweeper never changes a booking's status.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Optional

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from .availability import to_minutes
from .conf import get_setting, get_time_setting
from .exceptions import NotifyFailure
from .lifecycle import CHECKED_IN, CONFIRMED, ReminderFlag
from .models import Appointment, Reservation
from .notifications import booking_payload, get_notifier, purge_notifications, retry_failed
from .types import MINUTES_PER_DAY

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepPolicy:
    """When each reminder fires, plus retry and retention limits."""

    hour_min_minutes: int = 30
    hour_max_minutes: int = 120
    tomorrow_time: time = time(18, 0)
    today_time: time = time(8, 0)
    reservation_time: time = time(0, 0)
    retention_days: int = 30
    max_attempts: int = 5

    @classmethod
    def from_settings(cls) -> 'SweepPolicy':
        return cls(
            hour_min_minutes=get_setting('HOUR_REMINDER_MIN_MINUTES'),
            hour_max_minutes=get_setting('HOUR_REMINDER_MAX_MINUTES'),
            tomorrow_time=get_time_setting('TOMORROW_REMINDER_TIME'),
            today_time=get_time_setting('TODAY_REMINDER_TIME'),
            reservation_time=get_time_setting('RESERVATION_REMINDER_TIME'),
            retention_days=get_setting('NOTIFICATION_RETENTION_DAYS'),
            max_attempts=get_setting('NOTIFY_MAX_ATTEMPTS'),
        )


@dataclass(frozen=True)
class LocalMoment:
    """The sweep's view of the local wall clock."""

    today: date
    time_of_day: time

    @classmethod
    def from_datetime(cls, now: datetime) -> 'LocalMoment':
        local = timezone.localtime(now) if timezone.is_aware(now) else now
        return cls(today=local.date(), time_of_day=local.time().replace(microsecond=0))

    @property
    def tomorrow(self) -> date:
        return self.today + timedelta(days=1)

    def minutes_until(self, day: date, start: time) -> int:
        """Minutes from now until a local date and time (negative if past)."""
        then = day.toordinal() * MINUTES_PER_DAY + to_minutes(start)
        current = self.today.toordinal() * MINUTES_PER_DAY + to_minutes(self.time_of_day)
        return then - current


@dataclass
class SweepReport:
    started_at: datetime
    sent: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, int] = field(default_factory=dict)
    retried: int = 0
    purged: int = 0

    def record(self, flag: ReminderFlag, delivered: bool) -> None:
        counts = self.sent if delivered else self.failed
        name = flag.name.lower()
        counts[name] = counts.get(name, 0) + 1

    @property
    def total_sent(self) -> int:
        return sum(self.sent.values())

    @property
    def total_failed(self) -> int:
        return sum(self.failed.values())

    def __str__(self):
        return (
            f"sent {self.total_sent}, failed {self.total_failed}, "
            f"retried {self.retried}, purged {self.purged}"
        )


def reminder_kind(flag: ReminderFlag) -> str:
    return f"reminder_{flag.name.lower()}"


class LifecycleSweeper:
    """
    Fires reminders and keeps the notification table tidy.

    Args:
        notifier: Notifier to send through (defaults to the configured one)
        clock: Callable returning the current aware datetime
        policy: SweepPolicy (defaults to the BOOKING_ENGINE settings)
    """

    def __init__(self, notifier=None, clock: Optional[Callable[[], datetime]] = None,
                 policy: Optional[SweepPolicy] = None):
        self.notifier = notifier or get_notifier()
        self.clock = clock or timezone.now
        self.policy = policy or SweepPolicy.from_settings()

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Run every trigger once, then retry failed sends and purge old records."""
        now = now or self.clock()
        moment = LocalMoment.from_datetime(now)
        report = SweepReport(started_at=now)

        self._hour_before(moment, report)
        self._day_before(moment, report)
        self._same_day(moment, report)
        self._checkin_tomorrow(moment, report)
        self._checkout_pending(moment, report)

        report.retried = self._retry_failed()
        report.purged = self._purge(now)

        logger.info("Sweep at %s finished: %s", now, report)
        return report

    def _hour_before(self, moment: LocalMoment, report: SweepReport) -> None:
        def is_due(appointment):
            minutes = moment.minutes_until(appointment.date, appointment.start_time)
            return (
                appointment.is_active
                and self.policy.hour_min_minutes <= minutes <= self.policy.hour_max_minutes
            )

        candidates = (
            Appointment.objects.active()
            .without_flag(ReminderFlag.HOUR_BEFORE)
            .filter(date__in=[moment.today, moment.tomorrow])
        )
        for appointment in candidates:
            if is_due(appointment):
                self._fire(Appointment, appointment.pk, ReminderFlag.HOUR_BEFORE, is_due, report)

    def _day_before(self, moment: LocalMoment, report: SweepReport) -> None:
        if moment.time_of_day < self.policy.tomorrow_time:
            return

        def is_due(appointment):
            return appointment.is_active and appointment.date == moment.tomorrow

        candidates = (
            Appointment.objects.active()
            .without_flag(ReminderFlag.DAY_BEFORE)
            .on_date(moment.tomorrow)
        )
        for pk in candidates.values_list('pk', flat=True):
            self._fire(Appointment, pk, ReminderFlag.DAY_BEFORE, is_due, report)

    def _same_day(self, moment: LocalMoment, report: SweepReport) -> None:
        if moment.time_of_day < self.policy.today_time:
            return

        def is_due(appointment):
            return (
                appointment.is_active
                and appointment.date == moment.today
                and appointment.start_time > moment.time_of_day
            )

        candidates = (
            Appointment.objects.active()
            .without_flag(ReminderFlag.SAME_DAY)
            .on_date(moment.today)
            .filter(start_time__gt=moment.time_of_day)
        )
        for pk in candidates.values_list('pk', flat=True):
            self._fire(Appointment, pk, ReminderFlag.SAME_DAY, is_due, report)

    def _checkin_tomorrow(self, moment: LocalMoment, report: SweepReport) -> None:
        if moment.time_of_day < self.policy.reservation_time:
            return

        def is_due(reservation):
            return (
                reservation.status == CONFIRMED
                and reservation.check_in_date == moment.tomorrow
            )

        candidates = (
            Reservation.objects.checking_in_on(moment.tomorrow)
            .without_flag(ReminderFlag.CHECKIN_TOMORROW)
        )
        for pk in candidates.values_list('pk', flat=True):
            self._fire(Reservation, pk, ReminderFlag.CHECKIN_TOMORROW, is_due, report)

    def _checkout_pending(self, moment: LocalMoment, report: SweepReport) -> None:
        def is_due(reservation):
            return reservation.status == CHECKED_IN and reservation.check_out_date <= moment.today

        candidates = (
            Reservation.objects.checkout_due(moment.today)
            .without_flag(ReminderFlag.CHECKOUT_PENDING)
        )
        for pk in candidates.values_list('pk', flat=True):
            self._fire(Reservation, pk, ReminderFlag.CHECKOUT_PENDING, is_due, report)

    def _fire(self, model, pk, flag: ReminderFlag, is_due, report: SweepReport) -> None:
        """Send one reminder under a row lock and record it on success."""
        try:
            with transaction.atomic():
                booking = model.objects.select_for_update().filter(pk=pk).first()
                if booking is None or booking.has_reminder(flag) or not is_due(booking):
                    return

                try:
                    delivered = self.notifier.send(
                        booking.recipient,
                        reminder_kind(flag),
                        booking_payload(booking),
                        booking=booking,
                        retry_on_sweep=False,
                    )
                except NotifyFailure as exc:
                    logger.warning("Reminder %s for %s %s failed: %s", flag.name, model.__name__, pk, exc)
                    delivered = False

                if delivered:
                    model.objects.filter(pk=pk).update(
                        reminder_flags=F('reminder_flags').bitor(int(flag))
                    )
                report.record(flag, delivered)
        except DatabaseError:
            logger.exception("Reminder %s for %s %s could not be processed", flag.name, model.__name__, pk)
            report.record(flag, False)

    def _retry_failed(self) -> int:
        try:
            return retry_failed(self.notifier, self.policy.max_attempts)
        except DatabaseError:
            logger.exception("Retrying failed notifications did not complete")
            return 0

    def _purge(self, now: datetime) -> int:
        cutoff = now - timedelta(days=self.policy.retention_days)
        try:
            return purge_notifications(cutoff)
        except DatabaseError:
            logger.exception("Purging notifications older than %s did not complete", cutoff)
            return 0
