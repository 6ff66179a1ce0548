"""
Notifier interface and notification records.

Every message goes through ``Notifier.send``, which writes a Notification
row and hands delivery to the backend's ``deliver``. A delivery error never
escapes ``send``: the row is marked failed and ``send`` returns False, so
booking writes and sweeps carry on.
"""

import logging
from datetime import date, datetime, time
from decimal import Decimal

from django.db import models
from django.utils import timezone
from django.utils.module_loading import import_string

from .conf import get_setting
from .lifecycle import BookingKind
from .models import Notification

logger = logging.getLogger(__name__)


BOOKING_CREATED = 'booking_created'
BOOKING_CONFIRMED = 'booking_confirmed'
BOOKING_CANCELLED = 'booking_cancelled'
BOOKING_RESCHEDULED = 'booking_rescheduled'
CHECKED_IN = 'checked_in'
CHECKED_OUT = 'checked_out'

MESSAGES = {
    BOOKING_CREATED: "Your {kind} for {window} is booked.",
    BOOKING_CONFIRMED: "Your {kind} for {window} is confirmed.",
    BOOKING_CANCELLED: "Your {kind} for {window} was cancelled.",
    BOOKING_RESCHEDULED: "Your {kind} was moved to {window}.",
    CHECKED_IN: "Welcome! You are checked in to {resource}.",
    CHECKED_OUT: "You are checked out of {resource}. Thank you for staying with us.",
    'reminder_hour_before': "Reminder: your appointment starts at {start_time}.",
    'reminder_day_before': "Reminder: you have an appointment tomorrow at {start_time}.",
    'reminder_same_day': "Reminder: you have an appointment today at {start_time}.",
    'reminder_checkin_tomorrow': "Reminder: your check-in to {resource} is tomorrow.",
    'reminder_checkout_pending': "Your check-out from {resource} is due today.",
}


def make_json_safe(value):
    """Convert dates, decimals and model instances for a JSONField."""
    if isinstance(value, dict):
        return {str(key): make_json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [make_json_safe(item) for item in value]
    if isinstance(value, models.Model):
        return {'model': value._meta.label_lower, 'pk': value.pk}
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def booking_payload(booking, **extra):
    """Message context for a booking."""
    payload = {
        'booking_kind': booking.kind.value,
        'booking_id': booking.pk,
        'status': booking.status,
        'resource': str(booking.resource),
        'window': str(booking.window),
    }
    if booking.kind is BookingKind.APPOINTMENT:
        payload.update(
            date=booking.date,
            start_time=booking.start_time.strftime('%H:%M'),
            end_time=booking.end_time.strftime('%H:%M'),
            service=booking.service.name,
        )
    else:
        payload.update(
            check_in_date=booking.check_in_date,
            check_out_date=booking.check_out_date,
            guest_name=booking.guest_name,
        )
    payload.update(extra)
    return make_json_safe(payload)


def render_message(kind, payload):
    template = MESSAGES.get(kind)
    if template is None:
        return kind
    context = dict(payload)
    context.setdefault('kind', context.get('booking_kind', 'booking'))
    try:
        return template.format(**context)
    except KeyError:
        return kind


class Notifier:
    """
    Base notifier.

    Subclasses implement ``deliver``; it should raise NotifyFailure (or any
    other exception) when the message could not be handed to the channel.
    """

    def deliver(self, recipient, kind, payload):
        raise NotImplementedError

    def send(self, recipient, kind, payload, booking=None, retry_on_sweep=True) -> bool:
        """
        Record and deliver one message.

        Args:
            recipient: Phone, e-mail or name of the person notified
            kind: Message kind, e.g. 'booking_created' or 'reminder_same_day'
            payload: JSON-safe message context
            booking: Booking the message is about, if any
            retry_on_sweep: Whether the sweeper should retry a failed send

        Returns:
            True if the message was delivered
        """
        record = Notification.objects.create(
            recipient=recipient or '',
            kind=kind,
            payload=make_json_safe(payload or {}),
            retry_on_sweep=retry_on_sweep,
            booking_kind=booking.kind.value if booking is not None else '',
            booking_id=booking.pk if booking is not None else None,
        )
        return self._attempt(record)

    def retry(self, record: Notification) -> bool:
        """Deliver a previously failed record again."""
        return self._attempt(record)

    def _attempt(self, record):
        record.attempts += 1
        try:
            self.deliver(record.recipient, record.kind, record.payload)
        except Exception as exc:
            logger.warning(
                "Notification %s (%s to %s) failed on attempt %s: %s",
                record.pk, record.kind, record.recipient, record.attempts, exc
            )
            record.status = 'failed'
            record.error_message = str(exc)
            record.save(update_fields=['attempts', 'status', 'error_message'])
            return False

        record.status = 'sent'
        record.sent_at = timezone.now()
        record.error_message = ''
        record.save(update_fields=['attempts', 'status', 'sent_at', 'error_message'])
        return True


class LoggingNotifier(Notifier):
    """Writes messages to the log instead of an outbound channel."""

    def deliver(self, recipient, kind, payload):
        logger.info("Notify %s [%s]: %s", recipient, kind, render_message(kind, payload))


def get_notifier() -> Notifier:
    """Instantiate the notifier configured in BOOKING_ENGINE['NOTIFIER']."""
    return import_string(get_setting('NOTIFIER'))()


def retry_failed(notifier: Notifier, max_attempts=None) -> int:
    """
    Retry failed transactional notifications.

    Returns:
        Number of records delivered on this pass
    """
    if max_attempts is None:
        max_attempts = get_setting('NOTIFY_MAX_ATTEMPTS')

    delivered = 0
    for record in Notification.objects.retryable(max_attempts).order_by('created_at'):
        if notifier.retry(record):
            delivered += 1
    return delivered


def purge_notifications(cutoff) -> int:
    """Delete notification records created before cutoff."""
    deleted, _ = Notification.objects.older_than(cutoff).delete()
    if deleted:
        logger.info("Purged %s notification record(s) older than %s", deleted, cutoff)
    return deleted
