"""
Engine configuration.

Values come from the ``BOOKING_ENGINE`` dict in Django settings; any key not
set there falls back to DEFAULTS.
"""

from datetime import time

from django.conf import settings

from .availability import parse_minutes, to_time


DEFAULTS = {
    'SWEEP_INTERVAL_SECONDS': 30 * 60,
    'SWEEP_POLL_SECONDS': 5,
    'SLOT_STEP_MINUTES': 30,
    'HOUR_REMINDER_MIN_MINUTES': 30,
    'HOUR_REMINDER_MAX_MINUTES': 120,
    'TOMORROW_REMINDER_TIME': '18:00',
    'TODAY_REMINDER_TIME': '08:00',
    'RESERVATION_REMINDER_TIME': '00:00',
    'NOTIFICATION_RETENTION_DAYS': 30,
    'NOTIFY_MAX_ATTEMPTS': 5,
    'NOTIFIER': 'bookings.notifications.LoggingNotifier',
}


def get_setting(name):
    """Return an engine setting, falling back to its default."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown booking engine setting: {name}")
    overrides = getattr(settings, 'BOOKING_ENGINE', None) or {}
    return overrides.get(name, DEFAULTS[name])


def get_time_setting(name) -> time:
    """Return a time-of-day setting given as 'HH:MM' or a time."""
    return to_time(parse_minutes(get_setting(name)))
