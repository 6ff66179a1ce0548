"""
Django settings for the booking_engine project.

Environment variables override the defaults below; see BOOKING_ENGINE for
the engine's own knobs (sweep cadence, reminder windows, retention).
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'replace-me-in-production')

DEBUG = os.environ.get('DJANGO_DEBUG', '0').lower() in ('1', 'true', 'yes')

ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost').split(',')

INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'rest_framework',
    'bookings',
]

# Database
# Writes lock the resource row, so every backend gets a bounded wait.

DB_ENGINE = os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3')

DB_TIMEOUT_SECONDS = int(os.environ.get('DB_TIMEOUT_SECONDS', '5'))

DATABASES = {
    'default': {
        'ENGINE': DB_ENGINE,
        'NAME': os.environ.get('DB_NAME', BASE_DIR / 'db.sqlite3'),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
        'OPTIONS': (
            {'timeout': DB_TIMEOUT_SECONDS}
            if DB_ENGINE.endswith('sqlite3')
            else {'options': f"-c statement_timeout={DB_TIMEOUT_SECONDS * 1000}"}
        ),
    }
}

# Internationalization

LANGUAGE_CODE = 'en-us'

TIME_ZONE = os.environ.get('TIME_ZONE', 'UTC')

USE_I18N = True

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Booking engine

BOOKING_ENGINE = {
    'SWEEP_INTERVAL_SECONDS': int(os.environ.get('SWEEP_INTERVAL_SECONDS', 30 * 60)),
    'SLOT_STEP_MINUTES': int(os.environ.get('SLOT_STEP_MINUTES', 30)),
    'TOMORROW_REMINDER_TIME': os.environ.get('TOMORROW_REMINDER_TIME', '18:00'),
    'TODAY_REMINDER_TIME': os.environ.get('TODAY_REMINDER_TIME', '08:00'),
    'RESERVATION_REMINDER_TIME': os.environ.get('RESERVATION_REMINDER_TIME', '00:00'),
    'NOTIFICATION_RETENTION_DAYS': int(os.environ.get('NOTIFICATION_RETENTION_DAYS', 30)),
    'NOTIFY_MAX_ATTEMPTS': int(os.environ.get('NOTIFY_MAX_ATTEMPTS', 5)),
    'NOTIFIER': os.environ.get('BOOKING_NOTIFIER', 'bookings.notifications.LoggingNotifier'),
}

# Logging

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s - %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {'handlers': ['console'], 'level': 'WARNING'},
    'loggers': {
        'django': {'handlers': ['console'], 'level': 'INFO', 'propagate': False},
        'bookings': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
