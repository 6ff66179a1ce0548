"""
Periodic driver for the lifecycle sweeper.

The scheduler is constructed explicitly and owns one background thread.
Tests drive it without the thread through ``run_pending(now)`` and a fake
clock.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from django.db import close_old_connections
from django.utils import timezone

from .conf import get_setting
from .sweeper import LifecycleSweeper, SweepReport

logger = logging.getLogger(__name__)


class SweepScheduler:
    """
    Runs a sweep every ``interval_seconds``.

    The first sweep runs as soon as the scheduler is started (or on the
    first ``run_pending`` call). A sweep that raises is logged and the loop
    keeps going.
    """

    def __init__(self, sweeper: LifecycleSweeper, interval_seconds: Optional[int] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 poll_seconds: Optional[float] = None):
        if interval_seconds is None:
            interval_seconds = get_setting('SWEEP_INTERVAL_SECONDS')
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        if poll_seconds is None:
            poll_seconds = min(get_setting('SWEEP_POLL_SECONDS'), interval_seconds)

        self.sweeper = sweeper
        self.interval_seconds = interval_seconds
        self.poll_seconds = poll_seconds
        self.clock = clock or timezone.now
        self.last_run: Optional[datetime] = None
        self.last_report: Optional[SweepReport] = None

        self._stop_event = threading.Event()
        self._run_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def next_run_at(self) -> Optional[datetime]:
        if self.last_run is None:
            return None
        return self.last_run + timedelta(seconds=self.interval_seconds)

    def is_due(self, now: datetime) -> bool:
        return self.last_run is None or now >= self.next_run_at

    def run_pending(self, now: Optional[datetime] = None) -> Optional[SweepReport]:
        """Sweep if the interval has elapsed; return the report, or None."""
        now = now or self.clock()
        if not self.is_due(now):
            return None
        return self._run(now)

    def force_run(self, now: Optional[datetime] = None) -> Optional[SweepReport]:
        """Sweep now regardless of the interval."""
        return self._run(now or self.clock())

    def start(self) -> None:
        if self.is_running:
            logger.warning("Sweep scheduler is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name='booking-sweeper',
            daemon=True
        )
        self._thread.start()
        logger.info("Sweep scheduler started (every %s seconds)", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sweep scheduler stopped")

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the scheduler thread exits or timeout elapses."""
        if self._thread is None:
            return
        self._thread.join(timeout)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            close_old_connections()
            try:
                self.run_pending()
            finally:
                close_old_connections()
            self._stop_event.wait(self.poll_seconds)

    def _run(self, now: datetime) -> Optional[SweepReport]:
        with self._run_lock:
            self.last_run = now
            try:
                report = self.sweeper.sweep(now)
            except Exception:
                logger.exception("Sweep at %s failed", now)
                return None
            self.last_report = report
            return report
