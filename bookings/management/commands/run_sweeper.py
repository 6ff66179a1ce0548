"""
Management command that runs the lifecycle sweeper.

With --once it runs a single sweep and exits (suitable for cron); otherwise
it keeps a SweepScheduler running until interrupted.
"""

from django.core.management.base import BaseCommand

from bookings.scheduler import SweepScheduler
from bookings.sweeper import LifecycleSweeper


class Command(BaseCommand):
    help = 'Send due booking reminders and retry failed notifications'

    def add_arguments(self, parser):
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run a single sweep and exit'
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=None,
            help='Seconds between sweeps (default: SWEEP_INTERVAL_SECONDS)'
        )

    def handle(self, *args, **options):
        sweeper = LifecycleSweeper()

        if options['once']:
            report = sweeper.sweep()
            self.stdout.write(self.style.SUCCESS(f'Sweep finished: {report}'))
            return

        scheduler = SweepScheduler(sweeper, interval_seconds=options['interval'])
        self.stdout.write(
            f'Sweeping every {scheduler.interval_seconds} seconds (Ctrl+C to stop)...'
        )
        scheduler.start()
        try:
            while scheduler.is_running:
                scheduler.wait(timeout=1)
        except KeyboardInterrupt:
            self.stdout.write('Stopping sweeper...')
        finally:
            scheduler.stop()

        self.stdout.write(self.style.SUCCESS('Sweeper stopped'))
