"""
Management command to reclaim backup queue items stuck in processing.

Usage:
    python manage.py cleanup_stuck_jobs
    python manage.py cleanup_stuck_jobs --timeout-minutes 45
"""

from datetime import timedelta

from django.core.management.base import BaseCommand

from tours.constants import STUCK_JOB_TIMEOUT
from tours.retry import cleanup_stuck_jobs


class Command(BaseCommand):
    help = 'Reschedule queue items left in processing by a crashed worker'

    def add_arguments(self, parser):
        parser.add_argument(
            '--timeout-minutes',
            type=int,
            default=int(STUCK_JOB_TIMEOUT.total_seconds() // 60),
            help='Minutes in processing before an item counts as stuck (default: 30)',
        )

    def handle(self, *args, **options):
        cleaned = cleanup_stuck_jobs(timeout=timedelta(minutes=options['timeout_minutes']))
        if cleaned:
            self.stdout.write(self.style.WARNING(f'Reclaimed {cleaned} stuck item(s)'))
        else:
            self.stdout.write(self.style.SUCCESS('No stuck items'))
