"""
Management command to drain the backup queue.

Run it from cron, or keep it running with --loop when no HTTP invoker is
available (TOURKEEP_JOB_INVOKER = tours.invoker.QueueOnlyJobInvoker).

Usage:
    python manage.py process_backup_queue
    python manage.py process_backup_queue --max-jobs 5
    python manage.py process_backup_queue --loop --interval 30
"""

import time

from django.core.management.base import BaseCommand

from tours.backup_worker import process_backup_queue
from tours.retry import cleanup_stuck_jobs


class Command(BaseCommand):
    help = 'Run one step for each due backup queue item'

    def add_arguments(self, parser):
        parser.add_argument(
            '--max-jobs',
            type=int,
            default=None,
            help='Queue items per pass (default: TOURKEEP_QUEUE_MAX_JOBS)',
        )
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Keep polling the queue until interrupted',
        )
        parser.add_argument(
            '--interval',
            type=float,
            default=30.0,
            help='Seconds between passes when the queue is empty (default: 30)',
        )

    def handle(self, *args, **options):
        while True:
            cleaned = cleanup_stuck_jobs()
            if cleaned:
                self.stdout.write(self.style.WARNING(f'Reclaimed {cleaned} stuck item(s)'))

            result = process_backup_queue(max_jobs=options['max_jobs'])
            self.stdout.write(
                self.style.SUCCESS(
                    f"✓ {result['processed']} processed, {result['failed']} failed, "
                    f"{result['skipped']} skipped"
                )
            )

            if not options['loop']:
                return
            # More due work: go again at once.
            if not result['details']:
                time.sleep(options['interval'])
