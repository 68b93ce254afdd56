"""
Management command to queue a backup of one tour.

Usage:
    python manage.py enqueue_backup 42
    python manage.py enqueue_backup 42 --type media_only --run
"""

from django.core.management.base import BaseCommand, CommandError

from tours.backup_queue import enqueue_backup
from tours.backup_worker import run_job_to_completion
from tours.exceptions import PermanentBackupError
from tours.models import BackupJob, Tour


class Command(BaseCommand):
    help = 'Queue a backup job for a tour'

    def add_arguments(self, parser):
        parser.add_argument('tour_id', type=int)
        parser.add_argument(
            '--type',
            default=BackupJob.TYPE_FULL,
            choices=[choice for choice, _ in BackupJob.JOB_TYPE_CHOICES],
            help='Backup type (default: full)',
        )
        parser.add_argument(
            '--run',
            action='store_true',
            help='Process every part in this process instead of leaving it to the queue',
        )

    def handle(self, *args, **options):
        try:
            tour = Tour.objects.get(pk=options['tour_id'])
        except Tour.DoesNotExist:
            raise CommandError(f"Tour {options['tour_id']} not found")

        try:
            job = enqueue_backup(tour, job_type=options['type'])
        except PermanentBackupError as e:
            raise CommandError(str(e))
        self.stdout.write(self.style.SUCCESS(f'✓ Backup {job.id} queued for "{tour.title}"'))

        if options['run']:
            result = run_job_to_completion(job.id)
            if result.get('success'):
                self.stdout.write(
                    self.style.SUCCESS(
                        f"✓ {result['partsCount']} part(s), {result['totalSize'] / 1024 / 1024:.2f} MB"
                    )
                )
            else:
                self.stdout.write(self.style.ERROR(f'✗ Backup {job.id} did not complete'))
