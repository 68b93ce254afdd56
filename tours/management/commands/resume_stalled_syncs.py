"""
Management command to resume photo sync jobs that stopped making progress.

Usage:
    python manage.py resume_stalled_syncs
"""

from django.core.management.base import BaseCommand

from tours.photo_sync import resume_stalled_sync_jobs


class Command(BaseCommand):
    help = 'Resume stalled photo sync jobs, failing those resumed too often'

    def handle(self, *args, **options):
        summary = resume_stalled_sync_jobs()
        self.stdout.write(self.style.SUCCESS(f"✓ {summary['resumed']} resumed"))
        if summary['failed']:
            self.stdout.write(self.style.WARNING(f"  {summary['failed']} failed after too many resumes"))
