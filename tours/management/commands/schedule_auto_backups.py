"""
Management command to queue automatic backups that are due.

Usage:
    python manage.py schedule_auto_backups
"""

from django.core.management.base import BaseCommand

from tours.scheduler import schedule_auto_backups


class Command(BaseCommand):
    help = 'Queue backups for tours whose automatic backup interval has elapsed'

    def handle(self, *args, **options):
        result = schedule_auto_backups()
        self.stdout.write(
            self.style.SUCCESS(f"✓ {result['processed']} queued, {result['skipped']} not due")
        )
