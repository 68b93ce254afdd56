"""
Management command to move cached tours from the database to the filesystem.

Usage:
    python manage.py migrate_offline_storage
"""

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from offline.adapters import DatabaseAdapter
from offline.exceptions import AdapterUnavailable
from offline.storage_migration import migrate_bundles, require_filesystem_adapter


class Command(BaseCommand):
    help = 'Move offline tour bundles from the database adapter to the filesystem adapter'

    def handle(self, *args, **options):
        try:
            target = require_filesystem_adapter(settings.OFFLINE_STORAGE_DIR)
        except AdapterUnavailable as e:
            raise CommandError(str(e))

        result = migrate_bundles(DatabaseAdapter(), target)
        self.stdout.write(self.style.SUCCESS(f'✓ {len(result.succeeded)} tour(s) migrated'))
        for tour_id, error in result.failed:
            self.stdout.write(self.style.ERROR(f'✗ {tour_id}: {error}'))
