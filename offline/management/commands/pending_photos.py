"""
Management command to inspect the queue of photos captured offline.

Usage:
    python manage.py pending_photos
    python manage.py pending_photos --hotspot 17
    python manage.py pending_photos --retry-failed
"""

from django.core.management.base import BaseCommand

from offline import pending_queue


class Command(BaseCommand):
    help = 'List photos waiting for upload, or put failed uploads back in the queue'

    def add_arguments(self, parser):
        parser.add_argument(
            '--hotspot',
            help='Only photos of this hotspot that are not on the backend yet (pending or failed)',
        )
        parser.add_argument(
            '--retry-failed',
            action='store_true',
            help='Queue failed uploads again before listing',
        )

    def handle(self, *args, **options):
        if options['retry_failed']:
            count = pending_queue.retry_failed()
            self.stdout.write(self.style.SUCCESS(f'✓ {count} failed photo(s) queued again'))

        if options['hotspot']:
            photos = pending_queue.photos_for_hotspot(options['hotspot'])
        else:
            photos = pending_queue.pending_photos()

        for photo in photos:
            line = (
                f'{photo.filename[:40]:40}  hotspot {photo.hotspot_id:>6}  {photo.status:8}  '
                f'captured {photo.capture_date:%Y-%m-%d %H:%M}'
            )
            if photo.error_message:
                line += f'  ({photo.error_message[:60]})'
            self.stdout.write(line)

        self.stdout.write(f'Pending: {pending_queue.pending_count()}')
