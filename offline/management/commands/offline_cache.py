"""
Management command to manage the offline tour cache.

Usage:
    python manage.py offline_cache list
    python manage.py offline_cache download 42
    python manage.py offline_cache delete 42
    python manage.py offline_cache clean
"""

from django.core.management.base import BaseCommand, CommandError

from offline.exceptions import CapacityExceeded, TourFetchError
from offline.services import build_offline_services


class Command(BaseCommand):
    help = 'List, download, delete or clean offline tours'

    def add_arguments(self, parser):
        parser.add_argument('action', choices=['list', 'download', 'delete', 'clean'])
        parser.add_argument('tour_id', nargs='?')

    def handle(self, *args, **options):
        cache = build_offline_services().cache
        action = options['action']
        tour_id = options['tour_id']

        if action in ('download', 'delete') and not tour_id:
            raise CommandError(f'{action} needs a tour id')

        if action == 'download':
            try:
                stored = cache.download_for_offline(tour_id)
            except (CapacityExceeded, TourFetchError) as e:
                raise CommandError(str(e))
            self.stdout.write(
                self.style.SUCCESS(
                    f'✓ "{stored.name}" cached until {stored.expires_at:%Y-%m-%d %H:%M} '
                    f'({len(stored.images)}/{len(stored.floor_plans)} images, {stored.size / 1024 / 1024:.2f} MB)'
                )
            )
        elif action == 'delete':
            cache.delete_cached_tour(tour_id)
            self.stdout.write(self.style.SUCCESS(f'✓ Tour {tour_id} removed'))
        elif action == 'clean':
            removed = cache.clean_expired_tours()
            self.stdout.write(self.style.SUCCESS(f'✓ {removed} expired tour(s) removed'))
        else:
            for entry in cache.list_cached_tours():
                self.stdout.write(
                    f"{entry['id']:>8}  {entry['name'][:40]:40}  {entry['size'] / 1024:10.1f} KB  "
                    f"expires {entry['expires_at']:%Y-%m-%d %H:%M}"
                )
            self.stdout.write(f'Total: {cache.get_cache_size() / 1024 / 1024:.2f} MB')
