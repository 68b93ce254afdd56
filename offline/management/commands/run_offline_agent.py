"""
Management command running the device loop.

Each pass probes the backend, drains pending photos when it comes back
online, and on their own intervals sweeps expired tours and synced records.

Usage:
    python manage.py run_offline_agent
    python manage.py run_offline_agent --once
"""

import time

from django.core.management.base import BaseCommand
from django.utils import timezone

from offline import pending_queue
from offline.constants import CACHE_SWEEP_INTERVAL, CONNECTIVITY_POLL_INTERVAL, SYNCED_CLEANUP_INTERVAL
from offline.services import build_offline_services
from offline.sync import sync_progress


class Command(BaseCommand):
    help = 'Keep offline tours fresh and upload photos captured offline'

    def add_arguments(self, parser):
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run a single pass and exit',
        )
        parser.add_argument(
            '--interval',
            type=float,
            default=CONNECTIVITY_POLL_INTERVAL,
            help='Seconds between connectivity probes (default: 15)',
        )

    def _report_progress(self, sender, percentage, current_item, done, total, **kwargs):
        self.stdout.write(f'  [{percentage:3d}%] {done}/{total} {current_item}')

    def handle(self, *args, **options):
        services = build_offline_services()
        self.stdout.write(f'Storage: {services.adapter.name}')
        pending_queue.reset_interrupted()
        sync_progress.connect(self._report_progress, weak=False)

        last_sweep = None
        last_cleanup = None
        try:
            while True:
                now = timezone.now()
                result = services.orchestrator.update_connectivity()
                if result is not None:
                    self.stdout.write(
                        self.style.SUCCESS(f'✓ {len(result.succeeded)} photo(s) synced')
                    )
                    if result.failed:
                        self.stdout.write(self.style.WARNING(f'  {len(result.failed)} failed'))

                if last_sweep is None or now - last_sweep >= CACHE_SWEEP_INTERVAL:
                    removed = services.cache.clean_expired_tours()
                    if removed:
                        self.stdout.write(self.style.WARNING(f'Removed {removed} expired tour(s)'))
                    last_sweep = now

                if last_cleanup is None or now - last_cleanup >= SYNCED_CLEANUP_INTERVAL:
                    services.orchestrator.cleanup_synced()
                    last_cleanup = now

                if options['once']:
                    return
                time.sleep(options['interval'])
        finally:
            sync_progress.disconnect(self._report_progress)
