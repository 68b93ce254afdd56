"""
Automatic backups driven by TourBackupConfig.

``schedule_auto_backups`` is meant to run periodically (cron, or the
``schedule_auto_backups`` management command); it only enqueues jobs, the
queue processor does the work.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from django.utils import timezone

from .backup_queue import enqueue_backup
from .constants import AUTO_BACKUP_INTERVALS, PRIORITY_SCHEDULED
from .models import TourBackupConfig

logger = logging.getLogger(__name__)


def needs_backup(config: TourBackupConfig, now: datetime) -> bool:
    """
    Whether the configured interval has elapsed since the last automatic backup.

    'immediate' configs are triggered on change, never by the scheduler.
    """
    interval = AUTO_BACKUP_INTERVALS.get(config.backup_frequency)
    if interval is None:
        return False
    if config.last_auto_backup_at is None:
        return True
    return now - config.last_auto_backup_at >= interval


def schedule_auto_backups(now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Enqueue a backup for every enabled tour whose interval has elapsed.

    Returns:
        {success, processed, skipped, total, results[]}
    """
    now = now or timezone.now()
    configs = list(TourBackupConfig.objects.select_related("tour", "tour__owner").filter(auto_backup_enabled=True))
    logger.info(f"Auto-backup scheduler: {len(configs)} tour(s) with auto-backup enabled")

    processed = 0
    skipped = 0
    results = []
    for config in configs:
        if not needs_backup(config, now):
            skipped += 1
            continue

        job = enqueue_backup(config.tour, job_type=config.backup_type, priority=PRIORITY_SCHEDULED)
        config.last_auto_backup_at = now
        config.save(update_fields=["last_auto_backup_at"])
        processed += 1
        results.append({"tour_id": config.tour_id, "tour_title": config.tour.title,
                        "backup_job_id": job.id, "success": True})
        logger.info(f"Queued automatic {config.backup_type} backup {job.id} for tour '{config.tour.title}'")

    logger.info(f"Auto-backup scheduler finished: {processed} queued, {skipped} skipped")
    return {"success": True, "processed": processed, "skipped": skipped, "total": len(configs), "results": results}
