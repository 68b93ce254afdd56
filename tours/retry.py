"""
Retry and recovery for backup queue items.

- Recoverable failures are rescheduled with exponential backoff.
- Permanent failures and exhausted items fail the job for good.
- Items left in ``processing`` by a crashed worker are reclaimed.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from django.db import transaction
from django.utils import timezone

from .backup_queue import log_event
from .constants import RETRY_BASE_DELAY, RETRY_MAX_DELAY, STUCK_JOB_TIMEOUT
from .exceptions import PermanentBackupError
from .models import BackupJob, BackupQueueItem

logger = logging.getLogger(__name__)


def backoff_delay(attempts: int) -> timedelta:
    """min(5 minutes * 2^attempts, 24 hours)."""
    # Cap the exponent before multiplying so huge attempt counts cannot overflow timedelta.
    if attempts >= 16:
        return RETRY_MAX_DELAY
    return min(RETRY_BASE_DELAY * (2 ** attempts), RETRY_MAX_DELAY)


def handle_failure(item: BackupQueueItem, error: Exception, now: Optional[datetime] = None) -> str:
    """
    Decide what happens to a queue item after its job step failed.

    Args:
        item: The queue item whose attempt just failed (attempts already counted)
        error: The exception raised by the step
        now: Reference time, mostly for tests

    Returns:
        'retry' when rescheduled, 'failed' when the failure is final
    """
    now = now or timezone.now()
    item.refresh_from_db()
    message = str(error) or error.__class__.__name__

    if isinstance(error, PermanentBackupError) or item.attempts >= item.max_attempts:
        fail_permanently(item, message, now=now)
        return "failed"

    delay = backoff_delay(item.attempts)
    item.status = BackupQueueItem.STATUS_RETRY
    item.scheduled_at = now + delay
    item.error_message = message
    item.save(update_fields=["status", "scheduled_at", "error_message"])

    job = item.backup_job
    job.error_message = message
    job.save(update_fields=["error_message"])
    log_event(job, "retry_scheduled", f"Attempt {item.attempts}/{item.max_attempts} failed, retrying in {delay}",
              {"error": message, "scheduled_at": item.scheduled_at.isoformat()}, is_error=True)
    return "retry"


def fail_permanently(item: BackupQueueItem, message: str, now: Optional[datetime] = None) -> None:
    """Terminal failure: the item is never scheduled again and the job keeps the last error."""
    now = now or timezone.now()
    with transaction.atomic():
        item.status = BackupQueueItem.STATUS_FAILED
        item.error_message = message
        item.completed_at = now
        item.save(update_fields=["status", "error_message", "completed_at"])
        fail_job(item.backup_job, message, now=now, update_queue=False)


def fail_job(job: BackupJob, message: str, now: Optional[datetime] = None, update_queue: bool = True) -> None:
    """Mark a job (and, unless told otherwise, its queue item) as failed."""
    now = now or timezone.now()
    job.status = BackupJob.STATUS_FAILED
    job.error_message = message
    job.completed_at = now
    job.save(update_fields=["status", "error_message", "completed_at"])
    if update_queue:
        BackupQueueItem.objects.filter(backup_job=job).update(
            status=BackupQueueItem.STATUS_FAILED,
            error_message=message,
            completed_at=now,
        )
    log_event(job, "backup_failed", "Backup processing failed",
              {"error": message, "processed_items": job.processed_items}, is_error=True)


def cleanup_stuck_jobs(now: Optional[datetime] = None, timeout: timedelta = STUCK_JOB_TIMEOUT) -> int:
    """
    Reclaim items stuck in ``processing`` for longer than ``timeout``.

    A reclaimed item is rescheduled immediately; one that has no attempts
    left fails permanently instead.

    Returns:
        Number of items reclaimed or failed
    """
    now = now or timezone.now()
    cutoff = now - timeout
    stuck = list(
        BackupQueueItem.objects.select_related("backup_job")
        .filter(status=BackupQueueItem.STATUS_PROCESSING, started_at__lt=cutoff)
    )

    cleaned = 0
    for item in stuck:
        # Conditional update: skip items that finished while we were looking.
        if item.attempts >= item.max_attempts:
            claimed = BackupQueueItem.objects.filter(
                pk=item.pk, status=BackupQueueItem.STATUS_PROCESSING
            ).update(error_message="Reset by cleanup worker")
            if claimed:
                fail_permanently(item, "Worker stopped responding and no attempts are left", now=now)
                cleaned += 1
            continue

        claimed = BackupQueueItem.objects.filter(
            pk=item.pk, status=BackupQueueItem.STATUS_PROCESSING
        ).update(
            status=BackupQueueItem.STATUS_RETRY,
            scheduled_at=now,
            error_message="Reset by cleanup worker",
        )
        if claimed:
            cleaned += 1
            log_event(item.backup_job, "stuck_job_reclaimed",
                      f"Processing since {item.started_at.isoformat()}, rescheduled")

    if cleaned:
        logger.info(f"Reclaimed {cleaned} stuck backup queue item(s)")
    return cleaned
