"""
Durable backup job queue.

Every BackupJob is wrapped by one BackupQueueItem. Items are claimed with a
conditional UPDATE so two workers can never run the same item at once, and
a job that still has parts to process goes back to ``pending`` after each
part, which gives continuations at-least-once delivery even when the
fire-and-forget invocation is lost.
"""

import logging
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .constants import DEFAULT_MAX_ATTEMPTS, PRIORITY_MANUAL
from .exceptions import PermanentBackupError
from .models import BackupJob, BackupLog, BackupQueueItem, Tour

logger = logging.getLogger(__name__)


def log_event(job: BackupJob, event_type: str, message: str, details: Optional[dict] = None, is_error: bool = False) -> BackupLog:
    """Record a job event in the BackupLog table and in the application log."""
    if is_error:
        logger.error(f"Backup {job.id} [{event_type}] {message}")
    else:
        logger.info(f"Backup {job.id} [{event_type}] {message}")
    return BackupLog.objects.create(
        backup_job=job,
        event_type=event_type,
        message=message[:255],
        details=details or {},
        is_error=is_error,
    )


def enqueue_backup(
    tour: Tour,
    user=None,
    job_type: str = BackupJob.TYPE_FULL,
    priority: int = PRIORITY_MANUAL,
    max_attempts: Optional[int] = None,
) -> BackupJob:
    """
    Create a pending BackupJob and its queue item.

    Args:
        tour: Tour to back up
        user: Owner of the backup (defaults to the tour owner)
        job_type: 'full', 'media_only' or 'structure_only'
        priority: Queue priority, higher runs first
        max_attempts: Attempts before permanent failure

    Returns:
        The new BackupJob
    """
    valid_types = {choice for choice, _ in BackupJob.JOB_TYPE_CHOICES}
    if job_type not in valid_types:
        raise PermanentBackupError(f"Unknown job type: {job_type}")

    if max_attempts is None:
        max_attempts = getattr(settings, "TOURKEEP_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)

    with transaction.atomic():
        job = BackupJob.objects.create(
            tour=tour,
            user=user or tour.owner,
            job_type=job_type,
            status=BackupJob.STATUS_PENDING,
        )
        BackupQueueItem.objects.create(
            backup_job=job,
            priority=priority,
            max_attempts=max_attempts,
            scheduled_at=timezone.now(),
        )
        log_event(job, "backup_queued", f"{job_type} backup queued for tour '{tour.title}'",
                  {"priority": priority, "max_attempts": max_attempts})
    return job


def due_queue_items(max_jobs: int, now=None) -> list[BackupQueueItem]:
    """Runnable items whose schedule has come, by priority then schedule time."""
    now = now or timezone.now()
    return list(
        BackupQueueItem.objects.select_related("backup_job")
        .filter(status__in=BackupQueueItem.RUNNABLE_STATUSES, scheduled_at__lte=now)
        .order_by("-priority", "scheduled_at", "id")[:max_jobs]
    )


def claim_queue_item(item: BackupQueueItem) -> bool:
    """
    Atomically move a runnable item to ``processing`` and count the attempt.

    Returns False when another worker claimed it first or when no attempts
    are left.
    """
    now = timezone.now()
    updated = (
        BackupQueueItem.objects
        .filter(
            pk=item.pk,
            status__in=BackupQueueItem.RUNNABLE_STATUSES,
            attempts__lt=F("max_attempts"),
        )
        .update(status=BackupQueueItem.STATUS_PROCESSING, started_at=now, attempts=F("attempts") + 1)
    )
    if updated:
        item.refresh_from_db()
    return bool(updated)


def requeue_for_continuation(item: BackupQueueItem) -> None:
    """
    Put an item back in the queue after one part completed.

    Attempts count consecutive failures of the current part, so they start
    again from zero for the next one.
    """
    item.status = BackupQueueItem.STATUS_PENDING
    item.scheduled_at = timezone.now()
    item.attempts = 0
    item.error_message = ""
    item.save(update_fields=["status", "scheduled_at", "attempts", "error_message"])


def complete_queue_item(job: BackupJob) -> None:
    BackupQueueItem.objects.filter(backup_job=job).update(
        status=BackupQueueItem.STATUS_COMPLETED,
        completed_at=timezone.now(),
        error_message="",
    )


def request_cancel(job: BackupJob) -> bool:
    """
    Ask a job to stop. Work already running finishes its current part.

    Returns False when the job had already finished.
    """
    if job.is_finished:
        return False

    job.cancel_requested = True
    job.save(update_fields=["cancel_requested"])

    # Nothing is running yet: settle it now rather than on the next invocation.
    item = getattr(job, "queue_item", None)
    if job.status == BackupJob.STATUS_PENDING and (item is None or item.status != BackupQueueItem.STATUS_PROCESSING):
        mark_cancelled(job)
    else:
        log_event(job, "cancel_requested", "Cancellation requested; stopping before the next part")
    return True


def mark_cancelled(job: BackupJob) -> None:
    now = timezone.now()
    job.status = BackupJob.STATUS_CANCELLED
    job.completed_at = now
    job.error_message = "Cancelled by user"
    job.save(update_fields=["status", "completed_at", "error_message"])
    BackupQueueItem.objects.filter(backup_job=job).update(
        status=BackupQueueItem.STATUS_CANCELLED,
        completed_at=now,
        error_message="Cancelled by user",
    )
    log_event(job, "backup_cancelled", "Backup cancelled")
