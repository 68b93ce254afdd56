"""
Dispatch of job-control and photo-sync actions.

Both the HTTP views and ``InlineJobInvoker`` go through these functions, so a
continuation delivered in-process behaves exactly like one delivered over HTTP.
"""

import logging
from typing import Any, Callable, Optional

from . import backup_worker, photo_sync
from .backup_queue import enqueue_backup, request_cancel
from .constants import PRIORITY_MANUAL
from .exceptions import PermanentBackupError, RecordNotFound
from .models import BackupJob, Tour
from .restore import MODE_ADDITIVE, restore_backup
from .retry import cleanup_stuck_jobs
from .scheduler import schedule_auto_backups
from .storage import backup_archives, signed_url_max_age
from .utils import to_int

logger = logging.getLogger(__name__)


def _require(body: dict, *names: str) -> Any:
    for name in names:
        value = body.get(name)
        if value not in (None, ""):
            return value
    raise PermanentBackupError(f"{names[0]} is required")


def get_backup_job(job_id: Any) -> BackupJob:
    try:
        return BackupJob.objects.select_related("tour").get(pk=job_id)
    except (BackupJob.DoesNotExist, ValueError, TypeError):
        raise RecordNotFound(f"Backup job {job_id} not found")


def job_status(job: BackupJob) -> dict[str, Any]:
    """
    Progress snapshot of a job, valid at any point of its life:
    before the first part ran, mid-way, and long after completion.
    """
    state = job.continuation
    item = getattr(job, "queue_item", None)
    data = {
        "id": job.id,
        "tour_id": job.tour_id,
        "job_type": job.job_type,
        "status": job.status,
        "total_items": job.total_items,
        "processed_items": job.processed_items,
        "progress_percentage": job.progress_percentage,
        "current_part": state.current_part if state else None,
        "total_parts": state.total_parts if state else None,
        "parts_completed": job.parts.count(),
        "file_size": job.file_size,
        "error_message": job.error_message,
        "cancel_requested": job.cancel_requested,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
    if item is not None:
        data["queue"] = {
            "status": item.status,
            "attempts": item.attempts,
            "max_attempts": item.max_attempts,
            "priority": item.priority,
            "scheduled_at": item.scheduled_at.isoformat() if item.scheduled_at else None,
        }
    return data


def download_urls(job: BackupJob, absolute_url: Optional[Callable[[str], str]] = None) -> dict[str, Any]:
    if job.status != BackupJob.STATUS_COMPLETED:
        raise PermanentBackupError(f"Backup {job.id} is {job.status}, downloads are available once completed")

    store = backup_archives()
    parts = []
    for part in job.parts.order_by("part_number"):
        url = store.sign_url(part.storage_path)
        parts.append({
            "partNumber": part.part_number,
            "url": absolute_url(url) if absolute_url else url,
            "size": part.file_size,
            "hash": part.file_hash,
            "itemsCount": part.items_count,
        })
    return {"success": True, "backupId": job.id, "parts": parts, "expiresIn": signed_url_max_age()}


def handle_job_action(body: dict, invoker=None, absolute_url: Optional[Callable[[str], str]] = None) -> dict[str, Any]:
    """
    Run one job-control action.

    Raises:
        RecordNotFound: a referenced job or tour does not exist
        PermanentBackupError: the request is malformed
    """
    action = body.get("action")
    logger.debug(f"Job action: {action}")

    if action == "process_queue":
        max_jobs = body.get("maxJobs")
        return backup_worker.process_backup_queue(
            max_jobs=to_int(max_jobs, 1) if max_jobs is not None else None,
            invoker=invoker,
        )

    if action == "process_job":
        return backup_worker.process_single_job(_require(body, "backupJobId", "jobId"), invoker=invoker)

    if action == "continue":
        return backup_worker.continue_job(_require(body, "jobId", "backupJobId"), invoker=invoker)

    if action == "cleanup_stuck_jobs":
        return {"success": True, "cleaned": cleanup_stuck_jobs()}

    if action == "enqueue":
        tour_id = _require(body, "tourId")
        try:
            tour = Tour.objects.get(pk=tour_id)
        except (Tour.DoesNotExist, ValueError, TypeError):
            raise RecordNotFound(f"Tour {tour_id} not found")
        job = enqueue_backup(
            tour,
            job_type=body.get("jobType") or BackupJob.TYPE_FULL,
            priority=to_int(body.get("priority"), PRIORITY_MANUAL),
        )
        return {"success": True, "backupId": job.id}

    if action == "get_status":
        job = get_backup_job(_require(body, "backupJobId", "jobId"))
        return {"success": True, "job": job_status(job)}

    if action == "get_download_urls":
        job = get_backup_job(_require(body, "backupJobId", "jobId"))
        return download_urls(job, absolute_url)

    if action == "cancel_backup":
        job = get_backup_job(_require(body, "backupJobId", "jobId"))
        cancelled = request_cancel(job)
        return {"success": cancelled, "backupId": job.id, "status": job.status}

    if action == "restore":
        job = get_backup_job(_require(body, "backupJobId", "jobId"))
        return restore_backup(job, body.get("mode") or MODE_ADDITIVE)

    if action == "schedule_auto_backups":
        return schedule_auto_backups()

    if action == "resume_stalled_syncs":
        return {"success": True, **photo_sync.resume_stalled_sync_jobs(invoker=invoker)}

    if action == "run_photo_sync":
        result = photo_sync.process_batch_sync(_require(body, "jobId"))
        return {"success": True, "synced": len(result.succeeded), "failed": len(result.failed)}

    raise PermanentBackupError(f"Unknown action: {action}")


def handle_photo_sync_action(body: dict, invoker=None) -> dict[str, Any]:
    """Client-facing photo sync actions. A missing action means ``start_job``."""
    action = body.get("action") or "start_job"

    if action == "start_job":
        return photo_sync.start_job(_require(body, "tourId"), body.get("tenantId"), invoker=invoker)
    if action == "get_progress":
        return photo_sync.get_progress(_require(body, "jobId"))
    if action == "cancel_job":
        return photo_sync.cancel_job(_require(body, "jobId"))
    if action == "resume_job":
        return photo_sync.resume_job(_require(body, "jobId"), invoker=invoker)
    if action == "sync_floor_plans":
        return photo_sync.sync_floor_plans(_require(body, "tourId"), body.get("tenantId"))

    raise PermanentBackupError(f"Unknown action: {action}")
