"""
Batch copy of a tour's panorama photos and floor-plan images to the backup
destination.

A sync job is created by ``start_job`` and processed in the background
through the job invoker. Photos already recorded in ``SyncedPhoto`` are never
copied twice, which is also what lets a stalled job be resumed.
Floor plans are few, so they are copied in one pass by ``sync_floor_plans``
without a job record.
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional

from django.db import transaction
from django.utils import timezone

from . import constants
from . import invoker as job_invoker
from .exceptions import BlobNotFound, RecordNotFound
from .models import FloorPlan, PanoramaPhoto, PhotoSyncJob, SyncedPhoto, Tour
from .storage import backup_destination, tour_images
from .utils import BatchResult

logger = logging.getLogger(__name__)


def tour_photos(tour: Tour):
    return (
        PanoramaPhoto.objects.filter(hotspot__floor_plan__tour=tour)
        .order_by("hotspot__floor_plan__order", "hotspot__floor_plan_id", "hotspot_id", "id")
    )


def unsynced_photos(tour: Tour) -> list[PanoramaPhoto]:
    return list(tour_photos(tour).filter(sync_mapping__isnull=True))


def destination_path(photo: PanoramaPhoto, tenant_id: str) -> str:
    name = photo.photo.rsplit("/", 1)[-1] or f"photo_{photo.id}.jpg"
    return f"{tenant_id}/tour_{photo.hotspot.floor_plan.tour_id}/hotspot_{photo.hotspot_id}/{photo.id}_{name}"


def sync_photo(photo: PanoramaPhoto, tenant_id: str) -> SyncedPhoto:
    """Copy one photo to the backup destination and record the mapping."""
    content = tour_images().download(photo.photo)
    path = backup_destination().upload(destination_path(photo, tenant_id), content, overwrite=True)
    mapping, _ = SyncedPhoto.objects.update_or_create(photo=photo, defaults={"destination_path": path})
    return mapping


def start_job(tour_id: Any, tenant_id: Optional[str] = None, invoker: Optional[job_invoker.JobInvoker] = None) -> dict[str, Any]:
    """
    Create a sync job for every photo of the tour not yet synced.

    Returns:
        {success, jobId, totalPhotos, alreadySynced}; ``jobId`` is None when
        there is nothing to do.
    """
    try:
        tour = Tour.objects.get(pk=tour_id)
    except (Tour.DoesNotExist, ValueError, TypeError):
        raise RecordNotFound(f"Tour {tour_id} not found")

    tenant_id = tenant_id or tour.tenant_id
    photos = list(tour_photos(tour).select_related("sync_mapping"))
    if not photos:
        return {"success": True, "message": "No photos found for this tour", "jobId": None, "totalPhotos": 0,
                "alreadySynced": 0}

    to_sync = [p for p in photos if not hasattr(p, "sync_mapping")]
    already_synced = len(photos) - len(to_sync)
    logger.info(f"Photo sync for tour {tour.id}: {len(photos)} total, {already_synced} already synced")

    if not to_sync:
        return {
            "success": True,
            "message": "All photos already synced",
            "jobId": None,
            "totalPhotos": len(photos),
            "alreadySynced": already_synced,
        }

    job = PhotoSyncJob.objects.create(
        tenant_id=tenant_id,
        tour=tour,
        status=PhotoSyncJob.STATUS_PROCESSING,
        total_items=len(to_sync),
    )
    _run_in_background(job, invoker)
    return {
        "success": True,
        "jobId": job.id,
        "totalPhotos": len(to_sync),
        "alreadySynced": already_synced,
        "message": "Sync job started in background",
    }


def _run_in_background(job: PhotoSyncJob, invoker: Optional[job_invoker.JobInvoker]) -> None:
    invoker = invoker or job_invoker.get_job_invoker()
    invoker.invoke({"action": "run_photo_sync", "jobId": job.id}, wait=False)


def get_job(job_id: Any) -> PhotoSyncJob:
    try:
        return PhotoSyncJob.objects.get(pk=job_id)
    except (PhotoSyncJob.DoesNotExist, ValueError, TypeError):
        raise RecordNotFound("Job not found")


def get_progress(job_id: Any) -> dict[str, Any]:
    return {"success": True, "job": get_job(job_id).to_dict()}


def cancel_job(job_id: Any) -> dict[str, Any]:
    """Stop a job before its next photo. Finished jobs keep their status."""
    job = get_job(job_id)
    if job.status != PhotoSyncJob.STATUS_PROCESSING:
        return {"success": True, "message": f"Job already {job.status}"}
    job.status = PhotoSyncJob.STATUS_CANCELLED
    job.completed_at = timezone.now()
    job.save(update_fields=["status", "completed_at", "updated_at"])
    logger.info(f"Photo sync job {job.id} cancelled")
    return {"success": True, "message": "Job cancelled"}


def resume_job(job_id: Any, invoker: Optional[job_invoker.JobInvoker] = None) -> dict[str, Any]:
    """
    Restart a job on the photos that still have no sync mapping.

    Counters are rebuilt from the mappings, so photos that failed in the
    earlier run are attempted again without being counted twice.
    """
    job = get_job(job_id)
    remaining = unsynced_photos(job.tour)

    job.status = PhotoSyncJob.STATUS_PROCESSING
    job.processed_items = max(0, job.total_items - len(remaining))
    job.failed_items = 0
    job.error_messages = []
    job.completed_at = None
    job.save(update_fields=["status", "processed_items", "failed_items", "error_messages", "completed_at", "updated_at"])
    logger.info(f"Resuming photo sync job {job.id}: {len(remaining)} photo(s) remaining")

    _run_in_background(job, invoker)
    return {
        "success": True,
        "message": "Job resumed",
        "jobId": job.id,
        "remainingPhotos": len(remaining),
        "totalItems": job.total_items,
    }


def _copy_with_retries(label: str, copy: Callable[[], Any]) -> Any:
    attempts = 0
    while True:
        attempts += 1
        try:
            return copy()
        except (BlobNotFound, OSError) as e:
            logger.warning(f"Attempt {attempts}/{constants.PHOTO_SYNC_MAX_ATTEMPTS} failed for {label}: {e}")
            if attempts >= constants.PHOTO_SYNC_MAX_ATTEMPTS:
                raise
            time.sleep(constants.PHOTO_SYNC_RETRY_DELAY * attempts)


def process_batch_sync(job_id: Any) -> BatchResult[int]:
    """
    Copy the job's remaining photos one by one.

    A failing photo is retried a few times and then recorded in the job's
    ``error_messages``; the batch goes on. The job ends ``failed`` only when
    every photo of the run failed.
    """
    job = get_job(job_id)
    photos = list(
        PanoramaPhoto.objects.filter(hotspot__floor_plan__tour_id=job.tour_id, sync_mapping__isnull=True)
        .select_related("hotspot__floor_plan")
        .order_by("hotspot__floor_plan__order", "hotspot__floor_plan_id", "hotspot_id", "id")
    )
    already_done = job.processed_items
    result: BatchResult[int] = BatchResult()

    for index, photo in enumerate(photos, start=1):
        status = PhotoSyncJob.objects.filter(pk=job.pk).values_list("status", flat=True).first()
        if status == PhotoSyncJob.STATUS_CANCELLED:
            logger.info(f"Photo sync job {job.id} was cancelled, stopping")
            return result

        logger.debug(f"Photo sync job {job.id}: photo {index}/{len(photos)} ({photo.id})")
        try:
            _copy_with_retries(f"photo {photo.id}", lambda: sync_photo(photo, job.tenant_id))
        except (BlobNotFound, OSError) as e:
            logger.error(f"Photo {photo.id} failed after {constants.PHOTO_SYNC_MAX_ATTEMPTS} attempts: {e}")
            result.add_failure(photo.id, e)
        else:
            result.add_success(photo.id)

        PhotoSyncJob.objects.filter(pk=job.pk).update(
            processed_items=already_done + result.total,
            failed_items=len(result.failed),
            error_messages=_error_entries(result),
            updated_at=timezone.now(),
        )

    with transaction.atomic():
        job = PhotoSyncJob.objects.select_for_update().get(pk=job.pk)
        if job.status == PhotoSyncJob.STATUS_CANCELLED:
            return result
        all_failed = bool(photos) and len(result.failed) == len(photos)
        job.status = PhotoSyncJob.STATUS_FAILED if all_failed else PhotoSyncJob.STATUS_COMPLETED
        job.processed_items = already_done + result.total
        job.failed_items = len(result.failed)
        job.error_messages = _error_entries(result)
        job.completed_at = timezone.now()
        job.save()

    logger.info(
        f"Photo sync job {job.id} {job.status}: {len(result.succeeded)} synced, "
        f"{len(result.failed)} failed, {len(photos)} total"
    )
    return result


def floor_plan_destination_path(floor_plan: FloorPlan, tenant_id: str) -> str:
    name = floor_plan.image.rsplit("/", 1)[-1] or f"floor_plan_{floor_plan.id}.webp"
    return f"{tenant_id}/tour_{floor_plan.tour_id}/floor_plans/{floor_plan.id}_{name}"


def sync_floor_plan(floor_plan: FloorPlan, tenant_id: str) -> str:
    content = tour_images().download(floor_plan.image)
    return backup_destination().upload(floor_plan_destination_path(floor_plan, tenant_id), content, overwrite=True)


def sync_floor_plans(tour_id: Any, tenant_id: Optional[str] = None) -> dict[str, Any]:
    """
    Copy every floor-plan image of a tour to the backup destination.

    Runs in the request; a tour has a handful of floor plans. Every plan with
    an image is copied again, overwriting its earlier copy, and a plan that
    cannot be copied is reported without stopping the others.

    Returns:
        {success, synced, failed, total, alreadySynced, errors}
    """
    try:
        tour = Tour.objects.get(pk=tour_id)
    except (Tour.DoesNotExist, ValueError, TypeError):
        raise RecordNotFound(f"Tour {tour_id} not found")

    tenant_id = tenant_id or tour.tenant_id
    floor_plans = [fp for fp in FloorPlan.objects.filter(tour=tour).order_by("order", "id") if fp.image]
    if not floor_plans:
        return {"success": True, "message": "No floor plans found for this tour",
                "synced": 0, "failed": 0, "total": 0, "alreadySynced": 0, "errors": []}

    destination = backup_destination()
    already_synced = sum(1 for fp in floor_plans if destination.exists(floor_plan_destination_path(fp, tenant_id)))
    logger.info(f"Floor plan sync for tour {tour.id}: {len(floor_plans)} to copy, {already_synced} copied before")

    result: BatchResult[int] = BatchResult()
    for floor_plan in floor_plans:
        try:
            _copy_with_retries(f"floor plan {floor_plan.id}", lambda: sync_floor_plan(floor_plan, tenant_id))
        except (BlobNotFound, OSError) as e:
            logger.error(f"Floor plan {floor_plan.id} failed after {constants.PHOTO_SYNC_MAX_ATTEMPTS} attempts: {e}")
            result.add_failure(floor_plan.id, f"Floor plan {floor_plan.name or floor_plan.id}: {e}")
        else:
            result.add_success(floor_plan.id)

    logger.info(
        f"Floor plan sync for tour {tour.id} finished: {len(result.succeeded)} synced, {len(result.failed)} failed"
    )
    return {
        "success": True,
        "synced": len(result.succeeded),
        "failed": len(result.failed),
        "total": len(floor_plans),
        "alreadySynced": already_synced,
        "errors": result.error_messages,
    }


def _error_entries(result: BatchResult[int]) -> list[dict[str, Any]]:
    return [
        {"photoId": photo_id, "error": error}
        for photo_id, error in result.failed[:constants.LOG_MESSAGE_MAX_LENGTH]
    ]


def resume_stalled_sync_jobs(now: Optional[datetime] = None, invoker: Optional[job_invoker.JobInvoker] = None) -> dict[str, int]:
    """
    Resume photo sync jobs that made no progress for a while.

    A job resumed too many times is failed instead.

    Returns:
        {"resumed": n, "failed": m}
    """
    now = now or timezone.now()
    cutoff = now - constants.STALLED_SYNC_TIMEOUT
    stalled = list(PhotoSyncJob.objects.filter(status=PhotoSyncJob.STATUS_PROCESSING, updated_at__lt=cutoff))

    summary = {"resumed": 0, "failed": 0}
    for job in stalled:
        if job.resume_count >= constants.STALLED_SYNC_MAX_RESUMES:
            PhotoSyncJob.objects.filter(pk=job.pk).update(
                status=PhotoSyncJob.STATUS_FAILED,
                completed_at=now,
                error_messages=list(job.error_messages or []) + [
                    {"photoId": None, "error": f"Stalled after {job.resume_count} resume attempts"}
                ],
            )
            logger.error(f"Photo sync job {job.id} failed after {job.resume_count} resume attempts")
            summary["failed"] += 1
            continue

        PhotoSyncJob.objects.filter(pk=job.pk).update(resume_count=job.resume_count + 1)
        resume_job(job.id, invoker=invoker)
        summary["resumed"] += 1

    if stalled:
        logger.info(f"Stalled photo sync jobs: {summary['resumed']} resumed, {summary['failed']} failed")
    return summary
