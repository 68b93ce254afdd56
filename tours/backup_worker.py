"""
Chunked backup worker.

Each call of ``run_backup_step`` processes exactly one part of a job:

1. read the job and its continuation state (computed on the first run);
2. load the tour graph fresh from the database;
3. slice the flat image list to the current part;
4. build one ZIP with that slice and a manifest;
5. upload it to a deterministic per-part path and upsert the BackupPart row;
6. update the job's progress;
7. advance the continuation state, or finalize the job after the last part.

The worker keeps nothing in memory between steps, so any step can be retried
or resumed by another process from the database rows alone.
"""

import hashlib
import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Any, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from . import invoker as job_invoker
from .backup_queue import (
    claim_queue_item,
    complete_queue_item,
    due_queue_items,
    log_event,
    mark_cancelled,
    requeue_for_continuation,
)
from .constants import (
    ARCHIVE_COMPRESSION_LEVEL,
    DEFAULT_ITEMS_PER_PART,
    DEFAULT_QUEUE_MAX_JOBS,
    MANIFEST_FILENAME,
    MANIFEST_VERSION,
    STRUCTURE_FILENAME,
)
from .continuation import ContinuationState
from .exceptions import BlobNotFound, JobCancelled, PermanentBackupError, RecordNotFound
from .models import BackupJob, BackupPart, BackupQueueItem, FloorPlan, Hotspot, PanoramaPhoto, Tour
from .retry import fail_job, handle_failure
from .storage import backup_archives, tour_images
from .utils import safe_filename

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------------------------------
# Tour graph
# -------------------------------------------------------------------------------------------------

@dataclass
class TourGraph:
    tour: Tour
    floor_plans: list[FloorPlan]
    hotspots: list[Hotspot]
    photos: list[PanoramaPhoto]

    def structure(self) -> dict[str, Any]:
        """Relational content of the tour, as written to tour.json."""
        return {
            "tour": self.tour.to_dict(),
            "floor_plans": [fp.to_dict() for fp in self.floor_plans],
            "hotspots": [h.to_dict() for h in self.hotspots],
            "panorama_photos": [p.to_dict() for p in self.photos],
        }


@dataclass(frozen=True)
class ImageRef:
    """One binary asset of a tour and where it goes inside the archive."""
    kind: str
    object_id: int
    storage_path: str
    archive_name: str


def load_tour_graph(tour_id: int) -> TourGraph:
    try:
        tour = Tour.objects.get(pk=tour_id)
    except Tour.DoesNotExist:
        raise PermanentBackupError(f"Tour {tour_id} not found")

    floor_plans = list(FloorPlan.objects.filter(tour=tour).order_by("order", "id"))
    hotspots = list(Hotspot.objects.filter(floor_plan__tour=tour).order_by("floor_plan__order", "floor_plan_id", "id"))
    photos = list(
        PanoramaPhoto.objects.filter(hotspot__floor_plan__tour=tour)
        .order_by("hotspot__floor_plan__order", "hotspot__floor_plan_id", "hotspot_id", "id")
    )
    return TourGraph(tour=tour, floor_plans=floor_plans, hotspots=hotspots, photos=photos)


def flat_image_list(graph: TourGraph, job_type: str) -> list[ImageRef]:
    """
    Deterministic list of all images of a tour: floor plans first, then panoramas.

    Structure-only backups carry no images.
    """
    if job_type == BackupJob.TYPE_STRUCTURE_ONLY:
        return []

    images = []
    for fp in graph.floor_plans:
        if fp.image:
            images.append(ImageRef(
                kind="floor_plan",
                object_id=fp.id,
                storage_path=fp.image,
                archive_name=f"media/floor_plans/{fp.id}_{safe_filename(fp.name, 'floor_plan')}{_extension(fp.image)}",
            ))
    for photo in graph.photos:
        images.append(ImageRef(
            kind="panorama",
            object_id=photo.id,
            storage_path=photo.photo,
            archive_name=f"media/panoramas/hotspot_{photo.hotspot_id}/photo_{photo.id}{_extension(photo.photo)}",
        ))
    return images


def _extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    if "." in name:
        return "." + name.rsplit(".", 1)[-1].lower()
    return ".jpg"


def items_per_part() -> int:
    return max(1, getattr(settings, "TOURKEEP_ITEMS_PER_PART", DEFAULT_ITEMS_PER_PART))


# -------------------------------------------------------------------------------------------------
# Archives
# -------------------------------------------------------------------------------------------------

def part_storage_path(job: BackupJob, tour_title: str, part_number: int) -> str:
    """
    {user_id}/{job_id}/{safe_tour_name}_part{N}_{timestamp}.zip

    The timestamp is the job's start time, so a retried part lands on the
    same object instead of creating a second one.
    """
    started = job.started_at or job.created_at
    stamp = started.strftime("%Y%m%dT%H%M%S")
    return f"{job.user_id}/{job.id}/{safe_filename(tour_title)}_part{part_number}_{stamp}.zip"


def build_part_archive(
    job: BackupJob,
    graph: TourGraph,
    state: ContinuationState,
    batch: list[ImageRef],
) -> tuple[bytes, list[ImageRef], list[dict[str, Any]]]:
    """
    Build the ZIP for one part.

    Images that cannot be downloaded are logged and left out; they are
    listed under ``skipped`` in the manifest.

    Returns:
        (archive bytes, images included, skipped entries)
    """
    store = tour_images()
    included: list[ImageRef] = []
    skipped: list[dict[str, Any]] = []

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=ARCHIVE_COMPRESSION_LEVEL) as zf:
        if state.current_part == 1 and job.job_type in (BackupJob.TYPE_FULL, BackupJob.TYPE_STRUCTURE_ONLY):
            zf.writestr(STRUCTURE_FILENAME, json.dumps(graph.structure(), indent=2, ensure_ascii=False))

        for image in batch:
            try:
                content = store.download(image.storage_path)
            except BlobNotFound as e:
                logger.warning(f"Backup {job.id}: could not download {image.kind} {image.object_id}: {e}")
                skipped.append({"kind": image.kind, "id": image.object_id, "error": str(e)})
                continue
            zf.writestr(image.archive_name, content)
            included.append(image)

        manifest = {
            "export_info": {
                "version": MANIFEST_VERSION,
                "type": "virtual_tour_backup",
                "created_at": timezone.now().isoformat(),
                "backup_type": job.job_type,
                "backup_job_id": job.id,
            },
            "tour": {"id": graph.tour.id, "title": graph.tour.title},
            "part": {
                "number": state.current_part,
                "total_parts": state.total_parts,
                "items_per_part": state.items_per_part,
            },
            "items": [
                {"kind": i.kind, "id": i.object_id, "source": i.storage_path, "path": i.archive_name}
                for i in included
            ],
            "skipped": skipped,
        }
        zf.writestr(MANIFEST_FILENAME, json.dumps(manifest, indent=2, ensure_ascii=False))

    return buffer.getvalue(), included, skipped


# -------------------------------------------------------------------------------------------------
# One step
# -------------------------------------------------------------------------------------------------

@dataclass
class StepResult:
    backup_id: int
    in_progress: bool
    parts_count: int
    total_size: int
    total_items: int
    part_number: Optional[int] = None
    skipped: list[dict[str, Any]] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        data = {
            "success": True,
            "backupId": self.backup_id,
            "partsCount": self.parts_count,
            "totalSize": self.total_size,
            "totalItems": self.total_items,
        }
        if self.in_progress:
            data["inProgress"] = True
            data["currentPart"] = self.part_number
        return data


def _completed_result(job: BackupJob) -> StepResult:
    totals = job.parts.aggregate(size=Sum("file_size"))
    return StepResult(
        backup_id=job.id,
        in_progress=False,
        parts_count=job.parts.count(),
        total_size=totals["size"] or 0,
        total_items=job.total_items,
    )


def run_backup_step(job: BackupJob) -> StepResult:
    """
    Process the current part of ``job``.

    Raises:
        JobCancelled: cancellation was requested before this part started
        PermanentBackupError: the job can never succeed (tour gone, corrupt state)
        Exception: anything else is treated as recoverable by the caller
    """
    job.refresh_from_db()

    if job.status == BackupJob.STATUS_COMPLETED:
        return _completed_result(job)
    if job.status in (BackupJob.STATUS_FAILED, BackupJob.STATUS_CANCELLED):
        raise PermanentBackupError(f"Backup {job.id} already {job.status}")
    if job.cancel_requested:
        raise JobCancelled(f"Backup {job.id} was cancelled")
    if job.tour_id is None:
        raise PermanentBackupError(f"Backup {job.id} has no tour")

    graph = load_tour_graph(job.tour_id)
    images = flat_image_list(graph, job.job_type)

    state = job.continuation
    if state is None:
        state = ContinuationState.start(len(images), items_per_part())
        job.store_continuation(state)
        job.total_items = len(images)
        job.status = BackupJob.STATUS_PROCESSING
        job.started_at = job.started_at or timezone.now()
        job.storage_path = f"{job.user_id}/{job.id}"
        job.save(update_fields=["metadata", "total_items", "status", "started_at", "storage_path"])
        log_event(job, "backup_started", f"Backup of '{graph.tour.title}' split into {state.total_parts} part(s)",
                  {"total_images": len(images), **state.to_metadata()})
    elif job.status != BackupJob.STATUS_PROCESSING:
        job.status = BackupJob.STATUS_PROCESSING
        job.save(update_fields=["status"])

    start, end = state.slice_bounds()
    batch = images[start:end]
    archive, included, skipped = build_part_archive(job, graph, state, batch)

    path = part_storage_path(job, graph.tour.title, state.current_part)
    path = backup_archives().upload(path, archive, overwrite=True)
    size = len(archive)
    file_hash = hashlib.sha256(archive).hexdigest()

    with transaction.atomic():
        BackupPart.objects.update_or_create(
            backup_job=job,
            part_number=state.current_part,
            defaults={
                "storage_path": path,
                "file_hash": file_hash,
                "file_size": size,
                "items_count": len(included),
                "status": "completed",
                "completed_at": timezone.now(),
            },
        )
        job.record_progress(min(end, len(images)), state.progress_percentage(state.current_part))

        if not state.is_last_part:
            job.store_continuation(state.advance())
            job.save(update_fields=["processed_items", "progress_percentage", "metadata"])
        else:
            totals = job.parts.aggregate(size=Sum("file_size"), items=Sum("items_count"))
            job.status = BackupJob.STATUS_COMPLETED
            job.file_size = totals["size"] or 0
            job.processed_items = job.total_items
            job.progress_percentage = 100
            job.completed_at = timezone.now()
            job.error_message = ""
            job.save(update_fields=[
                "processed_items", "progress_percentage", "metadata", "status",
                "file_size", "completed_at", "error_message",
            ])
            complete_queue_item(job)

    log_event(job, "part_uploaded", f"Part {state.current_part}/{state.total_parts} uploaded",
              {"path": path, "size": size, "items": len(included), "skipped": len(skipped), "hash": file_hash},
              is_error=bool(skipped))

    if state.is_last_part:
        log_event(job, "backup_completed", "Backup completed successfully",
                  {"parts": state.total_parts, "file_size": job.file_size, "total_items": job.total_items})
        return _completed_result(job)

    return StepResult(
        backup_id=job.id,
        in_progress=True,
        parts_count=state.total_parts,
        total_size=size,
        total_items=job.total_items,
        part_number=state.current_part,
        skipped=skipped,
    )


def schedule_continuation(job: BackupJob, invoker: Optional[job_invoker.JobInvoker] = None) -> None:
    """
    Hand the next part to a new invocation and return without waiting.

    The queue item goes back to ``pending`` first, so the continuation still
    runs (through the queue) if the invocation is lost.
    """
    item = BackupQueueItem.objects.filter(backup_job=job).first()
    if item is not None:
        requeue_for_continuation(item)
    invoker = invoker or job_invoker.get_job_invoker()
    invoker.invoke({"action": "continue", "jobId": job.id}, wait=False)


# -------------------------------------------------------------------------------------------------
# Entry points
# -------------------------------------------------------------------------------------------------

def process_single_job(backup_job_id: int, invoker: Optional[job_invoker.JobInvoker] = None) -> dict[str, Any]:
    """
    Run one step of a job on request (``process_job`` action).

    Any failure fails the job and its queue item; there is no retry on this path.
    """
    try:
        job = BackupJob.objects.get(pk=backup_job_id)
    except BackupJob.DoesNotExist:
        raise RecordNotFound(f"Backup job {backup_job_id} not found")

    item = BackupQueueItem.objects.filter(backup_job=job).first()
    if item is not None and item.status in BackupQueueItem.RUNNABLE_STATUSES:
        BackupQueueItem.objects.filter(pk=item.pk).update(
            status=BackupQueueItem.STATUS_PROCESSING, started_at=timezone.now()
        )

    try:
        result = run_backup_step(job)
    except JobCancelled:
        mark_cancelled(job)
        return {"success": False, "backupId": job.id, "error": "Backup cancelled", "cancelled": True}
    except Exception as e:
        logger.exception(f"Backup {job.id} failed")
        fail_job(job, str(e) or e.__class__.__name__)
        return {"success": False, "backupId": job.id, "error": str(e)}

    if result.in_progress:
        schedule_continuation(job, invoker)
    return result.to_response()


def continue_job(backup_job_id: int, invoker: Optional[job_invoker.JobInvoker] = None) -> dict[str, Any]:
    """
    Run the next part of a job (``continue`` action).

    Queue-backed jobs go through the queue claim, so a continuation that is
    delivered twice (invocation plus queue) runs only once.
    """
    try:
        job = BackupJob.objects.get(pk=backup_job_id)
    except BackupJob.DoesNotExist:
        raise RecordNotFound(f"Backup job {backup_job_id} not found")

    item = BackupQueueItem.objects.filter(backup_job=job).first()
    if item is None:
        return process_single_job(backup_job_id, invoker)

    if job.status == BackupJob.STATUS_COMPLETED:
        return _completed_result(job).to_response()

    if not claim_queue_item(item):
        return {"success": True, "backupId": job.id, "inProgress": True, "claimed": False}

    return _run_claimed_item(item, invoker)


def _run_claimed_item(item: BackupQueueItem, invoker: Optional[job_invoker.JobInvoker]) -> dict[str, Any]:
    job = item.backup_job
    try:
        result = run_backup_step(job)
    except JobCancelled:
        mark_cancelled(job)
        return {"jobId": job.id, "status": "cancelled"}
    except Exception as e:
        logger.exception(f"Backup {job.id} step failed (attempt {item.attempts}/{item.max_attempts})")
        outcome = handle_failure(item, e)
        return {"jobId": job.id, "status": outcome, "error": str(e)}

    if result.in_progress:
        schedule_continuation(job, invoker)
        return {"jobId": job.id, "status": "in_progress", "currentPart": result.part_number,
                "partsCount": result.parts_count}
    return {"jobId": job.id, "status": "completed", "fileSize": result.total_size,
            "partsCount": result.parts_count}


def process_backup_queue(max_jobs: Optional[int] = None, invoker: Optional[job_invoker.JobInvoker] = None) -> dict[str, Any]:
    """
    Run one step for up to ``max_jobs`` due queue items, one after another.

    Returns:
        {success, processed, failed, skipped, details[]}
    """
    if max_jobs is None:
        max_jobs = getattr(settings, "TOURKEEP_QUEUE_MAX_JOBS", DEFAULT_QUEUE_MAX_JOBS)

    items = due_queue_items(max_jobs)
    logger.info(f"Processing backup queue: {len(items)} due item(s), max {max_jobs}")

    results = {"processed": 0, "failed": 0, "skipped": 0, "details": []}

    for item in items:
        if item.is_exhausted:
            logger.info(f"Skipping backup {item.backup_job_id}: max attempts reached")
            results["skipped"] += 1
            results["details"].append({"jobId": item.backup_job_id, "status": "skipped",
                                       "reason": "max_attempts"})
            continue

        if not claim_queue_item(item):
            results["skipped"] += 1
            results["details"].append({"jobId": item.backup_job_id, "status": "skipped",
                                       "reason": "claimed_elsewhere"})
            continue

        detail = _run_claimed_item(item, invoker)
        if detail["status"] in ("retry", "failed"):
            results["failed"] += 1
        elif detail["status"] == "cancelled":
            results["skipped"] += 1
        else:
            results["processed"] += 1
        results["details"].append(detail)

    logger.info(
        f"Queue run finished: {results['processed']} processed, "
        f"{results['failed']} failed, {results['skipped']} skipped"
    )
    return {"success": True, **results, "timestamp": timezone.now().isoformat()}


def run_job_to_completion(backup_job_id: int) -> dict[str, Any]:
    """
    Run every remaining part of a job in this process, one after another.

    Progress is checkpointed after each part exactly as with continuations,
    so a crash mid-way resumes from the last recorded part.
    """
    while True:
        job = BackupJob.objects.get(pk=backup_job_id)
        try:
            result = run_backup_step(job)
        except JobCancelled:
            mark_cancelled(job)
            return {"success": False, "backupId": job.id, "cancelled": True}
        if not result.in_progress:
            return result.to_response()
