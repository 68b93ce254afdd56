"""
Restore a tour from the part archives of a completed backup.
"""

import io
import json
import logging
import zipfile
from typing import Any

from django.db import transaction

from .backup_queue import log_event
from .constants import MANIFEST_FILENAME, STRUCTURE_FILENAME
from .exceptions import BlobNotFound, PermanentBackupError
from .models import BackupJob, FloorPlan, Hotspot, PanoramaPhoto, Tour
from .storage import backup_archives, tour_images
from .utils import sanitize_text

logger = logging.getLogger(__name__)

MODE_ADDITIVE = "additive"
MODE_FULL = "full"
RESTORE_MODES = (MODE_ADDITIVE, MODE_FULL)


def read_backup_archives(job: BackupJob) -> tuple[dict[str, Any], dict[tuple[str, int], tuple[str, bytes]]]:
    """
    Read every part of ``job`` in part order.

    Returns:
        (structure from tour.json, {(kind, original id): (archive name, bytes)})
    """
    store = backup_archives()
    structure = None
    images: dict[tuple[str, int], tuple[str, bytes]] = {}

    for part in job.parts.order_by("part_number"):
        content = store.download(part.storage_path)
        with zipfile.ZipFile(io.BytesIO(content)) as zf:
            names = set(zf.namelist())
            if STRUCTURE_FILENAME in names:
                structure = json.loads(zf.read(STRUCTURE_FILENAME))
            manifest = json.loads(zf.read(MANIFEST_FILENAME))
            for item in manifest.get("items", []):
                if item["path"] in names:
                    images[(item["kind"], item["id"])] = (item["path"], zf.read(item["path"]))

    if structure is None:
        raise PermanentBackupError(f"Backup {job.id} has no {STRUCTURE_FILENAME} to restore from")
    return structure, images


def _restore_image(images, kind: str, old_id: int, original_path: str, new_tour: Tour, stats: dict) -> str:
    entry = images.get((kind, old_id))
    if entry is None:
        stats["images_missing"] += 1
        return original_path
    archive_name, content = entry
    path = f"restored/tour_{new_tour.id}/{archive_name.rsplit('/', 1)[-1]}"
    path = tour_images().upload(path, content, overwrite=True)
    stats["images_restored"] += 1
    return path


def restore_backup(job: BackupJob, mode: str = MODE_ADDITIVE) -> dict[str, Any]:
    """
    Recreate the tour graph stored in ``job``.

    Args:
        job: A completed ``full`` or ``structure_only`` backup
        mode: 'additive' creates a new tour; 'full' replaces the floor plans
            of the original tour

    Returns:
        Summary with the restored tour id and counters
    """
    if mode not in RESTORE_MODES:
        raise PermanentBackupError(f"Unknown restore mode: {mode}")
    if job.status != BackupJob.STATUS_COMPLETED:
        raise PermanentBackupError(f"Backup {job.id} is {job.status}, only completed backups can be restored")
    if job.job_type == BackupJob.TYPE_MEDIA_ONLY:
        raise PermanentBackupError("Media-only backups cannot be restored")

    try:
        structure, images = read_backup_archives(job)
    except BlobNotFound as e:
        raise PermanentBackupError(f"Backup {job.id} is incomplete: {e}") from e

    tour_data = structure.get("tour", {})
    stats = {"floor_plans": 0, "hotspots": 0, "photos": 0, "images_restored": 0, "images_missing": 0}

    with transaction.atomic():
        if mode == MODE_FULL:
            if job.tour is None:
                raise PermanentBackupError("The original tour no longer exists, use additive mode")
            tour = job.tour
            tour.floor_plans.all().delete()
            tour.title = sanitize_text(tour_data.get("title", tour.title)) or tour.title
            tour.description = sanitize_text(tour_data.get("description", ""))
            tour.save()
        else:
            tour = Tour.objects.create(
                owner=job.user,
                tenant_id=tour_data.get("tenant_id") or (job.tour.tenant_id if job.tour else ""),
                title=sanitize_text(tour_data.get("title", "")) or f"Restored backup {job.id}",
                description=sanitize_text(tour_data.get("description", "")),
                is_published=False,
            )

        floor_plan_ids = {}
        for fp in structure.get("floor_plans", []):
            new_fp = FloorPlan.objects.create(
                tour=tour,
                name=sanitize_text(fp.get("name", "")),
                order=fp.get("order", 0),
                image="",
            )
            if fp.get("image"):
                new_fp.image = _restore_image(images, "floor_plan", fp["id"], fp["image"], tour, stats)
                new_fp.save(update_fields=["image"])
            floor_plan_ids[fp["id"]] = new_fp
            stats["floor_plans"] += 1

        hotspot_ids = {}
        for h in structure.get("hotspots", []):
            floor_plan = floor_plan_ids.get(h.get("floor_plan_id"))
            if floor_plan is None:
                logger.warning(f"Restore of backup {job.id}: hotspot {h.get('id')} has no floor plan, skipped")
                continue
            hotspot_ids[h["id"]] = Hotspot.objects.create(
                floor_plan=floor_plan,
                title=sanitize_text(h.get("title", "")),
                description=sanitize_text(h.get("description", "")),
                x_position=h.get("x_position", 0),
                y_position=h.get("y_position", 0),
            )
            stats["hotspots"] += 1

        for p in structure.get("panorama_photos", []):
            hotspot = hotspot_ids.get(p.get("hotspot_id"))
            if hotspot is None:
                continue
            PanoramaPhoto.objects.create(
                hotspot=hotspot,
                photo=_restore_image(images, "panorama", p["id"], p.get("photo", ""), tour, stats),
                original_filename=p.get("original_filename", ""),
                capture_date=p.get("capture_date"),
            )
            stats["photos"] += 1

    log_event(job, "restored", f"Backup restored in {mode} mode into tour {tour.id}", {"mode": mode, **stats})
    return {"success": True, "tourId": tour.id, "mode": mode, **stats}
