"""
Pending upload queue for photos captured while offline.

Capturing only writes a local row and never touches the network.
"""

import logging
from datetime import datetime
from typing import Optional

from django.db.models import F
from django.utils import timezone

from .models import PendingPhoto

logger = logging.getLogger(__name__)


def capture_photo(
    payload: bytes,
    hotspot_id,
    tour_id,
    tenant_id: str,
    filename: str,
    capture_date: Optional[datetime] = None,
) -> str:
    """
    Queue a photo for upload.

    Returns:
        The generated local id of the record
    """
    photo = PendingPhoto.objects.create(
        payload=payload,
        hotspot_id=str(hotspot_id),
        tour_id=str(tour_id),
        tenant_id=tenant_id,
        filename=filename,
        capture_date=capture_date or timezone.now(),
    )
    logger.info(f"Captured {filename} for hotspot {hotspot_id} ({len(payload)} bytes), queued for sync")
    return str(photo.local_id)


def pending_photos():
    """Photos waiting for upload, in capture order."""
    return PendingPhoto.objects.filter(status=PendingPhoto.STATUS_PENDING).order_by("created_at", "id")


def pending_count() -> int:
    return pending_photos().count()


def photos_for_hotspot(hotspot_id):
    """Photos of a hotspot that are not on the backend yet (pending or failed)."""
    return PendingPhoto.objects.filter(
        hotspot_id=str(hotspot_id),
        status__in=[PendingPhoto.STATUS_PENDING, PendingPhoto.STATUS_FAILED],
    ).order_by("created_at", "id")


def mark_syncing(photo: PendingPhoto) -> None:
    PendingPhoto.objects.filter(pk=photo.pk).update(
        status=PendingPhoto.STATUS_SYNCING, attempts=F("attempts") + 1
    )
    photo.refresh_from_db(fields=["status", "attempts"])


def mark_synced(photo: PendingPhoto, remote_id: str = "") -> None:
    photo.status = PendingPhoto.STATUS_SYNCED
    photo.error_message = ""
    photo.remote_id = remote_id or ""
    photo.synced_at = timezone.now()
    photo.save(update_fields=["status", "error_message", "remote_id", "synced_at"])


def mark_failed(photo: PendingPhoto, error: str) -> None:
    photo.status = PendingPhoto.STATUS_FAILED
    photo.error_message = error
    photo.save(update_fields=["status", "error_message"])


def retry_failed() -> int:
    """Put failed photos back in the queue. Returns how many."""
    return PendingPhoto.objects.filter(status=PendingPhoto.STATUS_FAILED).update(
        status=PendingPhoto.STATUS_PENDING
    )


def reset_interrupted() -> int:
    """
    Return photos left in ``syncing`` by a previous process to the queue.

    Call at startup, before any drain runs.
    """
    count = PendingPhoto.objects.filter(status=PendingPhoto.STATUS_SYNCING).update(
        status=PendingPhoto.STATUS_PENDING
    )
    if count:
        logger.warning(f"Re-queued {count} photo(s) interrupted during a previous sync")
    return count


def cleanup_synced(older_than: datetime) -> int:
    """Delete synced records confirmed before ``older_than``. Returns how many."""
    deleted, _ = PendingPhoto.objects.filter(
        status=PendingPhoto.STATUS_SYNCED, synced_at__lt=older_than
    ).delete()
    if deleted:
        logger.info(f"Removed {deleted} synced photo record(s)")
    return deleted
