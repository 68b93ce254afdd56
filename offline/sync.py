"""
Sync orchestrator: drains the pending upload queue when the backend is reachable.

Observers connect to the module signals instead of polling:

- ``sync_state_changed``: is_online, is_syncing, pending_count
- ``sync_progress``: percentage, current_item, done, total
- ``sync_finished``: result (BatchResult of local ids), cancelled
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from django.dispatch import Signal
from django.utils import timezone

from tours.utils import BatchResult

from . import pending_queue
from .exceptions import UploadError

logger = logging.getLogger(__name__)

sync_state_changed = Signal()
sync_progress = Signal()
sync_finished = Signal()


class SyncOrchestrator:
    """
    Args:
        client: Backend client with ``upload_photo``
        probe: Connectivity probe with ``is_online()``; optional when the
            caller reports connectivity itself
    """

    def __init__(self, client, probe=None, session_started_at: Optional[datetime] = None):
        self.client = client
        self.probe = probe
        self.session_started_at = session_started_at or timezone.now()
        self._online = False
        self._drain_lock = threading.Lock()
        self._cancel = threading.Event()

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_syncing(self) -> bool:
        return self._drain_lock.locked()

    @property
    def pending_count(self) -> int:
        return pending_queue.pending_count()

    def _emit_state(self) -> None:
        sync_state_changed.send(
            sender=self.__class__,
            is_online=self.is_online,
            is_syncing=self.is_syncing,
            pending_count=self.pending_count,
        )

    def update_connectivity(self, online: Optional[bool] = None) -> Optional[BatchResult[str]]:
        """
        Record the current reachability (probing when ``online`` is None).

        Going from offline to online with pending photos and no drain running
        starts a drain, whose result is returned.
        """
        if online is None:
            online = self.probe.is_online() if self.probe is not None else False

        was_online = self._online
        self._online = online
        if was_online != online:
            logger.info(f"Backend is now {'reachable' if online else 'unreachable'}")
            self._emit_state()

        if online and not was_online and not self.is_syncing and self.pending_count > 0:
            return self.drain()
        return None

    def cancel(self) -> None:
        """Stop the running drain after its current photo."""
        self._cancel.set()

    def drain(self) -> Optional[BatchResult[str]]:
        """
        Upload pending photos one at a time, oldest first.

        A failed upload marks that photo ``failed`` and the drain moves on.
        Returns None when another drain is already running.
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already running")
            return None

        self._cancel.clear()
        result: BatchResult[str] = BatchResult()
        cancelled = False
        try:
            self._emit_state()
            photos = list(pending_queue.pending_photos())
            total = len(photos)
            logger.info(f"Syncing {total} pending photo(s)")

            for index, photo in enumerate(photos, start=1):
                if self._cancel.is_set():
                    cancelled = True
                    logger.info(f"Sync cancelled, {total - index + 1} photo(s) left pending")
                    break

                sync_progress.send(
                    sender=self.__class__,
                    percentage=round((index - 1) / total * 100),
                    current_item=photo.filename,
                    done=index - 1,
                    total=total,
                )
                pending_queue.mark_syncing(photo)
                try:
                    response = self.client.upload_photo(photo)
                except UploadError as e:
                    logger.warning(f"Sync of {photo.filename} failed: {e}")
                    pending_queue.mark_failed(photo, str(e))
                    result.add_failure(str(photo.local_id), e)
                except Exception as e:
                    logger.exception(f"Unexpected error syncing {photo.filename}")
                    pending_queue.mark_failed(photo, f"{type(e).__name__}: {e}")
                    result.add_failure(str(photo.local_id), e)
                else:
                    pending_queue.mark_synced(photo, str(response.get("photoId", "")))
                    result.add_success(str(photo.local_id))

                sync_progress.send(
                    sender=self.__class__,
                    percentage=round(index / total * 100),
                    current_item=photo.filename,
                    done=index,
                    total=total,
                )
        finally:
            self._drain_lock.release()

        logger.info(f"Sync finished: {len(result.succeeded)} synced, {len(result.failed)} failed")
        sync_finished.send(sender=self.__class__, result=result, cancelled=cancelled)
        self._emit_state()
        return result

    def cleanup_synced(self) -> int:
        """Drop synced records from before this session."""
        return pending_queue.cleanup_synced(self.session_started_at)
