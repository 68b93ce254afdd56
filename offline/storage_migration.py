"""
Move cached bundles from one adapter to another.

Used once, when a device that started on the database fallback gets storage
permission inside the native shell.
"""

import logging
import os

from tours.utils import BatchResult

from .adapters import FilesystemAdapter, StorageAdapter, check_storage_permission
from .exceptions import AdapterUnavailable, OfflineError

logger = logging.getLogger(__name__)


def require_filesystem_adapter(storage_dir: os.PathLike) -> FilesystemAdapter:
    """Filesystem adapter, or ``AdapterUnavailable`` when the directory cannot be written."""
    permission = check_storage_permission(storage_dir, native_shell=True)
    if not permission.granted:
        raise AdapterUnavailable(f"No write permission for {storage_dir}")
    return FilesystemAdapter(storage_dir)


def migrate_bundles(source: StorageAdapter, target: StorageAdapter) -> BatchResult[str]:
    """
    Copy every bundle of ``source`` into ``target`` and remove it from ``source``.

    Expiry timestamps are carried over unchanged. A bundle that fails to copy
    stays in ``source``.
    """
    result: BatchResult[str] = BatchResult()
    for entry in source.list():
        tour_id = entry["id"]
        bundle = source.load(tour_id)
        if bundle is None:
            result.add_failure(tour_id, "Bundle could not be read")
            continue
        try:
            target.save(
                bundle.id, bundle.name, bundle.data, bundle.floor_plans, bundle.hotspots, bundle.photos,
                images=bundle.images, cached_at=bundle.cached_at, expires_at=bundle.expires_at,
            )
        except (OfflineError, OSError) as e:
            logger.error(f"Could not migrate tour {tour_id} to {target.name}: {e}")
            result.add_failure(tour_id, e)
            continue
        source.delete(tour_id)
        result.add_success(tour_id)

    logger.info(
        f"Migrated {len(result.succeeded)} bundle(s) from {source.name} to {target.name}, "
        f"{len(result.failed)} failed"
    )
    return result
