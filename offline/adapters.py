"""
Storage adapters for offline tour bundles.

Two implementations share one interface:

- ``DatabaseAdapter``: rows in the local database, always available.
- ``FilesystemAdapter``: one directory per tour, used inside the native shell
  when storage permission is granted. Tour data and hotspots are
  zlib-compressed on disk.

``select_storage_adapter`` picks one at startup; the result is passed to the
components that need it (``TourOfflineCache``), never looked up globally.
"""

import json
import logging
import os
import re
import shutil
import uuid
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .constants import (
    DEFAULT_CACHE_TTL_DAYS,
    DEFAULT_STORAGE_LIMIT_MB,
    HOTSPOTS_FILENAME,
    IMAGES_SUBDIR,
    META_FILENAME,
    TOUR_DATA_FILENAME,
    TOURS_SUBDIR,
    ZLIB_LEVEL,
)
from .exceptions import StorageLimitExceeded
from .models import CachedTour, CachedTourImage

logger = logging.getLogger(__name__)


def serialized_size(*values: Any) -> int:
    """Length of the JSON serialization of ``values``, the metadata share of a bundle's size."""
    return sum(len(json.dumps(value, default=str)) for value in values)


@dataclass
class StoredTour:
    """A tour bundle as every adapter returns it."""
    id: str
    name: str
    data: dict
    floor_plans: list
    hotspots: list
    photos: list = field(default_factory=list)
    images: dict[str, bytes] = field(default_factory=dict)
    cached_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @property
    def size(self) -> int:
        return (
            serialized_size(self.data, self.floor_plans, self.hotspots)
            + sum(len(content) for content in self.images.values())
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


class StorageAdapter:
    """Interface of an offline bundle store."""

    name = "base"

    def save(self, tour_id, name, tour_data, floor_plans, hotspots, photos=None, *,
             images=None, cached_at=None, expires_at=None) -> StoredTour:
        raise NotImplementedError

    def load(self, tour_id) -> Optional[StoredTour]:
        raise NotImplementedError

    def list(self) -> list[dict[str, Any]]:
        """[{id, name, size, last_modified, expires_at}]"""
        raise NotImplementedError

    def delete(self, tour_id) -> None:
        raise NotImplementedError

    def stats(self) -> dict[str, int]:
        """{count, size, limit} in bytes."""
        raise NotImplementedError

    def _build(self, tour_id, name, tour_data, floor_plans, hotspots, photos, images, cached_at, expires_at) -> StoredTour:
        cached_at = cached_at or timezone.now()
        return StoredTour(
            id=str(tour_id),
            name=name,
            data=tour_data or {},
            floor_plans=list(floor_plans or []),
            hotspots=list(hotspots or []),
            photos=list(photos or []),
            images={str(k): bytes(v) for k, v in (images or {}).items()},
            cached_at=cached_at,
            expires_at=expires_at or cached_at + timedelta(days=DEFAULT_CACHE_TTL_DAYS),
        )


# -------------------------------------------------------------------------------------------------
# Database adapter
# -------------------------------------------------------------------------------------------------

class DatabaseAdapter(StorageAdapter):
    """Bundles as CachedTour rows; no compression of its own."""

    name = "database"

    def __init__(self, limit_bytes: Optional[int] = None):
        if limit_bytes is None:
            limit_bytes = getattr(settings, "OFFLINE_STORAGE_LIMIT_MB", DEFAULT_STORAGE_LIMIT_MB) * 1024 * 1024
        self.limit_bytes = limit_bytes

    def save(self, tour_id, name, tour_data, floor_plans, hotspots, photos=None, *,
             images=None, cached_at=None, expires_at=None):
        stored = self._build(tour_id, name, tour_data, floor_plans, hotspots, photos, images, cached_at, expires_at)
        size = stored.size

        with transaction.atomic():
            others = CachedTour.objects.exclude(tour_id=stored.id).aggregate(total=Sum("size"))["total"] or 0
            if others + size > self.limit_bytes:
                raise StorageLimitExceeded(
                    f"Saving tour {stored.id} needs {size} bytes, "
                    f"{max(0, self.limit_bytes - others)} of {self.limit_bytes} available"
                )

            row, _ = CachedTour.objects.update_or_create(
                tour_id=stored.id,
                defaults={
                    "name": stored.name,
                    "tour_data": stored.data,
                    "floor_plans": stored.floor_plans,
                    "hotspots": stored.hotspots,
                    "photos": stored.photos,
                    "size": size,
                    "cached_at": stored.cached_at,
                    "expires_at": stored.expires_at,
                },
            )
            row.images.all().delete()
            CachedTourImage.objects.bulk_create([
                CachedTourImage(cached_tour=row, floor_plan_id=fp_id, content=content, size=len(content))
                for fp_id, content in stored.images.items()
            ])

        logger.debug(f"Saved tour {stored.id} to the database cache ({size} bytes)")
        return stored

    def load(self, tour_id):
        row = CachedTour.objects.filter(tour_id=str(tour_id)).prefetch_related("images").first()
        if row is None:
            return None
        return StoredTour(
            id=row.tour_id,
            name=row.name,
            data=row.tour_data,
            floor_plans=row.floor_plans,
            hotspots=row.hotspots,
            photos=row.photos,
            images={img.floor_plan_id: bytes(img.content) for img in row.images.all()},
            cached_at=row.cached_at,
            expires_at=row.expires_at,
        )

    def list(self):
        return [
            {
                "id": row["tour_id"],
                "name": row["name"],
                "size": row["size"],
                "last_modified": row["cached_at"],
                "expires_at": row["expires_at"],
            }
            for row in CachedTour.objects.values("tour_id", "name", "size", "cached_at", "expires_at")
        ]

    def delete(self, tour_id):
        CachedTour.objects.filter(tour_id=str(tour_id)).delete()

    def stats(self):
        totals = CachedTour.objects.aggregate(total=Sum("size"))
        return {
            "count": CachedTour.objects.count(),
            "size": totals["total"] or 0,
            "limit": self.limit_bytes,
        }


# -------------------------------------------------------------------------------------------------
# Filesystem adapter
# -------------------------------------------------------------------------------------------------

def _dir_name(value: Any) -> str:
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", str(value)) or "_"


def compress_json(value: Any) -> bytes:
    return zlib.compress(json.dumps(value, default=str).encode("utf-8"), ZLIB_LEVEL)


def decompress_json(raw: bytes) -> Any:
    return json.loads(zlib.decompress(raw).decode("utf-8"))


class FilesystemAdapter(StorageAdapter):
    """
    Layout::

        <base>/tours/<tour_id>/meta.json
                               tour.json.z
                               hotspots.json.z
                               images/<floor_plan_id>.bin

    A bundle is written to a temporary directory and moved into place, so a
    crash mid-write never leaves a half-written bundle behind.
    """

    name = "filesystem"

    def __init__(self, base_dir: os.PathLike):
        self.root = Path(base_dir) / TOURS_SUBDIR
        self.root.mkdir(parents=True, exist_ok=True)

    def _tour_dir(self, tour_id) -> Path:
        return self.root / _dir_name(tour_id)

    def save(self, tour_id, name, tour_data, floor_plans, hotspots, photos=None, *,
             images=None, cached_at=None, expires_at=None):
        stored = self._build(tour_id, name, tour_data, floor_plans, hotspots, photos, images, cached_at, expires_at)
        final_dir = self._tour_dir(stored.id)
        tmp_dir = self.root / f".{final_dir.name}.{uuid.uuid4().hex}.tmp"

        try:
            (tmp_dir / IMAGES_SUBDIR).mkdir(parents=True)
            (tmp_dir / TOUR_DATA_FILENAME).write_bytes(compress_json(stored.data))
            (tmp_dir / HOTSPOTS_FILENAME).write_bytes(compress_json(stored.hotspots))

            image_files = {}
            for fp_id, content in stored.images.items():
                filename = f"{_dir_name(fp_id)}.bin"
                (tmp_dir / IMAGES_SUBDIR / filename).write_bytes(content)
                image_files[fp_id] = filename

            meta = {
                "id": stored.id,
                "name": stored.name,
                "floor_plans": stored.floor_plans,
                "photos": stored.photos,
                "image_files": image_files,
                "size": stored.size,
                "compressed": True,
                "cached_at": stored.cached_at.isoformat(),
                "expires_at": stored.expires_at.isoformat(),
            }
            (tmp_dir / META_FILENAME).write_text(json.dumps(meta, default=str), encoding="utf-8")

            if final_dir.exists():
                old_dir = self.root / f".{final_dir.name}.{uuid.uuid4().hex}.old"
                final_dir.rename(old_dir)
                tmp_dir.rename(final_dir)
                shutil.rmtree(old_dir, ignore_errors=True)
            else:
                tmp_dir.rename(final_dir)
        except OSError:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise

        logger.debug(f"Saved tour {stored.id} to {final_dir}")
        return stored

    def _read_meta(self, tour_dir: Path) -> Optional[dict]:
        meta_path = tour_dir / META_FILENAME
        if not meta_path.is_file():
            return None
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable bundle metadata in {tour_dir}: {e}")
            return None

    def load(self, tour_id):
        tour_dir = self._tour_dir(tour_id)
        meta = self._read_meta(tour_dir)
        if meta is None:
            return None

        try:
            data = decompress_json((tour_dir / TOUR_DATA_FILENAME).read_bytes())
            hotspots = decompress_json((tour_dir / HOTSPOTS_FILENAME).read_bytes())
            images = {
                fp_id: (tour_dir / IMAGES_SUBDIR / filename).read_bytes()
                for fp_id, filename in meta.get("image_files", {}).items()
            }
        except (OSError, zlib.error, json.JSONDecodeError) as e:
            logger.warning(f"Corrupt bundle for tour {tour_id} in {tour_dir}: {e}")
            return None

        return StoredTour(
            id=meta["id"],
            name=meta["name"],
            data=data,
            floor_plans=meta.get("floor_plans", []),
            hotspots=hotspots,
            photos=meta.get("photos", []),
            images=images,
            cached_at=parse_datetime(meta["cached_at"]),
            expires_at=parse_datetime(meta["expires_at"]),
        )

    def list(self):
        tours = []
        for tour_dir in sorted(self.root.iterdir()):
            if not tour_dir.is_dir() or tour_dir.name.startswith("."):
                continue
            meta = self._read_meta(tour_dir)
            if meta is None:
                continue
            tours.append({
                "id": meta["id"],
                "name": meta["name"],
                "size": meta.get("size", 0),
                "last_modified": parse_datetime(meta["cached_at"]),
                "expires_at": parse_datetime(meta["expires_at"]),
            })
        return tours

    def delete(self, tour_id):
        shutil.rmtree(self._tour_dir(tour_id), ignore_errors=True)

    def stats(self):
        tours = self.list()
        # No quota of its own: the limit is what the disk has left.
        return {
            "count": len(tours),
            "size": sum(t["size"] for t in tours),
            "limit": shutil.disk_usage(self.root).free,
        }


# -------------------------------------------------------------------------------------------------
# Selection
# -------------------------------------------------------------------------------------------------

@dataclass(frozen=True)
class StoragePermission:
    granted: bool
    can_request: bool
    denied_permanently: bool = False


def check_storage_permission(path: os.PathLike, native_shell: bool) -> StoragePermission:
    """
    Whether this process may keep bundles under ``path``.

    Outside the native shell there is nothing to ask for.
    """
    if not native_shell:
        return StoragePermission(granted=True, can_request=False)

    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Cannot create offline storage directory {path}: {e}")
        return StoragePermission(granted=False, can_request=False, denied_permanently=True)

    if os.access(path, os.W_OK | os.X_OK):
        return StoragePermission(granted=True, can_request=False)
    return StoragePermission(granted=False, can_request=False, denied_permanently=True)


def select_storage_adapter(
    native_shell: Optional[bool] = None,
    storage_dir: Optional[os.PathLike] = None,
    permission: Optional[StoragePermission] = None,
) -> StorageAdapter:
    """
    Choose the adapter for this process. Call once at startup.

    The filesystem adapter is used only inside the native shell with storage
    permission granted; everything else gets the database adapter.
    """
    if native_shell is None:
        native_shell = getattr(settings, "OFFLINE_NATIVE_SHELL", False)
    if storage_dir is None:
        storage_dir = settings.OFFLINE_STORAGE_DIR

    if native_shell:
        permission = permission or check_storage_permission(storage_dir, native_shell=True)
        if permission.granted:
            try:
                adapter = FilesystemAdapter(storage_dir)
            except OSError as e:
                logger.warning(f"Filesystem storage unavailable ({e}), using the database fallback")
            else:
                logger.info(f"Using filesystem storage at {storage_dir}")
                return adapter
        else:
            logger.warning("No storage permission, using the database fallback")

    logger.info("Using database storage")
    return DatabaseAdapter()
