"""
Offline tour cache.

Keeps a bounded number of complete tour bundles (data plus floor-plan images)
on the device. A bundle lives for a fixed number of days; expired bundles
are dropped when read and by the periodic sweep.

When the cache is full, a new download fails with ``CapacityExceeded``; the
user frees a slot explicitly. Nothing is ever evicted automatically.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from django.conf import settings
from django.utils import timezone

from .adapters import StorageAdapter, StoredTour, serialized_size
from .constants import DEFAULT_CACHE_TTL_DAYS, DEFAULT_MAX_CACHED_TOURS
from .exceptions import CapacityExceeded, TourFetchError

logger = logging.getLogger(__name__)


class TourOfflineCache:
    """
    Args:
        adapter: Storage adapter chosen at startup
        client: Backend client (``fetch_tour_bundle`` and ``fetch_image``)
        max_tours: Live bundles allowed at once
        ttl_days: Lifetime of a bundle
        clock: Returns the current time
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        client,
        max_tours: Optional[int] = None,
        ttl_days: Optional[int] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.adapter = adapter
        self.client = client
        self.max_tours = max_tours if max_tours is not None else getattr(
            settings, "OFFLINE_MAX_CACHED_TOURS", DEFAULT_MAX_CACHED_TOURS)
        ttl_days = ttl_days if ttl_days is not None else getattr(
            settings, "OFFLINE_CACHE_TTL_DAYS", DEFAULT_CACHE_TTL_DAYS)
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock
        # Capacity check and write must not interleave between two downloads.
        self._lock = threading.Lock()

    def _live_entries(self, now: datetime) -> list[dict[str, Any]]:
        return [entry for entry in self.adapter.list() if entry["expires_at"] and entry["expires_at"] >= now]

    def download_for_offline(self, tour_id: Any) -> StoredTour:
        """
        Fetch a tour with its floor-plan images and store it for offline use.

        A floor-plan image that cannot be downloaded is logged and left out;
        the bundle is still stored. Downloading a tour that is already cached
        replaces its bundle and does not need a free slot.

        Raises:
            CapacityExceeded: the cache already holds the maximum number of tours
            TourFetchError: the tour itself could not be loaded
        """
        tour_id = str(tour_id)
        with self._lock:
            now = self.clock()
            self._remove_expired(now)
            live_ids = {entry["id"] for entry in self._live_entries(now)}
            if tour_id not in live_ids and len(live_ids) >= self.max_tours:
                raise CapacityExceeded(
                    f"Maximum of {self.max_tours} cached tours reached. Delete one before downloading another."
                )

            bundle = self.client.fetch_tour_bundle(tour_id)
            tour = bundle.get("tour") or {}
            floor_plans = bundle.get("floor_plans") or []
            hotspots = bundle.get("hotspots") or []

            images = {}
            for fp in floor_plans:
                url = fp.get("image_url")
                if not url:
                    continue
                try:
                    images[str(fp["id"])] = self.client.fetch_image(url)
                except TourFetchError as e:
                    logger.warning(f"Could not download image of floor plan {fp.get('id')}: {e}")

            cached_at = self.clock()
            stored = self.adapter.save(
                tour_id,
                tour.get("title") or "Untitled",
                tour,
                floor_plans,
                hotspots,
                [],
                images=images,
                cached_at=cached_at,
                expires_at=cached_at + self.ttl,
            )

        logger.info(
            f"Tour {tour_id} cached for offline use: {len(floor_plans)} floor plan(s), "
            f"{len(images)} image(s), {len(hotspots)} hotspot(s)"
        )
        return stored

    def get_cached_tour(self, tour_id: Any) -> Optional[StoredTour]:
        """The bundle, or None when absent or expired (an expired one is deleted)."""
        stored = self.adapter.load(str(tour_id))
        if stored is None:
            return None
        if stored.is_expired(self.clock()):
            logger.info(f"Cached tour {tour_id} expired, removing it")
            self.adapter.delete(str(tour_id))
            return None
        return stored

    def is_tour_cached(self, tour_id: Any) -> bool:
        return self.get_cached_tour(tour_id) is not None

    def get_floor_plan_image(self, tour_id: Any, floor_plan_id: Any) -> Optional[bytes]:
        stored = self.get_cached_tour(tour_id)
        if stored is None:
            return None
        return stored.images.get(str(floor_plan_id))

    def list_cached_tours(self) -> list[dict[str, Any]]:
        return self._live_entries(self.clock())

    def delete_cached_tour(self, tour_id: Any) -> None:
        with self._lock:
            self.adapter.delete(str(tour_id))

    def _remove_expired(self, now: datetime) -> int:
        removed = 0
        for entry in self.adapter.list():
            if entry["expires_at"] is None or entry["expires_at"] < now:
                self.adapter.delete(entry["id"])
                removed += 1
        return removed

    def clean_expired_tours(self) -> int:
        """Remove every expired bundle. Returns how many were removed."""
        with self._lock:
            removed = self._remove_expired(self.clock())
        if removed:
            logger.info(f"Removed {removed} expired cached tour(s)")
        return removed

    def get_cache_size(self) -> int:
        """Bytes of metadata and images across live bundles. Informational only."""
        total = 0
        for entry in self.list_cached_tours():
            stored = self.adapter.load(entry["id"])
            if stored is None:
                continue
            total += serialized_size(stored.data, stored.floor_plans, stored.hotspots)
            total += sum(len(content) for content in stored.images.values())
        return total

    def stats(self) -> dict[str, int]:
        return {**self.adapter.stats(), "max_tours": self.max_tours}
