"""
Constants for the offline (device-side) application.
"""

from datetime import timedelta

# --------------------------------------------------------------------------------------
# Tour cache
# --------------------------------------------------------------------------------------
DEFAULT_MAX_CACHED_TOURS = 3        # Live bundles allowed at once; more is a hard failure
DEFAULT_CACHE_TTL_DAYS = 7          # expires_at = cached_at + TTL
DEFAULT_STORAGE_LIMIT_MB = 1000     # Budget of the database adapter
CACHE_SWEEP_INTERVAL = timedelta(minutes=30)

# --------------------------------------------------------------------------------------
# Filesystem adapter layout
# --------------------------------------------------------------------------------------
TOURS_SUBDIR = "tours"
META_FILENAME = "meta.json"
TOUR_DATA_FILENAME = "tour.json.z"
HOTSPOTS_FILENAME = "hotspots.json.z"
IMAGES_SUBDIR = "images"
ZLIB_LEVEL = 6

# --------------------------------------------------------------------------------------
# Sync
# --------------------------------------------------------------------------------------
CONNECTIVITY_TIMEOUT = 3            # Seconds for the liveness probe
CONNECTIVITY_POLL_INTERVAL = 15.0   # Seconds between probes in the agent loop
UPLOAD_TIMEOUT = 60                 # Seconds per photo upload
SYNCED_CLEANUP_INTERVAL = timedelta(minutes=10)
