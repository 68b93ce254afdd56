"""
Constants for the tours application.
Centralizes the fixed policies of the backup pipeline and photo sync.
"""

from datetime import timedelta

# --------------------------------------------------------------------------------------
# Chunked backups
# --------------------------------------------------------------------------------------
DEFAULT_ITEMS_PER_PART = 10        # Images per backup part (archive)
DEFAULT_MAX_ATTEMPTS = 3           # Queue attempts before a job fails permanently
DEFAULT_QUEUE_MAX_JOBS = 3         # Queue items handled per process_queue invocation
SAFE_NAME_MAX_LENGTH = 100         # Max length of the tour name inside archive paths
ARCHIVE_COMPRESSION_LEVEL = 6      # zlib level for part archives

MANIFEST_FILENAME = "backup_manifest.json"
STRUCTURE_FILENAME = "tour.json"
MANIFEST_VERSION = "2.0"

# --------------------------------------------------------------------------------------
# Retry / recovery
# --------------------------------------------------------------------------------------
RETRY_BASE_DELAY = timedelta(minutes=5)    # delay = base * 2^attempts
RETRY_MAX_DELAY = timedelta(hours=24)      # upper bound for the backoff
STUCK_JOB_TIMEOUT = timedelta(minutes=30)  # processing longer than this is reclaimed

# --------------------------------------------------------------------------------------
# Queue priorities (higher runs first)
# --------------------------------------------------------------------------------------
PRIORITY_MANUAL = 5
PRIORITY_SCHEDULED = 2

# --------------------------------------------------------------------------------------
# Auto-backup frequencies
# --------------------------------------------------------------------------------------
AUTO_BACKUP_INTERVALS = {
    "daily": timedelta(hours=24),
    "weekly": timedelta(hours=168),
}

# --------------------------------------------------------------------------------------
# Photo sync
# --------------------------------------------------------------------------------------
PHOTO_SYNC_MAX_ATTEMPTS = 3        # Per-photo attempts inside one sync job
PHOTO_SYNC_RETRY_DELAY = 1.0       # Seconds; multiplied by the attempt number
STALLED_SYNC_TIMEOUT = timedelta(minutes=5)
STALLED_SYNC_MAX_RESUMES = 3

# --------------------------------------------------------------------------------------
# Signed download URLs
# --------------------------------------------------------------------------------------
SIGNED_URL_MAX_AGE = 7 * 24 * 60 * 60  # 7 days, in seconds
SIGNED_URL_SALT = "tours.blob"

# --------------------------------------------------------------------------------------
# HTTP Timeouts
# --------------------------------------------------------------------------------------
EXTERNAL_API_TIMEOUT = 10          # Timeout for outbound requests (seconds)
FIRE_AND_FORGET_TIMEOUT = 2        # Connect/read budget for fire-and-forget invocations

# --------------------------------------------------------------------------------------
# Logging
# --------------------------------------------------------------------------------------
LOG_MESSAGE_MAX_LENGTH = 200       # Maximum error messages kept per photo sync job
