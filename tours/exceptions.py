"""
Exceptions raised by the backup pipeline.

The retry manager uses the class of an exception to decide between a backoff
retry and an immediate permanent failure.
"""


class BackupError(Exception):
    """Base class for recoverable backup failures."""


class PermanentBackupError(BackupError):
    """Malformed input or missing records; retrying cannot help."""


class BlobNotFound(BackupError):
    """A blob could not be read from the object store."""


class JobCancelled(BackupError):
    """The job was cancelled before its next chunk started."""


class RecordNotFound(PermanentBackupError):
    """A job, tour or photo referenced by a request does not exist."""
