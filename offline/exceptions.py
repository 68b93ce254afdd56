"""
Exceptions raised by the offline cache, the adapters and the sync client.
"""


class OfflineError(Exception):
    """Base class for device-side failures."""


class CapacityExceeded(OfflineError):
    """The cache already holds the maximum number of live tours; free one first."""


class StorageLimitExceeded(CapacityExceeded):
    """Saving the tour would go over the storage budget of the adapter."""


class TourFetchError(OfflineError):
    """The tour or one of its images could not be fetched from the backend."""


class UploadError(OfflineError):
    """A pending photo could not be uploaded."""


class AdapterUnavailable(OfflineError):
    """The requested storage adapter cannot be used on this device."""
