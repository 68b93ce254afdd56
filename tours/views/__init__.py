"""
Views package for the tours application.

- jobs: job-control and photo-sync action endpoints
- api: tour bundles, photo uploads and signed blob downloads for devices
- health: liveness, readiness and pipeline metrics
- helpers: JSON response helpers and the job token check
"""

from .jobs import (
    jobs,
    photo_sync,
)

from .api import (
    tour_bundle,
    photo_upload,
    blob_download,
)

from .health import (
    health_check,
    liveness_check,
    readiness_check,
    metrics,
)

from .errors import (
    error_404,
    error_500,
)
