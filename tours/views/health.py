"""
Liveness, readiness and metrics endpoints for the server and the backup queue.

Provides:
- Basic liveness check (also used by devices as their connectivity probe)
- Database, cache and disk checks
- Backup pipeline metrics
"""

import logging
import shutil
import time
from typing import Any

from django.conf import settings
from django.core.cache import cache
from django.db import connection
from django.db.models import Count
from django.http import HttpRequest, JsonResponse
from django.utils import timezone
from django.views.decorators.cache import never_cache
from django.views.decorators.http import require_GET

from ..models import BackupJob, BackupQueueItem, PhotoSyncJob

logger = logging.getLogger(__name__)


@require_GET
@never_cache
def health_check(request: HttpRequest) -> JsonResponse:
    """
    Database, cache and disk checks in one response.

    Returns:
        200 OK if all checks pass
        503 Service Unavailable if any check fails
    """
    checks = {
        "database": check_database(),
        "cache": check_cache(),
        "disk": check_disk_space(),
    }
    all_healthy = all(check["status"] == "ok" for check in checks.values())

    return JsonResponse({
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": timezone.now().isoformat(),
        "checks": checks,
        "version": getattr(settings, "VERSION", "1.0.0"),
    }, status=200 if all_healthy else 503)


@require_GET
@never_cache
def liveness_check(request: HttpRequest) -> JsonResponse:
    """
    Lightweight check that only verifies the application is running.

    Returns:
        200 OK with {"status": "alive"}
    """
    return JsonResponse({
        "status": "alive",
        "timestamp": timezone.now().isoformat(),
    })


@require_GET
@never_cache
def readiness_check(request: HttpRequest) -> JsonResponse:
    """Ready to receive traffic once the database answers."""
    result = check_database()
    if result["status"] == "ok":
        return JsonResponse({"status": "ready", "timestamp": timezone.now().isoformat()})
    return JsonResponse({
        "status": "not_ready",
        "timestamp": timezone.now().isoformat(),
        "reason": "database_unavailable",
    }, status=503)


def check_database() -> dict[str, Any]:
    """
    Run a trivial query and time it.

    Returns:
        {"status", "latency_ms"} plus "error" when the query failed
    """
    start_time = time.time()
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "error", "error": str(e)}

    latency_ms = (time.time() - start_time) * 1000
    if latency_ms > 100:
        logger.warning(f"Database latency is high: {latency_ms:.2f}ms")
    return {"status": "ok", "latency_ms": round(latency_ms, 2)}


def check_cache() -> dict[str, Any]:
    test_key = "health_check_test"
    try:
        cache.set(test_key, "ok", timeout=10)
        if cache.get(test_key) != "ok":
            return {"status": "error", "error": "Cache set/get mismatch"}
        cache.delete(test_key)
    except Exception as e:
        logger.warning(f"Cache health check failed: {e}")
        return {"status": "degraded", "error": str(e)}
    return {"status": "ok"}


def check_disk_space(threshold_percent: int = 90) -> dict[str, Any]:
    """
    Check available disk space where blobs and archives are written.

    Args:
        threshold_percent: usage at which the check reports a warning
    """
    try:
        stat = shutil.disk_usage(settings.MEDIA_ROOT)
    except OSError as e:
        logger.error(f"Disk space check failed: {e}")
        return {"status": "error", "error": str(e)}

    usage_percent = (stat.used / stat.total) * 100
    status = "ok"
    if usage_percent >= threshold_percent:
        status = "warning"
        logger.warning(f"Disk usage is high: {usage_percent:.1f}%")
    return {
        "status": status,
        "free_gb": round(stat.free / (1024 ** 3), 2),
        "usage_percent": round(usage_percent, 1),
    }


@require_GET
@never_cache
def metrics(request: HttpRequest) -> JsonResponse:
    """
    Backup pipeline counters for monitoring systems.

    Returns:
        {"backup_jobs": {status: n}, "queue": {status: n}, "photo_sync_jobs": {status: n}, ...}
    """
    def by_status(queryset) -> dict[str, int]:
        return {row["status"]: row["n"] for row in queryset.values("status").annotate(n=Count("id")).order_by()}

    return JsonResponse({
        "backup_jobs": by_status(BackupJob.objects.all()),
        "queue": by_status(BackupQueueItem.objects.all()),
        "photo_sync_jobs": by_status(PhotoSyncJob.objects.all()),
        "timestamp": timezone.now().isoformat(),
    })
