import uuid

from django.db import models
from django.db.models import CheckConstraint, F, Q


# === TOUR CACHE (database adapter) ===

class CachedTour(models.Model):
    """One offline tour bundle stored by the database adapter."""
    tour_id = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    tour_data = models.JSONField(default=dict)
    floor_plans = models.JSONField(default=list)
    hotspots = models.JSONField(default=list)
    photos = models.JSONField(default=list)
    size = models.BigIntegerField(default=0, help_text="Serialized metadata plus image bytes")
    cached_at = models.DateTimeField()
    expires_at = models.DateTimeField()

    class Meta:
        ordering = ["cached_at", "id"]
        constraints = [
            CheckConstraint(condition=Q(expires_at__gt=F("cached_at")), name="cachedtour_expires_after_cached"),
        ]

    def __str__(self):
        return f"{self.name} ({self.tour_id})"


class CachedTourImage(models.Model):
    cached_tour = models.ForeignKey(CachedTour, on_delete=models.CASCADE, related_name="images")
    floor_plan_id = models.CharField(max_length=64)
    content = models.BinaryField()
    size = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["cached_tour", "floor_plan_id"], name="unique_cached_floor_plan_image"),
        ]

    def __str__(self):
        return f"Image of floor plan {self.floor_plan_id} ({self.size} bytes)"


# === PENDING UPLOADS ===

class PendingPhoto(models.Model):
    """
    A photo captured on this device that the backend has not confirmed yet.

    Drained in capture order (created_at, then id).
    """
    STATUS_PENDING = "pending"
    STATUS_SYNCING = "syncing"
    STATUS_SYNCED = "synced"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_SYNCING, "Syncing"),
        (STATUS_SYNCED, "Synced"),
        (STATUS_FAILED, "Failed"),
    ]

    local_id = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    hotspot_id = models.CharField(max_length=64)
    tour_id = models.CharField(max_length=64)
    tenant_id = models.CharField(max_length=64)
    payload = models.BinaryField()
    capture_date = models.DateTimeField()
    filename = models.CharField(max_length=255)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    error_message = models.TextField(blank=True)
    attempts = models.PositiveSmallIntegerField(default=0)
    remote_id = models.CharField(max_length=64, blank=True, help_text="Photo id assigned by the backend")
    created_at = models.DateTimeField(auto_now_add=True)
    synced_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="pendingphoto_status_idx"),
        ]

    def __str__(self):
        return f"{self.filename} [{self.status}]"
