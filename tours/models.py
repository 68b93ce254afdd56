from django.conf import settings
from django.db import models
from django.db.models import Q, CheckConstraint
from django.utils import timezone

from .continuation import ContinuationState


# === TOUR GRAPH ===

class Tour(models.Model):
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="tours")
    tenant_id = models.CharField(max_length=64, db_index=True)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    is_published = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-updated_at"]
        indexes = [
            models.Index(fields=["owner", "-updated_at"], name="tour_owner_updated_idx"),
        ]

    def __str__(self):
        return self.title

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "description": self.description,
            "is_published": self.is_published,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class FloorPlan(models.Model):
    tour = models.ForeignKey(Tour, on_delete=models.CASCADE, related_name="floor_plans")
    name = models.CharField(max_length=255)
    image = models.CharField(max_length=500, blank=True, help_text="Path of the image in the default storage")
    order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["order", "id"]

    def __str__(self):
        return f"{self.tour_id}: {self.name}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tour_id": self.tour_id,
            "name": self.name,
            "image": self.image,
            "order": self.order,
        }


class Hotspot(models.Model):
    floor_plan = models.ForeignKey(FloorPlan, on_delete=models.CASCADE, related_name="hotspots")
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    x_position = models.FloatField(default=0)
    y_position = models.FloatField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return self.title

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "floor_plan_id": self.floor_plan_id,
            "title": self.title,
            "description": self.description,
            "x_position": self.x_position,
            "y_position": self.y_position,
        }


class PanoramaPhoto(models.Model):
    hotspot = models.ForeignKey(Hotspot, on_delete=models.CASCADE, related_name="panorama_photos")
    photo = models.CharField(max_length=500, help_text="Path of the photo in the default storage")
    original_filename = models.CharField(max_length=255, blank=True)
    capture_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"Photo {self.id} ({self.original_filename or self.photo})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "hotspot_id": self.hotspot_id,
            "photo": self.photo,
            "original_filename": self.original_filename,
            "capture_date": self.capture_date.isoformat() if self.capture_date else None,
        }


# === BACKUP SYSTEM ===

class BackupJob(models.Model):
    """
    One logical backup request for a tour.

    A job stays in ``processing`` across many worker invocations; the
    continuation state in ``metadata`` says which part runs next.
    """
    TYPE_FULL = "full"
    TYPE_MEDIA_ONLY = "media_only"
    TYPE_STRUCTURE_ONLY = "structure_only"
    JOB_TYPE_CHOICES = [
        (TYPE_FULL, "Full backup"),
        (TYPE_MEDIA_ONLY, "Media only"),
        (TYPE_STRUCTURE_ONLY, "Structure only"),
    ]

    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CANCELLED = "cancelled"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED)

    tour = models.ForeignKey(Tour, on_delete=models.SET_NULL, null=True, blank=True, related_name="backup_jobs")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="backup_jobs")
    job_type = models.CharField(max_length=20, choices=JOB_TYPE_CHOICES, default=TYPE_FULL)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    total_items = models.PositiveIntegerField(default=0)
    processed_items = models.PositiveIntegerField(default=0)
    progress_percentage = models.PositiveSmallIntegerField(default=0)
    file_size = models.BigIntegerField(default=0, help_text="Sum of all part sizes in bytes")
    storage_path = models.CharField(max_length=500, blank=True, help_text="Folder holding the part archives")
    error_message = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    cancel_requested = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "-created_at"], name="backupjob_status_created_idx"),
            models.Index(fields=["user", "-created_at"], name="backupjob_user_created_idx"),
        ]
        constraints = [
            CheckConstraint(
                condition=Q(progress_percentage__lte=100),
                name="backupjob_progress_lte_100",
            ),
        ]

    def __str__(self):
        return f"Backup {self.id} ({self.job_type}) - {self.status}"

    @property
    def is_finished(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def continuation(self) -> ContinuationState | None:
        """Continuation state of a started multipart run, or None before the first part."""
        return ContinuationState.from_metadata(self.metadata)

    def store_continuation(self, state: ContinuationState) -> None:
        metadata = dict(self.metadata or {})
        metadata.update(state.to_metadata())
        self.metadata = metadata

    def record_progress(self, processed_items: int, progress_percentage: int) -> None:
        """Apply new counters without ever moving them backwards."""
        self.processed_items = max(self.processed_items, processed_items)
        self.progress_percentage = max(self.progress_percentage, min(progress_percentage, 100))


class BackupQueueItem(models.Model):
    """Schedulable wrapper around a BackupJob."""
    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_RETRY = "retry"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CANCELLED = "cancelled"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_RETRY, "Retry"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]
    RUNNABLE_STATUSES = (STATUS_PENDING, STATUS_RETRY)

    backup_job = models.OneToOneField(BackupJob, on_delete=models.CASCADE, related_name="queue_item")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    attempts = models.PositiveSmallIntegerField(default=0)
    max_attempts = models.PositiveSmallIntegerField(default=3)
    priority = models.SmallIntegerField(default=0, help_text="Higher runs first")
    scheduled_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-priority", "scheduled_at"]
        indexes = [
            models.Index(fields=["status", "scheduled_at"], name="backupqueue_status_sched_idx"),
        ]
        constraints = [
            CheckConstraint(
                condition=Q(attempts__lte=models.F("max_attempts")),
                name="backupqueue_attempts_lte_max",
            ),
        ]

    def __str__(self):
        return f"Queue item {self.id} for job {self.backup_job_id} [{self.status}]"

    @property
    def is_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


class BackupPart(models.Model):
    """One uploaded archive of a multipart backup."""
    backup_job = models.ForeignKey(BackupJob, on_delete=models.CASCADE, related_name="parts")
    part_number = models.PositiveIntegerField()
    storage_path = models.CharField(max_length=500)
    file_hash = models.CharField(max_length=64)
    file_size = models.BigIntegerField()
    items_count = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, default="completed")
    completed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["backup_job", "part_number"]
        constraints = [
            models.UniqueConstraint(fields=["backup_job", "part_number"], name="unique_job_part_number"),
            CheckConstraint(condition=Q(part_number__gte=1), name="backuppart_number_gte_1"),
        ]

    def __str__(self):
        return f"Part {self.part_number} of job {self.backup_job_id}"


class BackupLog(models.Model):
    """Event log of a backup job (started, part uploaded, retried, failed...)."""
    backup_job = models.ForeignKey(BackupJob, on_delete=models.CASCADE, related_name="logs")
    event_type = models.CharField(max_length=40)
    message = models.CharField(max_length=255)
    details = models.JSONField(default=dict, blank=True)
    is_error = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"[{self.event_type}] job {self.backup_job_id}: {self.message}"


class TourBackupConfig(models.Model):
    """Per-tour automatic backup settings used by the scheduler."""
    FREQUENCY_CHOICES = [
        ("immediate", "Immediate"),
        ("daily", "Daily"),
        ("weekly", "Weekly"),
    ]

    tour = models.OneToOneField(Tour, on_delete=models.CASCADE, related_name="backup_config")
    auto_backup_enabled = models.BooleanField(default=False)
    backup_type = models.CharField(max_length=20, choices=BackupJob.JOB_TYPE_CHOICES, default=BackupJob.TYPE_FULL)
    backup_frequency = models.CharField(max_length=20, choices=FREQUENCY_CHOICES, default="daily")
    last_auto_backup_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"Backup config for tour {self.tour_id} ({self.backup_frequency})"


# === PHOTO SYNC ===

class PhotoSyncJob(models.Model):
    """Batch copy of a tour's panorama photos to the backup destination."""
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CANCELLED = "cancelled"
    STATUS_CHOICES = [
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    tenant_id = models.CharField(max_length=64, db_index=True)
    tour = models.ForeignKey(Tour, on_delete=models.CASCADE, related_name="photo_sync_jobs")
    job_type = models.CharField(max_length=40, default="photo_batch_sync")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PROCESSING)
    total_items = models.PositiveIntegerField(default=0)
    processed_items = models.PositiveIntegerField(default=0)
    failed_items = models.PositiveIntegerField(default=0)
    error_messages = models.JSONField(default=list, blank=True)
    resume_count = models.PositiveSmallIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Photo sync {self.id} for tour {self.tour_id} [{self.status}]"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tour_id": self.tour_id,
            "tenant_id": self.tenant_id,
            "job_type": self.job_type,
            "status": self.status,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "failed_items": self.failed_items,
            "error_messages": self.error_messages,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class SyncedPhoto(models.Model):
    """Marks a panorama photo as already copied to the backup destination."""
    photo = models.OneToOneField(PanoramaPhoto, on_delete=models.CASCADE, related_name="sync_mapping")
    destination_path = models.CharField(max_length=500)
    synced_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Photo {self.photo_id} -> {self.destination_path}"
