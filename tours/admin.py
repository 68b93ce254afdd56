from django.contrib import admin
from auditlog.registry import auditlog
from .models import Tour, FloorPlan, Hotspot, PanoramaPhoto
from .models import BackupJob, BackupQueueItem, BackupPart, BackupLog, TourBackupConfig
from .models import PhotoSyncJob, SyncedPhoto

# Audit trail for every change to job state made outside the pipeline
auditlog.register(BackupJob, exclude_fields=["metadata"])
auditlog.register(BackupQueueItem)
auditlog.register(BackupPart)
auditlog.register(TourBackupConfig)
auditlog.register(PhotoSyncJob, exclude_fields=["updated_at", "error_messages"])


@admin.register(Tour)
class TourAdmin(admin.ModelAdmin):
    list_display = ("title", "owner", "tenant_id", "is_published", "updated_at")
    list_filter = ("is_published", "created_at")
    search_fields = ("title", "tenant_id", "owner__username")


@admin.register(FloorPlan)
class FloorPlanAdmin(admin.ModelAdmin):
    list_display = ("name", "tour", "order", "image")
    list_select_related = ("tour",)
    search_fields = ("name", "tour__title")


@admin.register(Hotspot)
class HotspotAdmin(admin.ModelAdmin):
    list_display = ("title", "floor_plan", "x_position", "y_position")
    list_select_related = ("floor_plan",)
    search_fields = ("title",)


@admin.register(PanoramaPhoto)
class PanoramaPhotoAdmin(admin.ModelAdmin):
    list_display = ("id", "hotspot", "original_filename", "capture_date")
    search_fields = ("original_filename", "photo")


class BackupPartInline(admin.TabularInline):
    model = BackupPart
    extra = 0
    readonly_fields = ("part_number", "storage_path", "file_hash", "file_size", "items_count", "status", "completed_at")


@admin.register(BackupJob)
class BackupJobAdmin(admin.ModelAdmin):
    list_display = ("id", "tour", "user", "job_type", "status", "progress_percentage", "file_size", "created_at")
    list_filter = ("status", "job_type", "created_at")
    search_fields = ("tour__title", "user__username", "error_message")
    readonly_fields = ("metadata", "created_at", "started_at", "completed_at")
    inlines = [BackupPartInline]


@admin.register(BackupQueueItem)
class BackupQueueItemAdmin(admin.ModelAdmin):
    list_display = ("backup_job", "status", "attempts", "max_attempts", "priority", "scheduled_at", "started_at")
    list_filter = ("status",)


@admin.register(BackupLog)
class BackupLogAdmin(admin.ModelAdmin):
    list_display = ("backup_job", "event_type", "message", "is_error", "created_at")
    list_filter = ("event_type", "is_error")
    readonly_fields = ("backup_job", "event_type", "message", "details", "is_error", "created_at")


@admin.register(TourBackupConfig)
class TourBackupConfigAdmin(admin.ModelAdmin):
    list_display = ("tour", "auto_backup_enabled", "backup_type", "backup_frequency", "last_auto_backup_at")
    list_filter = ("auto_backup_enabled", "backup_frequency")


@admin.register(PhotoSyncJob)
class PhotoSyncJobAdmin(admin.ModelAdmin):
    list_display = ("id", "tour", "status", "total_items", "processed_items", "failed_items", "resume_count", "updated_at")
    list_filter = ("status",)


@admin.register(SyncedPhoto)
class SyncedPhotoAdmin(admin.ModelAdmin):
    list_display = ("photo", "destination_path", "synced_at")
