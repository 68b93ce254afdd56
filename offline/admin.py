from django.contrib import admin
from .models import CachedTour, CachedTourImage, PendingPhoto


class CachedTourImageInline(admin.TabularInline):
    model = CachedTourImage
    extra = 0
    fields = ("floor_plan_id", "size")
    readonly_fields = ("floor_plan_id", "size")


@admin.register(CachedTour)
class CachedTourAdmin(admin.ModelAdmin):
    list_display = ("tour_id", "name", "size", "cached_at", "expires_at")
    search_fields = ("tour_id", "name")
    exclude = ("tour_data", "floor_plans", "hotspots", "photos")
    inlines = [CachedTourImageInline]


@admin.register(PendingPhoto)
class PendingPhotoAdmin(admin.ModelAdmin):
    list_display = ("filename", "hotspot_id", "tour_id", "status", "attempts", "created_at", "synced_at")
    list_filter = ("status",)
    search_fields = ("filename", "hotspot_id", "tour_id")
    exclude = ("payload",)
    readonly_fields = ("local_id", "created_at", "synced_at")
