from django.urls import path
from . import views
from .views.health import health_check, liveness_check, readiness_check, metrics

app_name = "tours"

urlpatterns = [
    # Health checks (load balancers, monitoring, device connectivity probe)
    path("health/", health_check, name="health"),
    path("health/liveness/", liveness_check, name="liveness"),
    path("health/readiness/", readiness_check, name="readiness"),
    path("health/metrics/", metrics, name="metrics"),

    # Job control
    path("api/jobs/", views.jobs, name="jobs"),
    path("api/photo-sync/", views.photo_sync, name="photo_sync"),

    # Device data
    path("api/tours/<int:tour_id>/bundle/", views.tour_bundle, name="tour_bundle"),
    path("api/photos/", views.photo_upload, name="photo_upload"),
    path("api/blobs/<str:token>/", views.blob_download, name="blob_download"),
]
