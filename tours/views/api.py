"""
Data endpoints used by devices.

- tour bundle: everything a device needs to cache a tour for offline use
- photo upload: receives photos captured offline
- blob download: serves objects behind signed, time-limited URLs
"""

import logging
import uuid

from django.core import signing
from django.http import FileResponse, HttpRequest, JsonResponse
from django.utils.dateparse import parse_date, parse_datetime
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from ..models import FloorPlan, Hotspot, PanoramaPhoto, Tour
from ..storage import resolve_signed_token, tour_images
from ..utils import safe_filename, sanitize_text, to_int
from .helpers import json_err, json_ok

logger = logging.getLogger(__name__)


@require_GET
def tour_bundle(request: HttpRequest, tour_id: int) -> JsonResponse:
    """
    Tour, floor plans and hotspots, with a signed URL per floor-plan image.

    Returns:
        {"ok": true, "tour": {...}, "floor_plans": [...], "hotspots": [...]}
    """
    try:
        tour = Tour.objects.get(pk=tour_id)
    except Tour.DoesNotExist:
        return json_err("Tour not found", status=404)

    store = tour_images()
    floor_plans = []
    for fp in FloorPlan.objects.filter(tour=tour).order_by("order", "id"):
        data = fp.to_dict()
        data["image_url"] = request.build_absolute_uri(store.sign_url(fp.image)) if fp.image else None
        floor_plans.append(data)

    hotspots = [h.to_dict() for h in Hotspot.objects.filter(floor_plan__tour=tour).order_by("id")]
    return json_ok(tour=tour.to_dict(), floor_plans=floor_plans, hotspots=hotspots)


@csrf_exempt
@require_POST
def photo_upload(request: HttpRequest) -> JsonResponse:
    """
    Store a panorama photo captured on a device.

    Multipart form: ``photo`` file plus hotspot_id, tour_id, tenant_id,
    filename and capture_date.
    """
    upload = request.FILES.get("photo")
    if upload is None:
        return json_err("photo file is required")

    hotspot_id = to_int(request.POST.get("hotspot_id"), 0)
    tour_id = to_int(request.POST.get("tour_id"), 0)
    try:
        hotspot = Hotspot.objects.select_related("floor_plan").get(pk=hotspot_id)
    except Hotspot.DoesNotExist:
        return json_err("Hotspot not found", status=404)
    if tour_id and hotspot.floor_plan.tour_id != tour_id:
        return json_err("Hotspot does not belong to this tour")

    filename = sanitize_text(request.POST.get("filename") or upload.name or "photo.jpg")
    stem, _, ext = filename.rpartition(".")
    ext = safe_filename(ext.lower(), "jpg") if stem else "jpg"
    tenant = safe_filename(request.POST.get("tenant_id") or hotspot.floor_plan.tour.tenant_id, "tenant")
    path = f"{tenant}/tour_{hotspot.floor_plan.tour_id}/hotspot_{hotspot.id}/{uuid.uuid4().hex}.{ext}"

    path = tour_images().upload(path, upload.read(), overwrite=False)

    capture_value = request.POST.get("capture_date") or ""
    captured = parse_datetime(capture_value)
    capture_date = captured.date() if captured else parse_date(capture_value)

    photo = PanoramaPhoto.objects.create(
        hotspot=hotspot,
        photo=path,
        original_filename=filename,
        capture_date=capture_date,
    )
    logger.info(f"Stored uploaded photo {photo.id} for hotspot {hotspot.id}")
    return json_ok(success=True, photoId=photo.id, path=path)


@require_GET
def blob_download(request: HttpRequest, token: str):
    """Serve the object behind a signed token, or 404/410."""
    try:
        store, path = resolve_signed_token(token)
    except signing.SignatureExpired:
        return json_err("Download link expired", status=410)
    except (signing.BadSignature, KeyError):
        return json_err("Invalid download link", status=404)

    if not store.exists(path):
        return json_err("File not found", status=404)

    return FileResponse(store.storage.open(path, "rb"), as_attachment=True, filename=path.rsplit("/", 1)[-1])
