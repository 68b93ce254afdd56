"""
Pytest configuration and fixtures for TourKeep tests.
"""
import pytest
from django.contrib.auth import get_user_model
from django.core.files.base import ContentFile
from django.core.files.storage import storages

from tours.models import FloorPlan, Hotspot, PanoramaPhoto, Tour

User = get_user_model()


@pytest.fixture(autouse=True)
def isolated_storage(settings, tmp_path):
    """Point every blob store and the offline directory at a temporary folder."""
    media = tmp_path / "media"
    media.mkdir()
    settings.MEDIA_ROOT = media
    settings.STORAGES = {
        "default": {
            "BACKEND": "django.core.files.storage.FileSystemStorage",
            "OPTIONS": {"location": media / "tour-images"},
        },
        "backups": {
            "BACKEND": "django.core.files.storage.FileSystemStorage",
            "OPTIONS": {"location": media / "backups"},
        },
        "backup_destination": {
            "BACKEND": "django.core.files.storage.FileSystemStorage",
            "OPTIONS": {"location": media / "destination"},
        },
        "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
    }
    settings.OFFLINE_STORAGE_DIR = tmp_path / "offline"
    settings.OFFLINE_NATIVE_SHELL = False
    settings.TOURKEEP_JOB_INVOKER = "tours.invoker.QueueOnlyJobInvoker"
    settings.TOURKEEP_JOB_TOKEN = ""
    settings.TOURKEEP_ITEMS_PER_PART = 10
    return media


@pytest.fixture
def user(db):
    """Create a test user."""
    return User.objects.create_user(
        username='testuser',
        email='test@example.com',
        password='testpass123'
    )


@pytest.fixture
def make_tour(user):
    """
    Build a tour whose images exist in the tour image storage.

    ``floor_plans`` floor plans get one image and one hotspot each; the
    ``photos`` panoramas are spread over those hotspots in turn. The number
    of images of the tour is ``floor_plans + photos``.
    """
    def _make(title='Harbour View Apartment', floor_plans=1, photos=0, tenant_id='tenant-a'):
        store = storages["default"]
        tour = Tour.objects.create(owner=user, tenant_id=tenant_id, title=title, description='Two bedrooms')

        hotspots = []
        for i in range(floor_plans):
            image = f'{tenant_id}/tour_{tour.id}/floor_{i}.png'
            store.save(image, ContentFile(f"floor-{tour.id}-{i}".encode()))
            fp = FloorPlan.objects.create(tour=tour, name=f'Level {i}', image=image, order=i)
            hotspots.append(Hotspot.objects.create(floor_plan=fp, title=f'Room {i}', x_position=0.1 * i, y_position=0.5))

        for i in range(photos):
            hotspot = hotspots[i % len(hotspots)]
            path = f'{tenant_id}/tour_{tour.id}/hotspot_{hotspot.id}/pano_{i}.jpg'
            store.save(path, ContentFile(f"pano-{tour.id}-{i}".encode()))
            PanoramaPhoto.objects.create(hotspot=hotspot, photo=path, original_filename=f'pano_{i}.jpg')
        return tour

    return _make


@pytest.fixture
def tour(make_tour):
    """A tour with 25 images: one floor plan and 24 panoramas."""
    return make_tour(floor_plans=1, photos=24)
