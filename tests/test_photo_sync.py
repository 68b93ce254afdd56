"""
Tests for batch photo sync jobs.
"""
from datetime import timedelta

import pytest
from django.core.files.base import ContentFile
from django.core.files.storage import storages
from django.utils import timezone

from tours import photo_sync
from tours.exceptions import RecordNotFound
from tours.models import PanoramaPhoto, PhotoSyncJob, SyncedPhoto

pytestmark = pytest.mark.photo_sync


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr('tours.constants.PHOTO_SYNC_RETRY_DELAY', 0)


@pytest.fixture
def small_tour(make_tour):
    return make_tour(floor_plans=1, photos=3)


def photos_of(tour):
    return list(PanoramaPhoto.objects.filter(hotspot__floor_plan__tour=tour).order_by("id"))


class TestStartJob:
    """Test creating sync jobs."""

    def test_start_creates_a_processing_job(self, small_tour):
        result = photo_sync.start_job(small_tour.id)

        assert result["success"] is True
        assert result["totalPhotos"] == 3
        assert result["alreadySynced"] == 0
        job = PhotoSyncJob.objects.get(pk=result["jobId"])
        assert job.status == PhotoSyncJob.STATUS_PROCESSING
        assert job.tenant_id == small_tour.tenant_id

    def test_tour_without_photos(self, make_tour):
        result = photo_sync.start_job(make_tour(photos=0).id)
        assert result["jobId"] is None
        assert result["totalPhotos"] == 0
        assert result["alreadySynced"] == 0

    def test_everything_already_synced(self, small_tour):
        photo_sync.process_batch_sync(photo_sync.start_job(small_tour.id)["jobId"])

        result = photo_sync.start_job(small_tour.id)
        assert result["jobId"] is None
        assert result["message"] == "All photos already synced"
        assert result["alreadySynced"] == 3

    def test_unknown_tour(self, db):
        with pytest.raises(RecordNotFound):
            photo_sync.start_job(424242)


class TestBatchSync:
    """Test processing a sync job."""

    def test_all_photos_are_copied(self, small_tour):
        job_id = photo_sync.start_job(small_tour.id)["jobId"]

        result = photo_sync.process_batch_sync(job_id)
        job = PhotoSyncJob.objects.get(pk=job_id)

        assert len(result.succeeded) == 3
        assert job.status == PhotoSyncJob.STATUS_COMPLETED
        assert job.processed_items == 3
        assert job.failed_items == 0
        for photo in photos_of(small_tour):
            mapping = SyncedPhoto.objects.get(photo=photo)
            assert mapping.destination_path.startswith(f"{small_tour.tenant_id}/tour_{small_tour.id}/")
            assert storages["backup_destination"].exists(mapping.destination_path)

    def test_one_failure_does_not_stop_the_batch(self, small_tour):
        broken = photos_of(small_tour)[1]
        storages["default"].delete(broken.photo)
        job_id = photo_sync.start_job(small_tour.id)["jobId"]

        result = photo_sync.process_batch_sync(job_id)
        job = PhotoSyncJob.objects.get(pk=job_id)

        assert len(result.succeeded) == 2
        assert job.status == PhotoSyncJob.STATUS_COMPLETED
        assert job.processed_items == 3
        assert job.failed_items == 1
        assert job.error_messages[0]["photoId"] == broken.id

    def test_job_fails_when_every_photo_fails(self, small_tour):
        for photo in photos_of(small_tour):
            storages["default"].delete(photo.photo)
        job_id = photo_sync.start_job(small_tour.id)["jobId"]

        photo_sync.process_batch_sync(job_id)

        assert PhotoSyncJob.objects.get(pk=job_id).status == PhotoSyncJob.STATUS_FAILED

    def test_cancelled_job_stops(self, small_tour):
        job_id = photo_sync.start_job(small_tour.id)["jobId"]
        photo_sync.cancel_job(job_id)

        result = photo_sync.process_batch_sync(job_id)

        assert result.total == 0
        assert PhotoSyncJob.objects.get(pk=job_id).status == PhotoSyncJob.STATUS_CANCELLED
        assert SyncedPhoto.objects.count() == 0

    def test_resume_retries_only_remaining_photos(self, small_tour):
        broken = photos_of(small_tour)[0]
        with storages["default"].open(broken.photo, "rb") as fh:
            content = fh.read()
        storages["default"].delete(broken.photo)
        job_id = photo_sync.start_job(small_tour.id)["jobId"]
        photo_sync.process_batch_sync(job_id)

        storages["default"].save(broken.photo, ContentFile(content))
        resumed = photo_sync.resume_job(job_id)
        assert resumed["remainingPhotos"] == 1

        result = photo_sync.process_batch_sync(job_id)
        job = PhotoSyncJob.objects.get(pk=job_id)

        assert result.succeeded == [broken.id]
        assert job.status == PhotoSyncJob.STATUS_COMPLETED
        assert job.processed_items == 3
        assert job.failed_items == 0

    def test_progress_of_unknown_job(self, db):
        with pytest.raises(RecordNotFound):
            photo_sync.get_progress(987654)


class TestFloorPlanSync:
    """Test copying a tour's floor-plan images."""

    def test_every_floor_plan_is_copied(self, make_tour):
        tour = make_tour(floor_plans=3)

        result = photo_sync.sync_floor_plans(tour.id)

        assert result["success"] is True
        assert (result["synced"], result["failed"], result["total"]) == (3, 0, 3)
        assert result["alreadySynced"] == 0
        for fp in tour.floor_plans.all():
            path = photo_sync.floor_plan_destination_path(fp, tour.tenant_id)
            with storages["backup_destination"].open(path, "rb") as fh:
                assert fh.read() == f"floor-{tour.id}-{fp.order}".encode()

    def test_one_broken_floor_plan_does_not_stop_the_batch(self, make_tour):
        tour = make_tour(floor_plans=3)
        broken = tour.floor_plans.get(order=1)
        storages["default"].delete(broken.image)

        result = photo_sync.sync_floor_plans(tour.id)

        assert (result["synced"], result["failed"], result["total"]) == (2, 1, 3)
        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith("Floor plan Level 1:")
        assert not storages["backup_destination"].exists(
            photo_sync.floor_plan_destination_path(broken, tour.tenant_id)
        )

    def test_second_run_reports_earlier_copies(self, make_tour):
        tour = make_tour(floor_plans=2)
        photo_sync.sync_floor_plans(tour.id)

        result = photo_sync.sync_floor_plans(tour.id)

        assert result["synced"] == 2
        assert result["alreadySynced"] == 2

    def test_floor_plans_without_image_are_ignored(self, make_tour):
        tour = make_tour(floor_plans=1)
        tour.floor_plans.update(image="")

        result = photo_sync.sync_floor_plans(tour.id)

        assert result["total"] == 0
        assert result["message"] == "No floor plans found for this tour"

    def test_unknown_tour(self, db):
        with pytest.raises(RecordNotFound):
            photo_sync.sync_floor_plans(424242)


class TestStalledJobs:
    """Test resuming jobs that stopped making progress."""

    def _stall(self, job_id, resume_count=0):
        PhotoSyncJob.objects.filter(pk=job_id).update(
            updated_at=timezone.now() - timedelta(minutes=6),
            resume_count=resume_count,
        )

    def test_stalled_job_is_resumed(self, small_tour):
        job_id = photo_sync.start_job(small_tour.id)["jobId"]
        self._stall(job_id)

        assert photo_sync.resume_stalled_sync_jobs() == {"resumed": 1, "failed": 0}
        assert PhotoSyncJob.objects.get(pk=job_id).resume_count == 1

    def test_job_resumed_too_often_fails(self, small_tour):
        job_id = photo_sync.start_job(small_tour.id)["jobId"]
        self._stall(job_id, resume_count=3)

        assert photo_sync.resume_stalled_sync_jobs() == {"resumed": 0, "failed": 1}
        job = PhotoSyncJob.objects.get(pk=job_id)
        assert job.status == PhotoSyncJob.STATUS_FAILED
        assert "Stalled" in job.error_messages[-1]["error"]

    def test_active_job_is_left_alone(self, small_tour):
        photo_sync.start_job(small_tour.id)
        assert photo_sync.resume_stalled_sync_jobs() == {"resumed": 0, "failed": 0}
