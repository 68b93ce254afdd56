"""
Tests for the chunked backup worker.
"""
import io
import json
import zipfile

import pytest
from django.core.files.storage import storages

from tours.backup_queue import claim_queue_item, enqueue_backup, request_cancel
from tours.backup_worker import (
    continue_job,
    flat_image_list,
    load_tour_graph,
    process_backup_queue,
    process_single_job,
    run_backup_step,
    run_job_to_completion,
)
from tours.continuation import ContinuationState
from tours.exceptions import PermanentBackupError, RecordNotFound
from tours.models import BackupJob, BackupPart, BackupQueueItem
from tours.storage import BlobStore

pytestmark = pytest.mark.backup


def read_part(part):
    with storages["backups"].open(part.storage_path, "rb") as fh:
        return zipfile.ZipFile(io.BytesIO(fh.read()))


class TestContinuationState:
    """Test the persisted continuation state."""

    def test_start_splits_images_into_parts(self):
        state = ContinuationState.start(25, 10)
        assert (state.current_part, state.total_parts, state.items_per_part) == (1, 3, 10)

    def test_job_without_images_still_has_one_part(self):
        assert ContinuationState.start(0, 10).total_parts == 1

    def test_slice_bounds_and_advance(self):
        state = ContinuationState.start(25, 10).advance().advance()
        assert state.slice_bounds() == (20, 30)
        assert state.is_last_part

    def test_partial_metadata_is_rejected(self):
        with pytest.raises(PermanentBackupError):
            ContinuationState.from_metadata({"current_part": 2})

    def test_never_started_job_has_no_state(self):
        assert ContinuationState.from_metadata({}) is None


class TestImageList:
    """Test the deterministic flat image list."""

    def test_floor_plans_come_first(self, make_tour):
        tour = make_tour(floor_plans=2, photos=3)
        images = flat_image_list(load_tour_graph(tour.id), BackupJob.TYPE_FULL)

        assert [i.kind for i in images] == ["floor_plan", "floor_plan", "panorama", "panorama", "panorama"]
        assert images == flat_image_list(load_tour_graph(tour.id), BackupJob.TYPE_FULL)

    def test_structure_only_has_no_images(self, tour):
        assert flat_image_list(load_tour_graph(tour.id), BackupJob.TYPE_STRUCTURE_ONLY) == []


class TestChunkedBackup:
    """Test part-by-part processing of a backup job."""

    def test_three_parts_with_monotonic_progress(self, tour):
        """25 images at 10 per part: progress goes 33, 67, 100."""
        job = enqueue_backup(tour)

        progress = []
        for _ in range(3):
            run_backup_step(job)
            job.refresh_from_db()
            progress.append(job.progress_percentage)

        assert progress == [33, 67, 100]
        assert job.status == BackupJob.STATUS_COMPLETED
        assert job.total_items == 25
        assert job.processed_items == 25

        parts = list(job.parts.order_by("part_number"))
        assert [p.part_number for p in parts] == [1, 2, 3]
        assert [p.items_count for p in parts] == [10, 10, 5]
        assert job.file_size == sum(p.file_size for p in parts)
        assert job.queue_item.status == BackupQueueItem.STATUS_COMPLETED

    def test_part_paths_are_deterministic(self, tour):
        job = enqueue_backup(tour)
        run_job_to_completion(job.id)

        paths = [p.storage_path for p in job.parts.order_by("part_number")]
        assert len(set(paths)) == 3
        for number, path in enumerate(paths, start=1):
            assert path.startswith(f"{tour.owner_id}/{job.id}/Harbour_View_Apartment_part{number}_")
            assert path.endswith(".zip")

    def test_first_part_carries_structure_and_manifest(self, tour):
        job = enqueue_backup(tour)
        run_job_to_completion(job.id)

        first, second = job.parts.order_by("part_number")[:2]
        with read_part(first) as zf:
            names = zf.namelist()
            structure = json.loads(zf.read("tour.json"))
            manifest = json.loads(zf.read("backup_manifest.json"))
        assert structure["tour"]["title"] == tour.title
        assert len(structure["panorama_photos"]) == 24
        assert manifest["part"] == {"number": 1, "total_parts": 3, "items_per_part": 10}
        assert len(manifest["items"]) == 10
        assert all(item["path"] in names for item in manifest["items"])

        with read_part(second) as zf:
            assert "tour.json" not in zf.namelist()

    def test_retried_part_overwrites_instead_of_duplicating(self, tour):
        """A crash after upload but before the checkpoint reruns the same part."""
        job = enqueue_backup(tour)
        run_backup_step(job)
        job.refresh_from_db()
        first_path = job.parts.get(part_number=1).storage_path

        # Roll the checkpoint back to part 1.
        metadata = dict(job.metadata)
        metadata["current_part"] = 1
        BackupJob.objects.filter(pk=job.pk).update(metadata=metadata)

        run_backup_step(job)
        job.refresh_from_db()

        assert BackupPart.objects.filter(backup_job=job).count() == 1
        assert job.parts.get(part_number=1).storage_path == first_path
        _, files = storages["backups"].listdir(f"{tour.owner_id}/{job.id}")
        assert len(files) == 1
        assert job.progress_percentage == 33
        assert job.continuation.current_part == 2

    def test_missing_image_is_skipped(self, tour):
        first_photo = tour.floor_plans.first().hotspots.first().panorama_photos.order_by("id").first()
        storages["default"].delete(first_photo.photo)

        job = enqueue_backup(tour)
        result = run_job_to_completion(job.id)
        job.refresh_from_db()

        assert result["success"] is True
        assert job.status == BackupJob.STATUS_COMPLETED
        assert sum(p.items_count for p in job.parts.all()) == 24
        with read_part(job.parts.get(part_number=1)) as zf:
            manifest = json.loads(zf.read("backup_manifest.json"))
        assert manifest["skipped"][0]["id"] == first_photo.id

    def test_part_records_the_name_the_storage_chose(self, tour, mocker):
        store = mocker.Mock()
        store.upload.return_value = "renamed/part1_x7Qz.zip"
        mocker.patch('tours.backup_worker.backup_archives', return_value=store)

        job = enqueue_backup(tour)
        run_backup_step(job)

        assert job.parts.get(part_number=1).storage_path == "renamed/part1_x7Qz.zip"

    def test_structure_only_backup(self, tour):
        job = enqueue_backup(tour, job_type=BackupJob.TYPE_STRUCTURE_ONLY)
        run_job_to_completion(job.id)
        job.refresh_from_db()

        assert job.parts.count() == 1
        assert job.progress_percentage == 100
        with read_part(job.parts.get()) as zf:
            assert sorted(zf.namelist()) == ["backup_manifest.json", "tour.json"]

    def test_media_only_backup_has_no_structure(self, tour):
        job = enqueue_backup(tour, job_type=BackupJob.TYPE_MEDIA_ONLY)
        run_job_to_completion(job.id)

        with read_part(job.parts.get(part_number=1)) as zf:
            assert "tour.json" not in zf.namelist()

    def test_completed_job_is_not_processed_again(self, tour):
        job = enqueue_backup(tour)
        run_job_to_completion(job.id)

        result = run_backup_step(job)
        assert result.in_progress is False
        assert result.parts_count == 3
        assert job.logs.filter(event_type="part_uploaded").count() == 3


class TestBlobStore:
    """Test the storage wrapper used for archives and images."""

    def test_upload_returns_the_stored_name(self):
        store = BlobStore("backups")

        first = store.upload("7/1/house_part1.zip", b"one", overwrite=False)
        second = store.upload("7/1/house_part1.zip", b"two", overwrite=False)

        assert first == "7/1/house_part1.zip"
        assert second != first
        assert store.download(second) == b"two"

    def test_overwrite_keeps_the_name(self):
        store = BlobStore("backups")
        store.upload("7/1/house_part1.zip", b"one")

        assert store.upload("7/1/house_part1.zip", b"two") == "7/1/house_part1.zip"
        assert store.download("7/1/house_part1.zip") == b"two"


class TestEntryPoints:
    """Test process_job, continue and the queue drain."""

    def test_process_job_runs_one_part_and_requeues(self, tour):
        job = enqueue_backup(tour)
        response = process_single_job(job.id)

        assert response["inProgress"] is True
        assert response["currentPart"] == 1
        item = BackupQueueItem.objects.get(backup_job=job)
        assert item.status == BackupQueueItem.STATUS_PENDING
        assert item.attempts == 0

    def test_queue_drain_finishes_a_job(self, tour):
        job = enqueue_backup(tour)
        for _ in range(3):
            result = process_backup_queue(max_jobs=1)
            assert result["processed"] == 1

        job.refresh_from_db()
        assert job.status == BackupJob.STATUS_COMPLETED
        assert process_backup_queue()["details"] == []

    def test_inline_continuations_complete_the_job(self, settings, tour):
        settings.TOURKEEP_JOB_INVOKER = "tours.invoker.InlineJobInvoker"
        job = enqueue_backup(tour)

        response = process_single_job(job.id)
        job.refresh_from_db()

        assert response["currentPart"] == 1
        assert job.status == BackupJob.STATUS_COMPLETED
        assert job.parts.count() == 3

    def test_duplicate_continuation_runs_once(self, tour):
        job = enqueue_backup(tour)
        item = BackupQueueItem.objects.get(backup_job=job)
        assert claim_queue_item(item)

        response = continue_job(job.id)
        assert response["claimed"] is False
        assert job.parts.count() == 0

    def test_higher_priority_runs_first(self, make_tour):
        low = enqueue_backup(make_tour(title='Low'), priority=1)
        high = enqueue_backup(make_tour(title='High'), priority=9)

        result = process_backup_queue(max_jobs=1)
        assert result["details"][0]["jobId"] == high.id
        assert low.parts.count() == 0

    def test_missing_job(self, db):
        with pytest.raises(RecordNotFound):
            process_single_job(999999)


class TestCancellation:
    """Test cancelling backups."""

    def test_cancel_pending_job_settles_immediately(self, tour):
        job = enqueue_backup(tour)
        assert request_cancel(job) is True

        job.refresh_from_db()
        assert job.status == BackupJob.STATUS_CANCELLED
        assert job.queue_item.status == BackupQueueItem.STATUS_CANCELLED

    def test_cancel_stops_before_next_part(self, tour):
        job = enqueue_backup(tour)
        process_single_job(job.id)
        job.refresh_from_db()
        assert request_cancel(job) is True

        result = process_backup_queue()
        job.refresh_from_db()

        assert result["skipped"] == 1
        assert job.status == BackupJob.STATUS_CANCELLED
        assert job.parts.count() == 1

    def test_cancel_finished_job_is_refused(self, tour):
        job = enqueue_backup(tour, job_type=BackupJob.TYPE_STRUCTURE_ONLY)
        run_job_to_completion(job.id)
        job.refresh_from_db()

        assert request_cancel(job) is False
        assert job.status == BackupJob.STATUS_COMPLETED
