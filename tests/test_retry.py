"""
Tests for retry backoff, permanent failures and stuck job reclamation.
"""
from datetime import timedelta

import pytest
from django.utils import timezone

from tours.backup_queue import claim_queue_item, enqueue_backup
from tours.backup_worker import process_backup_queue
from tours.models import BackupJob, BackupQueueItem
from tours.retry import backoff_delay, cleanup_stuck_jobs
from tours.storage import backup_archives

pytestmark = pytest.mark.backup


class TestBackoff:
    """Test the exponential backoff schedule."""

    @pytest.mark.parametrize('attempts, expected', [
        (0, timedelta(minutes=5)),
        (1, timedelta(minutes=10)),
        (2, timedelta(minutes=20)),
        (8, timedelta(minutes=1280)),
        (9, timedelta(hours=24)),
        (500, timedelta(hours=24)),
    ])
    def test_backoff_delay(self, attempts, expected):
        assert backoff_delay(attempts) == expected


class TestFailureHandling:
    """Test what happens to a queue item after a failed step."""

    @pytest.fixture
    def broken_archive_store(self, mocker):
        store = mocker.Mock()
        store.upload.side_effect = OSError("Object store unavailable")
        return mocker.patch('tours.backup_worker.backup_archives', return_value=store)

    def _make_due(self, item):
        BackupQueueItem.objects.filter(pk=item.pk).update(scheduled_at=timezone.now())

    def test_retries_back_off_then_fail(self, tour, broken_archive_store):
        """Attempt 1 retries in 10 minutes, attempt 2 in 20, attempt 3 fails for good."""
        job = enqueue_backup(tour)
        item = job.queue_item

        before = timezone.now()
        result = process_backup_queue()
        item.refresh_from_db()
        assert result["failed"] == 1
        assert item.status == BackupQueueItem.STATUS_RETRY
        assert item.attempts == 1
        assert timedelta(minutes=10) <= item.scheduled_at - before < timedelta(minutes=11)

        # Not due yet.
        assert process_backup_queue()["details"] == []

        self._make_due(item)
        before = timezone.now()
        process_backup_queue()
        item.refresh_from_db()
        assert item.status == BackupQueueItem.STATUS_RETRY
        assert item.attempts == 2
        assert timedelta(minutes=20) <= item.scheduled_at - before < timedelta(minutes=21)

        self._make_due(item)
        process_backup_queue()
        item.refresh_from_db()
        job.refresh_from_db()
        assert item.status == BackupQueueItem.STATUS_FAILED
        assert job.status == BackupJob.STATUS_FAILED
        assert "Object store unavailable" in job.error_message
        assert job.logs.filter(event_type="retry_scheduled").count() == 2
        assert job.logs.filter(event_type="backup_failed").exists()

    def test_permanent_error_fails_on_first_attempt(self, tour):
        job = enqueue_backup(tour)
        tour.delete()

        process_backup_queue()
        job.refresh_from_db()

        assert job.status == BackupJob.STATUS_FAILED
        assert job.queue_item.status == BackupQueueItem.STATUS_FAILED
        assert job.queue_item.attempts == 1

    def test_retry_resumes_from_the_failed_part(self, tour, mocker):
        """Parts already uploaded are not redone after a failure."""
        job = enqueue_backup(tour)
        process_backup_queue()

        real_store = backup_archives()
        broken = mocker.Mock()
        broken.upload.side_effect = OSError("Timeout")
        patched = mocker.patch('tours.backup_worker.backup_archives', return_value=broken)
        process_backup_queue()
        job.refresh_from_db()
        assert job.continuation.current_part == 2
        assert job.parts.count() == 1

        patched.return_value = real_store
        self._make_due(job.queue_item)
        process_backup_queue()
        process_backup_queue()
        job.refresh_from_db()

        assert job.status == BackupJob.STATUS_COMPLETED
        assert job.parts.count() == 3


class TestStuckJobs:
    """Test reclamation of items abandoned in processing."""

    def _stick(self, job, minutes, attempts=None):
        item = job.queue_item
        assert claim_queue_item(item)
        update = {"started_at": timezone.now() - timedelta(minutes=minutes)}
        if attempts is not None:
            update["attempts"] = attempts
        BackupQueueItem.objects.filter(pk=item.pk).update(**update)
        item.refresh_from_db()
        return item

    def test_stuck_item_is_rescheduled_now(self, tour):
        item = self._stick(enqueue_backup(tour), minutes=31)

        now = timezone.now()
        assert cleanup_stuck_jobs(now=now) == 1
        item.refresh_from_db()

        assert item.status == BackupQueueItem.STATUS_RETRY
        assert item.scheduled_at == now
        assert item.error_message == "Reset by cleanup worker"

    def test_stuck_item_without_attempts_left_fails(self, tour):
        job = enqueue_backup(tour)
        item = self._stick(job, minutes=45, attempts=3)

        assert cleanup_stuck_jobs() == 1
        item.refresh_from_db()
        job.refresh_from_db()

        assert item.status == BackupQueueItem.STATUS_FAILED
        assert job.status == BackupJob.STATUS_FAILED

    def test_recent_item_is_left_alone(self, tour):
        item = self._stick(enqueue_backup(tour), minutes=10)

        assert cleanup_stuck_jobs() == 0
        item.refresh_from_db()
        assert item.status == BackupQueueItem.STATUS_PROCESSING

    def test_reclaimed_item_runs_again(self, tour):
        job = enqueue_backup(tour)
        self._stick(job, minutes=31)
        cleanup_stuck_jobs()

        result = process_backup_queue()
        job.refresh_from_db()
        assert result["processed"] == 1
        assert job.parts.count() == 1
