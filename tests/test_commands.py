"""
Tests for the server-side management commands.
"""
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from tours.backup_queue import enqueue_backup
from tours.models import BackupJob, TourBackupConfig


class TestBackupCommands:
    """Test the backup management commands."""

    def test_enqueue_and_run(self, tour):
        out = StringIO()
        call_command('enqueue_backup', tour.id, '--run', stdout=out)

        job = BackupJob.objects.get(tour=tour)
        assert job.status == BackupJob.STATUS_COMPLETED
        assert '3 part(s)' in out.getvalue()

    def test_enqueue_unknown_tour(self, db):
        with pytest.raises(CommandError):
            call_command('enqueue_backup', 999)

    def test_process_backup_queue(self, tour):
        job = enqueue_backup(tour, job_type=BackupJob.TYPE_STRUCTURE_ONLY)
        out = StringIO()

        call_command('process_backup_queue', stdout=out)
        job.refresh_from_db()

        assert job.status == BackupJob.STATUS_COMPLETED
        assert '1 processed' in out.getvalue()

    def test_cleanup_stuck_jobs(self, db):
        out = StringIO()
        call_command('cleanup_stuck_jobs', stdout=out)
        assert 'No stuck items' in out.getvalue()

    def test_schedule_auto_backups(self, tour):
        TourBackupConfig.objects.create(tour=tour, auto_backup_enabled=True, backup_frequency='daily')

        call_command('schedule_auto_backups', stdout=StringIO())

        assert BackupJob.objects.filter(tour=tour).count() == 1

    def test_resume_stalled_syncs(self, db):
        out = StringIO()
        call_command('resume_stalled_syncs', stdout=out)
        assert '0 resumed' in out.getvalue()
