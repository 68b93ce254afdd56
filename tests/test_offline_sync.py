"""
Tests for offline photo capture, the sync orchestrator and device-side plumbing.
"""
from datetime import timedelta
from io import StringIO

import pytest
import requests
from django.core.management import call_command
from django.utils import timezone

from offline import pending_queue
from offline.adapters import DatabaseAdapter, FilesystemAdapter
from offline.backend_client import ConnectivityProbe, TourBackendClient
from offline.exceptions import AdapterUnavailable, TourFetchError, UploadError
from offline.models import PendingPhoto
from offline.storage_migration import migrate_bundles, require_filesystem_adapter
from offline.sync import SyncOrchestrator, sync_finished, sync_progress, sync_state_changed

pytestmark = pytest.mark.offline


class FakeUploader:
    """Records uploads; filenames listed in ``failing`` are rejected."""

    def __init__(self, failing=(), on_upload=None):
        self.failing = set(failing)
        self.on_upload = on_upload
        self.uploaded = []

    def upload_photo(self, photo):
        if self.on_upload:
            self.on_upload(photo)
        if photo.filename in self.failing:
            raise UploadError(f'Upload of {photo.filename} rejected (500): boom')
        self.uploaded.append(photo.filename)
        return {'success': True, 'photoId': len(self.uploaded)}


def capture(filename, hotspot_id=5):
    return pending_queue.capture_photo(b'jpeg', hotspot_id=hotspot_id, tour_id=1, tenant_id='tenant-a',
                                       filename=filename)


class TestPendingQueue:
    """Test the local queue of photos captured offline."""

    def test_capture_is_local_only(self, db):
        local_id = capture('a.jpg')

        photo = PendingPhoto.objects.get(local_id=local_id)
        assert photo.status == PendingPhoto.STATUS_PENDING
        assert pending_queue.pending_count() == 1
        assert list(pending_queue.photos_for_hotspot(5)) == [photo]

    def test_interrupted_uploads_return_to_the_queue(self, db):
        capture('a.jpg')
        photo = pending_queue.pending_photos().get()
        pending_queue.mark_syncing(photo)
        assert photo.attempts == 1

        assert pending_queue.reset_interrupted() == 1
        assert pending_queue.pending_count() == 1

    def test_retry_failed(self, db):
        capture('a.jpg')
        pending_queue.mark_failed(pending_queue.pending_photos().get(), 'offline')

        assert pending_queue.pending_count() == 0
        assert pending_queue.retry_failed() == 1
        assert pending_queue.pending_count() == 1

    def test_cleanup_only_removes_old_synced_records(self, db):
        capture('old.jpg')
        capture('new.jpg')
        old, new = pending_queue.pending_photos()
        pending_queue.mark_synced(old, '11')
        PendingPhoto.objects.filter(pk=old.pk).update(synced_at=timezone.now() - timedelta(hours=2))
        pending_queue.mark_synced(new, '12')

        assert pending_queue.cleanup_synced(timezone.now() - timedelta(hours=1)) == 1
        assert PendingPhoto.objects.get().filename == 'new.jpg'


class TestSyncOrchestrator:
    """Test draining the queue when connectivity returns."""

    def test_reconnect_drains_in_capture_order(self, db):
        """Photos captured offline are uploaded in order once the backend is back."""
        uploader = FakeUploader()
        orchestrator = SyncOrchestrator(uploader)
        for name in ('1.jpg', '2.jpg', '3.jpg'):
            capture(name)

        assert orchestrator.update_connectivity(False) is None
        result = orchestrator.update_connectivity(True)

        assert uploader.uploaded == ['1.jpg', '2.jpg', '3.jpg']
        assert len(result.succeeded) == 3
        assert orchestrator.pending_count == 0
        assert set(PendingPhoto.objects.values_list('remote_id', flat=True)) == {'1', '2', '3'}

    def test_staying_online_does_not_drain_again(self, db):
        orchestrator = SyncOrchestrator(FakeUploader())
        orchestrator.update_connectivity(True)
        capture('a.jpg')

        assert orchestrator.update_connectivity(True) is None
        assert orchestrator.pending_count == 1

    def test_failed_upload_does_not_stop_the_drain(self, db):
        uploader = FakeUploader(failing={'2.jpg'})
        for name in ('1.jpg', '2.jpg', '3.jpg'):
            capture(name)

        result = SyncOrchestrator(uploader).drain()

        assert uploader.uploaded == ['1.jpg', '3.jpg']
        assert len(result.failed) == 1
        failed = PendingPhoto.objects.get(filename='2.jpg')
        assert failed.status == PendingPhoto.STATUS_FAILED
        assert 'boom' in failed.error_message

    def test_unexpected_error_does_not_stop_the_drain(self, db):
        def explode(photo):
            if photo.filename == '1.jpg':
                raise RuntimeError('disk read error')

        uploader = FakeUploader(on_upload=explode)
        for name in ('1.jpg', '2.jpg', '3.jpg'):
            capture(name)

        result = SyncOrchestrator(uploader).drain()

        assert uploader.uploaded == ['2.jpg', '3.jpg']
        assert len(result.failed) == 1
        failed = PendingPhoto.objects.get(filename='1.jpg')
        assert failed.status == PendingPhoto.STATUS_FAILED
        assert 'disk read error' in failed.error_message
        assert not PendingPhoto.objects.filter(status=PendingPhoto.STATUS_SYNCING).exists()

    def test_html_answer_from_a_portal_fails_only_that_photo(self, db, mocker):
        """A captive portal answering 200 with a web page must not jam the queue."""
        portal = mocker.Mock(ok=True, status_code=200)
        portal.json.side_effect = ValueError('Expecting value: line 1 column 1 (char 0)')
        backend = mocker.Mock(ok=True, status_code=200)
        backend.json.return_value = {'success': True, 'photoId': 42}
        session = mocker.Mock()
        session.headers = {}
        session.post.side_effect = [portal, backend, backend]
        for name in ('a.jpg', 'b.jpg', 'c.jpg'):
            capture(name)
        orchestrator = SyncOrchestrator(TourBackendClient('http://backend', token='', session=session))

        orchestrator.update_connectivity(False)
        result = orchestrator.update_connectivity(True)

        assert session.post.call_count == 3
        assert len(result.succeeded) == 2
        statuses = dict(PendingPhoto.objects.values_list('filename', 'status'))
        assert statuses == {
            'a.jpg': PendingPhoto.STATUS_FAILED,
            'b.jpg': PendingPhoto.STATUS_SYNCED,
            'c.jpg': PendingPhoto.STATUS_SYNCED,
        }

    def test_cancel_stops_after_current_photo(self, db):
        orchestrator = SyncOrchestrator(FakeUploader(on_upload=lambda photo: orchestrator.cancel()))
        for name in ('1.jpg', '2.jpg', '3.jpg'):
            capture(name)

        result = orchestrator.drain()

        assert len(result.succeeded) == 1
        assert orchestrator.pending_count == 2

    def test_only_one_drain_at_a_time(self, db):
        nested = []
        orchestrator = SyncOrchestrator(FakeUploader(on_upload=lambda photo: nested.append(orchestrator.drain())))
        capture('a.jpg')

        orchestrator.drain()

        assert nested == [None]
        assert not orchestrator.is_syncing

    def test_signals(self, db):
        events = {'state': [], 'progress': [], 'finished': []}

        def on_state(sender, is_online, is_syncing, pending_count, **kwargs):
            events['state'].append((is_online, is_syncing, pending_count))

        def on_progress(sender, percentage, current_item, done, total, **kwargs):
            events['progress'].append(percentage)

        def on_finished(sender, result, cancelled, **kwargs):
            events['finished'].append((len(result.succeeded), cancelled))

        sync_state_changed.connect(on_state)
        sync_progress.connect(on_progress)
        sync_finished.connect(on_finished)
        try:
            capture('1.jpg')
            capture('2.jpg')
            SyncOrchestrator(FakeUploader()).update_connectivity(True)
        finally:
            sync_state_changed.disconnect(on_state)
            sync_progress.disconnect(on_progress)
            sync_finished.disconnect(on_finished)

        assert events['state'][0] == (True, False, 2)
        assert events['state'][-1] == (True, False, 0)
        assert events['progress'] == [0, 50, 50, 100]
        assert events['finished'] == [(2, False)]

    def test_cleanup_keeps_this_session(self, db):
        orchestrator = SyncOrchestrator(FakeUploader())
        capture('a.jpg')
        orchestrator.drain()

        assert orchestrator.cleanup_synced() == 0


class TestStorageMigration:
    """Test moving bundles from the database to the filesystem."""

    def test_bundles_move_with_their_expiry(self, db, tmp_path):
        source = DatabaseAdapter()
        expires = timezone.now() + timedelta(days=2)
        source.save('1', 'One', {'id': 1}, [], [], images={'10': b'png'}, expires_at=expires)
        source.save('2', 'Two', {'id': 2}, [], [])
        target = FilesystemAdapter(tmp_path)

        result = migrate_bundles(source, target)

        assert sorted(result.succeeded) == ['1', '2']
        assert source.list() == []
        moved = target.load('1')
        assert moved.images == {'10': b'png'}
        assert moved.expires_at == expires

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('not a directory')

        with pytest.raises(AdapterUnavailable):
            require_filesystem_adapter(blocker / 'offline')


class TestBackendClient:
    """Test the HTTP client used by devices."""

    @pytest.fixture
    def session(self, mocker):
        session = mocker.Mock()
        session.headers = {}
        return session

    def test_token_is_sent(self, session):
        TourBackendClient('http://backend', token='abc', session=session)
        assert session.headers['Authorization'] == 'Bearer abc'

    def test_fetch_tour_bundle(self, session):
        session.get.return_value.json.return_value = {'ok': True, 'tour': {'id': 3}}
        client = TourBackendClient('http://backend/', token='', session=session)

        assert client.fetch_tour_bundle(3)['tour'] == {'id': 3}
        assert session.get.call_args[0][0] == 'http://backend/api/tours/3/bundle/'

    def test_fetch_failure(self, session):
        session.get.side_effect = requests.ConnectionError('no route')
        client = TourBackendClient('http://backend', token='', session=session)

        with pytest.raises(TourFetchError):
            client.fetch_tour_bundle(3)

    def test_rejected_upload(self, session, db):
        session.post.return_value.ok = False
        session.post.return_value.status_code = 400
        session.post.return_value.json.return_value = {'error': 'Hotspot does not belong to this tour'}
        client = TourBackendClient('http://backend', token='', session=session)
        capture('a.jpg')

        with pytest.raises(UploadError, match='Hotspot does not belong'):
            client.upload_photo(PendingPhoto.objects.get())

    def test_success_status_without_json_is_rejected(self, session, db):
        session.post.return_value.ok = True
        session.post.return_value.json.side_effect = ValueError('Expecting value')
        client = TourBackendClient('http://backend', token='', session=session)
        capture('a.jpg')

        with pytest.raises(UploadError, match='non-JSON'):
            client.upload_photo(PendingPhoto.objects.get())

    def test_connectivity_probe(self, session):
        client = TourBackendClient('http://backend', token='', session=session)
        session.get.return_value.status_code = 200
        assert ConnectivityProbe(client).is_online() is True

        session.get.side_effect = requests.Timeout()
        assert ConnectivityProbe(client).is_online() is False


class TestCommands:
    """Test the device-side management commands."""

    @pytest.fixture
    def offline_backend(self, mocker):
        mocker.patch('offline.backend_client.ConnectivityProbe.is_online', return_value=False)

    def test_offline_cache_list(self, db):
        DatabaseAdapter().save('1', 'One', {}, [], [])
        out = StringIO()

        call_command('offline_cache', 'list', stdout=out)

        assert 'One' in out.getvalue()

    def test_pending_photos_for_a_hotspot(self, db):
        capture('kitchen.jpg', hotspot_id=5)
        capture('garden.jpg', hotspot_id=9)
        pending_queue.mark_failed(PendingPhoto.objects.get(filename='kitchen.jpg'), 'timeout')
        out = StringIO()

        call_command('pending_photos', '--hotspot', '5', stdout=out)

        output = out.getvalue()
        assert 'kitchen.jpg' in output
        assert 'timeout' in output
        assert 'garden.jpg' not in output

    def test_pending_photos_retry_failed(self, db):
        capture('kitchen.jpg')
        pending_queue.mark_failed(PendingPhoto.objects.get(), 'timeout')
        out = StringIO()

        call_command('pending_photos', '--retry-failed', stdout=out)

        assert '1 failed photo(s) queued again' in out.getvalue()
        assert 'Pending: 1' in out.getvalue()

    def test_run_offline_agent_once(self, db, offline_backend):
        capture('a.jpg')
        PendingPhoto.objects.update(status=PendingPhoto.STATUS_SYNCING)
        out = StringIO()

        call_command('run_offline_agent', '--once', stdout=out)

        assert 'Storage: database' in out.getvalue()
        assert pending_queue.pending_count() == 1
