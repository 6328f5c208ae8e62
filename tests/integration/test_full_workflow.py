"""
Integration tests for the full sync workflow.
These tests run real conversion, ordering and ledger code against a fake Bot API.
"""
import json
from unittest.mock import Mock, patch

import pytest
import requests

from telegram_album_sync.config import SyncConfig, TelegramConfig
from telegram_album_sync.exceptions import ConfigurationError, EndpointUnavailableError
from telegram_album_sync.orchestrator import SyncOrchestrator
from telegram_album_sync.processor.heic_converter import HeicConverter
from telegram_album_sync.utils.ledger import ResetScope


def _run(config, album_dir, session, test_mode=False, **kwargs):
    orchestrator = SyncOrchestrator(config, album_dir, test_mode=test_mode,
                                    session=session, sleep=Mock())
    return orchestrator, orchestrator.run(**kwargs)


def _messages(session):
    return [call['data']['text'] for call in session.calls_for('sendMessage')]


@pytest.mark.integration
class TestFullWorkflow:
    """End-to-end runs of one album."""

    def test_twelve_photos_two_groups(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test 12 photos go out as a group of 10 and a group of 2."""
        for i in range(12):
            jpeg_factory(album_dir / f"IMG_{i:04d}.jpg", taken=f"2023:05:01 10:{i:02d}:00")

        orchestrator, result = _run(sync_config, album_dir, fake_session)

        groups = fake_session.calls_for('sendMediaGroup')
        assert [len(call['files']) for call in groups] == [10, 2]
        assert all(call['url'].startswith('http://proxy.example.test:8081/bot123:MAIN/') for call in groups)
        assert result.success is True
        assert result.statistics.sent == 12
        assert result.statistics.batches == 2
        assert orchestrator.tracker.counts()['failed'] == 0

        messages = _messages(fake_session)
        assert messages[0] == 'PHASE2 ✅ album=Holiday manifest_ready=12 files sorted chronologically'
        assert any(m.startswith('BATCH ✅ album=Holiday batch=1 items=10 total_sent=10') for m in messages)
        assert messages[-1] == 'COMPLETE 🎉 album=Holiday sent=12 failed=0 total=12'

    def test_chronological_order(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test uploads follow capture time rather than file name."""
        jpeg_factory(album_dir / 'a.jpg', taken='2023:05:01 12:00:00')
        jpeg_factory(album_dir / 'b.jpg', taken='2023:05:01 08:00:00')
        jpeg_factory(album_dir / 'c.jpg', taken='2023:05:01 10:00:00')

        _run(sync_config, album_dir, fake_session)

        group = fake_session.calls_for('sendMediaGroup')[0]
        assert group['files'] == ['b.jpg', 'c.jpg', 'a.jpg']
        assert [item['media'] for item in json.loads(group['data']['media'])] == [
            'attach://media0', 'attach://media1', 'attach://media2'
        ]

    def test_broken_heic_is_failed(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test an unconvertible HEIC is recorded failed while the rest is sent."""
        (album_dir / 'broken.heic').write_bytes(b'not an image at all')
        jpeg_factory(album_dir / 'one.jpg', taken='2023:05:01 10:00:00')
        jpeg_factory(album_dir / 'two.jpg', taken='2023:05:01 11:00:00')

        orchestrator, result = _run(sync_config, album_dir, fake_session)

        groups = fake_session.calls_for('sendMediaGroup')
        assert len(groups) == 1
        assert groups[0]['files'] == ['one.jpg', 'two.jpg']
        assert orchestrator.tracker.is_failed(str(album_dir / 'broken.heic'))
        assert result.statistics.conversion_failed == 1
        assert result.success is False
        assert 'PHASE1 ✅ album=Holiday converted=0 skipped=0 failed=1 total=1' in _messages(fake_session)

    def test_heic_uploads_converted_jpeg(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test a HEIC source is uploaded as its JPEG artifact and recorded by source path."""
        jpeg_factory(album_dir / 'IMG_0001.heic', size=(40, 30))
        jpeg_factory(album_dir / 'IMG_0002.jpg')

        orchestrator, result = _run(sync_config, album_dir, fake_session)

        assert sorted(fake_session.upload_calls[0]['files']) == ['IMG_0001.jpg', 'IMG_0002.jpg']
        assert (orchestrator.scratch_dir / 'IMG_0001.jpg').exists()
        assert orchestrator.tracker.is_sent(str(album_dir / 'IMG_0001.heic'))
        assert result.statistics.converted == 1

    def test_upload_reset_keeps_conversions(self, sync_config, album_dir, jpeg_factory, session_factory):
        """Test an upload-only reset re-sends everything without converting again."""
        jpeg_factory(album_dir / 'IMG_0001.heic')
        jpeg_factory(album_dir / 'IMG_0002.jpg')
        _run(sync_config, album_dir, session_factory())

        session = session_factory()
        with patch.object(HeicConverter, 'convert', autospec=True) as mock_convert:
            orchestrator, result = _run(sync_config, album_dir, session, reset=ResetScope.UPLOADS)

        mock_convert.assert_not_called()
        assert result.statistics.conversion_skipped == 1
        assert len(session.upload_calls) == 1
        assert sorted(session.upload_calls[0]['files']) == ['IMG_0001.jpg', 'IMG_0002.jpg']
        assert _messages(session)[0].startswith('CLEANUP 🧪 album=Holiday')
        assert orchestrator.tracker.counts()['sent'] == 2

    def test_missing_artifact_needs_repair(self, sync_config, album_dir, jpeg_factory,
                                           session_factory, response_factory):
        """Test a converted source whose JPEG vanished fails until conversions are repaired."""
        source = album_dir / 'IMG_0001.heic'
        jpeg_factory(source)

        def refuse_uploads(method, call):
            if method == 'sendPhoto':
                return response_factory(500, {'ok': False, 'description': 'Internal Server Error'})
            return response_factory(payload={'ok': True, 'result': {'username': 'album_bot'}})

        orchestrator, _ = _run(sync_config, album_dir, session_factory(refuse_uploads))
        orchestrator.converter.artifact_path(source, orchestrator.scratch_dir).unlink()

        session = session_factory()
        orchestrator, result = _run(sync_config, album_dir, session)
        assert session.upload_calls == []
        assert orchestrator.tracker.is_failed(str(source))
        assert result.nothing_new is True

        session = session_factory()
        orchestrator, result = _run(sync_config, album_dir, session, repair_conversions=True)
        assert result.statistics.converted == 1
        assert session.upload_calls[0]['files'] == ['IMG_0001.jpg']
        assert orchestrator.tracker.is_sent(str(source))

    def test_cleanup_scratch_removes_sent_artifacts(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test opt-in cleanup deletes uploaded JPEGs and keeps the sources."""
        sync_config.processing.cleanup_scratch = True
        jpeg_factory(album_dir / 'IMG_0001.heic')
        jpeg_factory(album_dir / 'IMG_0002.heic')

        orchestrator, _ = _run(sync_config, album_dir, fake_session)

        assert not orchestrator.scratch_dir.exists()
        assert (album_dir / 'IMG_0001.heic').exists()
        assert (album_dir / 'IMG_0002.heic').exists()

    def test_second_run_is_idempotent(self, sync_config, album_dir, jpeg_factory, session_factory):
        """Test a finished album is not uploaded again."""
        jpeg_factory(album_dir / 'one.jpg')
        jpeg_factory(album_dir / 'two.jpg')
        orchestrator, _ = _run(sync_config, album_dir, session_factory())
        sent_file = orchestrator.tracker.sent.path
        before = sent_file.read_bytes()

        session = session_factory()
        _, result = _run(sync_config, album_dir, session)

        assert session.upload_calls == []
        assert result.nothing_new is True
        assert sent_file.read_bytes() == before
        messages = _messages(session)
        assert messages[0] == 'RESUME 🔄 album=Holiday sent=2 failed=0'
        assert messages[-1] == 'COMPLETE 🎯 album=Holiday no new media to process'

    def test_connection_failure_retries_then_fails(self, sync_config, album_dir, jpeg_factory,
                                                   session_factory, response_factory):
        """Test a dead connection is tried three times and then recorded failed."""
        jpeg_factory(album_dir / 'only.jpg')

        def handler(method, call):
            if method == 'sendPhoto':
                raise requests.ConnectionError("connection reset")
            return response_factory(payload={'ok': True, 'result': {'username': 'album_bot'}})

        session = session_factory(handler)
        orchestrator, result = _run(sync_config, album_dir, session)

        assert len(session.calls_for('sendPhoto')) == 3
        assert orchestrator.tracker.is_failed(str(album_dir / 'only.jpg'))
        assert result.success is False
        assert result.statistics.failed_this_run == 1

    def test_retry_failed_sends_only_failures(self, sync_config, album_dir, jpeg_factory,
                                              session_factory, response_factory):
        """Test a retry run picks up exactly the previously failed files."""
        jpeg_factory(album_dir / 'only.jpg')

        def refuse_uploads(method, call):
            if method == 'sendPhoto':
                return response_factory(400, {'ok': False, 'description': 'Bad Request'})
            return response_factory(payload={'ok': True, 'result': {'username': 'album_bot'}})

        _run(sync_config, album_dir, session_factory(refuse_uploads))
        jpeg_factory(album_dir / 'new.jpg')

        session = session_factory()
        orchestrator, result = _run(sync_config, album_dir, session, retry_failed=True)

        assert [call['files'] for call in session.upload_calls] == [['only.jpg']]
        assert orchestrator.tracker.is_sent(str(album_dir / 'only.jpg'))
        assert not orchestrator.tracker.is_failed(str(album_dir / 'only.jpg'))
        assert result.success is True

    def test_retry_failed_reconverts_failed_heic(self, sync_config, album_dir, jpeg_factory, session_factory):
        """Test a HEIC that failed to convert is converted and uploaded by a retry run."""
        source = album_dir / 'IMG_0001.heic'
        source.write_bytes(b'truncated download')
        jpeg_factory(album_dir / 'a.jpg')

        orchestrator, _ = _run(sync_config, album_dir, session_factory())
        assert orchestrator.tracker.is_failed(str(source))

        jpeg_factory(source)
        session = session_factory()
        orchestrator, result = _run(sync_config, album_dir, session, retry_failed=True)

        assert [call['files'] for call in session.upload_calls] == [['IMG_0001.jpg']]
        assert result.nothing_new is False
        assert result.statistics.converted == 1
        assert orchestrator.tracker.is_sent(str(source))
        assert not orchestrator.tracker.is_failed(str(source))

    def test_own_session_is_closed(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test the session created by the orchestrator is closed after the run."""
        jpeg_factory(album_dir / 'solo.jpg')
        with patch('telegram_album_sync.orchestrator.requests.Session', return_value=fake_session):
            orchestrator = SyncOrchestrator(sync_config, album_dir, sleep=Mock())
            orchestrator.run()

        assert fake_session.upload_calls
        assert fake_session.closed is True

    def test_injected_session_stays_open(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test a caller-provided session is left for the caller to close."""
        jpeg_factory(album_dir / 'solo.jpg')
        _run(sync_config, album_dir, fake_session)
        assert fake_session.closed is False

    def test_test_mode_cleanup_keeps_shared_artifacts(self, sync_config, album_dir, jpeg_factory, session_factory):
        """Test a test run never deletes JPEGs that production still needs."""
        sync_config.processing.cleanup_scratch = True
        source = album_dir / 'IMG_0001.heic'
        jpeg_factory(source)
        jpeg_factory(album_dir / 'IMG_0002.jpg')

        orchestrator, _ = _run(sync_config, album_dir, session_factory(), test_mode=True)
        assert (orchestrator.scratch_dir / 'IMG_0001.jpg').exists()

        session = session_factory()
        orchestrator, result = _run(sync_config, album_dir, session)

        assert sorted(session.upload_calls[0]['files']) == ['IMG_0001.jpg', 'IMG_0002.jpg']
        assert result.statistics.conversion_skipped == 1
        assert result.success is True
        assert not orchestrator.scratch_dir.exists()

    def test_repair_waits_for_preflight(self, sync_config, album_dir, jpeg_factory,
                                        session_factory, response_factory):
        """Test a run aborted at pre-flight leaves conversion records untouched."""
        source = album_dir / 'IMG_0001.heic'
        jpeg_factory(source)
        orchestrator, _ = _run(sync_config, album_dir, session_factory())
        orchestrator.converter.artifact_path(source, orchestrator.scratch_dir).unlink()
        converted_file = orchestrator.tracker.converted.path
        before = converted_file.read_text(encoding='utf-8')

        def proxy_down(method, call):
            if method == 'getMe':
                raise requests.ConnectionError("refused")
            return response_factory()

        with pytest.raises(EndpointUnavailableError):
            _run(sync_config, album_dir, session_factory(proxy_down), repair_conversions=True)

        assert converted_file.read_text(encoding='utf-8') == before
        assert str(source) in before

    def test_single_photo_uses_send_photo(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test a lone photo goes to the cloud endpoint with sendPhoto."""
        jpeg_factory(album_dir / 'solo.jpg')

        _run(sync_config, album_dir, fake_session)

        (call,) = fake_session.upload_calls
        assert call['url'] == 'https://api.example.test/bot123:MAIN/sendPhoto'

    def test_unsupported_files_are_skipped(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test unsupported formats are recorded skipped and never uploaded."""
        jpeg_factory(album_dir / 'solo.jpg')
        (album_dir / 'notes.txt').write_text('hello')

        orchestrator, result = _run(sync_config, album_dir, fake_session)

        assert fake_session.upload_calls[0]['files'] == ['solo.jpg']
        assert str(album_dir / 'notes.txt') in orchestrator.tracker.skipped
        assert result.statistics.total_files == 1

    def test_test_mode_uses_info_bot_and_own_state(self, sync_config, album_dir, jpeg_factory, fake_session):
        """Test runs upload with the notification bot and leave production state alone."""
        jpeg_factory(album_dir / 'one.jpg')
        jpeg_factory(album_dir / 'two.jpg')

        orchestrator, _ = _run(sync_config, album_dir, fake_session, test_mode=True)

        (call,) = fake_session.upload_calls
        assert '/bot456:INFO/' in call['url']
        assert fake_session.calls_for('getMe')[0]['url'].endswith('/bot123:MAIN/getMe')
        state = sync_config.processing.state_path
        assert (state / 'sent_Holiday_test.txt').exists()
        assert not (state / 'sent_Holiday.txt').exists()
        assert _messages(fake_session)[-1].startswith('TEST COMPLETE 🧪 album=Holiday sent=2')

    def test_proxy_down_aborts_before_upload(self, sync_config, album_dir, jpeg_factory,
                                            session_factory, response_factory):
        """Test an unreachable local server stops the run before any upload."""
        jpeg_factory(album_dir / 'one.jpg')

        def handler(method, call):
            if method == 'getMe':
                raise requests.ConnectionError("refused")
            return response_factory()

        session = session_factory(handler)
        with pytest.raises(EndpointUnavailableError):
            _run(sync_config, album_dir, session)

        assert session.upload_calls == []
        (message,) = _messages(session)
        assert message.startswith(
            'ERROR ❌ album=Holiday API server not available at http://proxy.example.test:8081'
        )

    def test_missing_credentials(self, processing_config, album_dir, clean_env):
        """Test the run refuses to start without a bot token and chat id."""
        config = SyncConfig(telegram=TelegramConfig(), processing=processing_config)
        with pytest.raises(ConfigurationError, match="BOT_TOKEN"):
            SyncOrchestrator(config, album_dir)
