"""
Tests for the Bot API client.
"""
import json

import pytest
import requests

from telegram_album_sync.processor.media_scanner import MediaKind
from telegram_album_sync.uploader.telegram_client import ApiResponse, Endpoint, TelegramClient


@pytest.fixture
def client(telegram_config, fake_session):
    return TelegramClient('123:MAIN', '-10042', telegram_config, session=fake_session)


class TestApiResponse:
    """Tests for response interpretation."""

    def test_ok(self, response_factory):
        """Test HTTP 200 with ok true is a success."""
        response = ApiResponse.from_http(response_factory(200, {'ok': True, 'result': {'message_id': 1}}))
        assert response.ok is True
        assert response.payload['result']['message_id'] == 1

    def test_ok_false_is_failure(self, response_factory):
        """Test HTTP 200 with ok false is a failure."""
        response = ApiResponse.from_http(
            response_factory(200, {'ok': False, 'description': 'Bad Request: wrong file'})
        )
        assert response.ok is False
        assert response.description == 'Bad Request: wrong file'

    def test_http_error(self, response_factory):
        """Test non-200 status is a failure."""
        response = ApiResponse.from_http(response_factory(413, {'ok': True}))
        assert response.ok is False
        assert response.status_code == 413

    def test_non_json_body(self, response_factory):
        """Test a body that is not JSON."""
        raw = response_factory(502, None, text='Bad Gateway')
        response = ApiResponse.from_http(raw)
        assert response.ok is False
        assert response.payload == {}
        assert response.description == 'Bad Gateway'


class TestTelegramClient:
    """Tests for TelegramClient."""

    def test_requires_token(self, telegram_config):
        """Test a token is mandatory."""
        with pytest.raises(ValueError):
            TelegramClient('', '1', telegram_config)

    def test_method_url(self, client):
        """Test URLs for both endpoints."""
        assert client.method_url('sendPhoto') == 'https://api.example.test/bot123:MAIN/sendPhoto'
        assert client.method_url('sendPhoto', Endpoint.PROXY) == 'http://proxy.example.test:8081/bot123:MAIN/sendPhoto'

    def test_send_photo(self, client, fake_session, tmp_path, jpeg_factory):
        """Test a photo upload posts chat id and file."""
        photo = jpeg_factory(tmp_path / 'a.jpg')

        response = client.send_photo(photo)

        assert response.ok
        call = fake_session.calls[0]
        assert call['method'] == 'sendPhoto'
        assert call['data']['chat_id'] == '-10042'
        assert call['files'] == ['a.jpg']
        assert call['timeout'] == (15.0, 90.0)

    def test_send_video_timeouts(self, client, fake_session, tmp_path, video_factory):
        """Test videos use longer read timeouts, large ones the longest."""
        video = video_factory(tmp_path / 'clip.mp4')

        client.send_video(video)
        client.send_video(video, endpoint=Endpoint.PROXY, large=True)

        normal, large = fake_session.calls
        assert normal['timeout'] == (15.0, 180.0)
        assert normal['data']['supports_streaming'] == 'true'
        assert large['timeout'] == (15.0, 300.0)
        assert large['url'].startswith('http://proxy.example.test:8081/')

    def test_send_media_group(self, client, fake_session, tmp_path, jpeg_factory, video_factory):
        """Test group descriptors reference attached files in order."""
        media = [
            (jpeg_factory(tmp_path / 'a.jpg'), MediaKind.PHOTO),
            (video_factory(tmp_path / 'b.mp4'), MediaKind.VIDEO),
            (jpeg_factory(tmp_path / 'c.jpg'), MediaKind.PHOTO),
        ]

        client.send_media_group(media, endpoint=Endpoint.PROXY)

        call = fake_session.calls[0]
        assert call['method'] == 'sendMediaGroup'
        assert call['files'] == ['a.jpg', 'b.mp4', 'c.jpg']
        assert json.loads(call['data']['media']) == [
            {'type': 'photo', 'media': 'attach://media0'},
            {'type': 'video', 'media': 'attach://media1'},
            {'type': 'photo', 'media': 'attach://media2'},
        ]

    @pytest.mark.parametrize("count", [1, 11])
    def test_media_group_size_limits(self, client, tmp_path, jpeg_factory, count):
        """Test groups must hold 2-10 items."""
        photo = jpeg_factory(tmp_path / 'a.jpg')
        with pytest.raises(ValueError):
            client.send_media_group([(photo, MediaKind.PHOTO)] * count)

    def test_send_message(self, client, fake_session):
        """Test text messages."""
        client.send_message('hello')
        call = fake_session.calls[0]
        assert call['method'] == 'sendMessage'
        assert call['data'] == {'chat_id': '-10042', 'text': 'hello'}

    def test_get_me(self, client, fake_session):
        """Test getMe is a GET on the chosen endpoint."""
        response = client.get_me(endpoint=Endpoint.PROXY)
        assert response.ok
        assert fake_session.calls[0]['http_method'] == 'GET'
        assert fake_session.calls[0]['url'] == 'http://proxy.example.test:8081/bot123:MAIN/getMe'

    def test_connection_error_propagates(self, telegram_config, session_factory, tmp_path, jpeg_factory):
        """Test transport errors are left to the caller's retry policy."""
        def refuse(method, call):
            raise requests.ConnectionError("refused")

        client = TelegramClient('t', '1', telegram_config, session=session_factory(refuse))
        with pytest.raises(requests.ConnectionError):
            client.send_photo(jpeg_factory(tmp_path / 'a.jpg'))
