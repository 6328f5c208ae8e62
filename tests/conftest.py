"""
Pytest configuration and shared fixtures.
"""
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import yaml
from PIL import ExifTags, Image
from pillow_heif import register_heif_opener

from telegram_album_sync.config import (
    LoggingConfig,
    ProcessingConfig,
    SyncConfig,
    TelegramConfig,
)

UPLOAD_METHODS = ('sendPhoto', 'sendVideo', 'sendMediaGroup')

_OK_PAYLOAD = object()


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, payload=_OK_PAYLOAD, text: str = ''):
        """A payload of None makes json() fail like a non-JSON body."""
        self.status_code = status_code
        self._payload = {'ok': True, 'result': {}} if payload is _OK_PAYLOAD else payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload


class FakeSession:
    """
    Records Bot API calls instead of sending them.

    ``handler`` receives (method, call) and returns a FakeResponse or raises;
    the default accepts everything.
    """

    def __init__(self, handler: Optional[Callable] = None):
        self.handler = handler
        self.calls: List[Dict] = []
        self.closed = False

    def _record(self, http_method, url, data=None, files=None, timeout=None):
        call = {
            'http_method': http_method,
            'url': url,
            'method': url.rsplit('/', 1)[-1],
            'data': dict(data or {}),
            'files': [value[0] for value in (files or {}).values()],
            'timeout': timeout,
        }
        self.calls.append(call)
        if self.handler is not None:
            return self.handler(call['method'], call)
        if call['method'] == 'getMe':
            return FakeResponse(payload={'ok': True, 'result': {'username': 'album_bot'}})
        return FakeResponse()

    def post(self, url, data=None, files=None, timeout=None):
        return self._record('POST', url, data=data, files=files, timeout=timeout)

    def get(self, url, timeout=None):
        return self._record('GET', url, timeout=timeout)

    def close(self):
        self.closed = True

    def calls_for(self, *methods) -> List[Dict]:
        return [call for call in self.calls if call['method'] in methods]

    @property
    def upload_calls(self) -> List[Dict]:
        return self.calls_for(*UPLOAD_METHODS)


def make_jpeg(path: Path, taken: Optional[str] = None, size=(16, 12), color=(200, 80, 40)) -> Path:
    """Write a small real JPEG, optionally with an EXIF DateTime tag."""
    path.parent.mkdir(parents=True, exist_ok=True)
    image = Image.new('RGB', size, color)
    if taken:
        exif = Image.Exif()
        exif[ExifTags.Base.DateTime] = taken
        image.save(path, format='JPEG', exif=exif.tobytes())
    else:
        image.save(path, format='JPEG')
    return path


def make_heic(path: Path, taken: Optional[str] = None, size=(64, 48), color=(30, 120, 200)) -> Path:
    """Write a real HEIF container through pillow-heif, optionally with an EXIF DateTime tag."""
    register_heif_opener()
    path.parent.mkdir(parents=True, exist_ok=True)
    image = Image.new('RGB', size, color)
    if taken:
        exif = Image.Exif()
        exif[ExifTags.Base.DateTime] = taken
        image.save(path, format='HEIF', quality=90, exif=exif.tobytes())
    else:
        image.save(path, format='HEIF', quality=90)
    return path


def make_video(path: Path, size: int = 1024) -> Path:
    """Write a placeholder video file of the given size."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b'\x00' * size)
    return path


@pytest.fixture
def fake_session():
    """Fake HTTP session accepting every request."""
    return FakeSession()


@pytest.fixture
def telegram_config() -> TelegramConfig:
    return TelegramConfig(
        bot_token='123:MAIN',
        chat_id='-10042',
        info_bot_token='456:INFO',
        cloud_api_url='https://api.example.test',
        proxy_api_url='http://proxy.example.test:8081',
    )


@pytest.fixture
def processing_config(tmp_path) -> ProcessingConfig:
    """Processing settings with no sleeping and no progress bars."""
    return ProcessingConfig(
        state_dir=str(tmp_path / 'state'),
        scratch_dir=str(tmp_path / 'scratch'),
        retry_backoff=0.0,
        batch_pause=0.0,
        parallel_jobs=2,
        show_progress=False,
    )


@pytest.fixture
def sync_config(telegram_config, processing_config, tmp_path) -> SyncConfig:
    return SyncConfig(
        telegram=telegram_config,
        processing=processing_config,
        logging=LoggingConfig(log_dir=str(tmp_path / 'logs')),
    )


@pytest.fixture
def sample_config(tmp_path) -> Dict:
    """Fixture providing a sample configuration dictionary."""
    return {
        'telegram': {
            'bot_token': '123:MAIN',
            'chat_id': '-10042',
            'info_bot_token': '456:INFO',
            'proxy_api_url': 'http://localhost:8081/',
        },
        'processing': {
            'state_dir': str(tmp_path / 'state'),
            'scratch_dir': str(tmp_path / 'scratch'),
            'batch_size': 10,
            'parallel_jobs': 3,
            'group_routing': 'proxy',
        },
        'library': {
            'mount_path': str(tmp_path / 'iphone'),
        },
        'logging': {
            'level': 'INFO',
            'log_dir': str(tmp_path / 'logs'),
        }
    }


@pytest.fixture
def config_file(tmp_path, sample_config) -> Path:
    """Create a temporary config.yaml file."""
    config_path = tmp_path / 'config.yaml'
    with open(config_path, 'w') as f:
        yaml.dump(sample_config, f)
    return config_path


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the configuration reads."""
    for name in ('BOT_TOKEN', 'CHAT_ID', 'INFO_BOT_TOKEN', 'API_SERVER', 'TELEGRAM_API',
                 'BATCH_SIZE', 'MAX_TELEGRAM_SIZE', 'PARALLEL_JOBS', 'STATE_DIR',
                 'SCRATCH_DIR', 'LOG_DIR'):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def album_dir(tmp_path) -> Path:
    """Empty album directory named 'Holiday'."""
    path = tmp_path / 'albums' / 'Holiday'
    path.mkdir(parents=True)
    return path


@pytest.fixture
def jpeg_factory():
    """Factory writing small real JPEG files."""
    return make_jpeg


@pytest.fixture
def heic_factory():
    """Factory writing small real HEIC files."""
    return make_heic


@pytest.fixture
def video_factory():
    """Factory writing placeholder video files."""
    return make_video


@pytest.fixture
def session_factory():
    """Factory building fake sessions with a custom request handler."""
    return FakeSession


@pytest.fixture
def response_factory():
    """Factory building fake HTTP responses."""
    return FakeResponse
