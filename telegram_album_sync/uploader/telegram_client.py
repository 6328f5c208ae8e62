"""
Thin client for the Telegram Bot API.

The same client talks to either the cloud Bot API or a local Bot API server
(the proxy), which accepts much larger uploads. Every call returns an
``ApiResponse``; connection-level problems surface as ``requests``
exceptions so the caller's retry policy can handle them.
"""
import json
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from telegram_album_sync.config import TelegramConfig
from telegram_album_sync.processor.media_scanner import MediaKind

logger = logging.getLogger(__name__)


class Endpoint(Enum):
    """Which Bot API server a request goes to."""
    CLOUD = "cloud"
    PROXY = "proxy"


@dataclass
class ApiResponse:
    """Outcome of one Bot API request that received an HTTP response."""
    status_code: int
    ok: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None

    @classmethod
    def from_http(cls, response: requests.Response) -> 'ApiResponse':
        """Build from an HTTP response; success needs status 200 and ``"ok": true``."""
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        description = payload.get('description')
        if description is None and response.status_code != 200:
            description = (response.text or '')[:200] or f"HTTP {response.status_code}"

        return cls(
            status_code=response.status_code,
            ok=response.status_code == 200 and payload.get('ok') is True,
            payload=payload,
            description=description,
        )

    def __str__(self) -> str:
        if self.ok:
            return f"HTTP {self.status_code} ok"
        return f"HTTP {self.status_code}: {self.description or 'not ok'}"


class TelegramClient:
    """Sends media and messages to one chat with one bot token."""

    def __init__(self, bot_token: str, chat_id: str, config: TelegramConfig,
                 session: Optional[requests.Session] = None):
        """
        Initialize client.

        Args:
            bot_token: Bot token used in the request URL
            chat_id: Destination chat
            config: Endpoint base URLs and timeouts
            session: HTTP session (a new one is created if omitted)
        """
        if not bot_token:
            raise ValueError("bot_token is required")
        self.bot_token = bot_token
        self.chat_id = str(chat_id)
        self.config = config
        self.session = session or requests.Session()

    def _base_url(self, endpoint: Endpoint) -> str:
        if endpoint == Endpoint.PROXY:
            return self.config.proxy_api_url
        return self.config.cloud_api_url

    def method_url(self, method: str, endpoint: Endpoint = Endpoint.CLOUD) -> str:
        """Full URL of a Bot API method."""
        return f"{self._base_url(endpoint)}/bot{self.bot_token}/{method}"

    def _post(self, method: str, endpoint: Endpoint, timeout: Tuple[float, float],
              data: Optional[Dict[str, Any]] = None,
              files: Optional[Dict[str, Any]] = None) -> ApiResponse:
        form = {'chat_id': self.chat_id}
        if data:
            form.update(data)
        logger.debug(f"POST {method} via {endpoint.value} endpoint")
        response = self.session.post(
            self.method_url(method, endpoint),
            data=form,
            files=files,
            timeout=timeout,
        )
        return ApiResponse.from_http(response)

    def _timeout(self, read: float) -> Tuple[float, float]:
        return (self.config.connect_timeout, read)

    def get_me(self, endpoint: Endpoint = Endpoint.CLOUD) -> ApiResponse:
        """Check the bot token against an endpoint."""
        response = self.session.get(
            self.method_url('getMe', endpoint),
            timeout=self._timeout(self.config.read_timeout),
        )
        return ApiResponse.from_http(response)

    def send_message(self, text: str, endpoint: Endpoint = Endpoint.CLOUD) -> ApiResponse:
        """Send a plain text message."""
        return self._post('sendMessage', endpoint,
                          self._timeout(self.config.read_timeout),
                          data={'text': text})

    def send_photo(self, path: Path, endpoint: Endpoint = Endpoint.CLOUD) -> ApiResponse:
        """Upload one photo."""
        with open(path, 'rb') as f:
            return self._post('sendPhoto', endpoint,
                              self._timeout(self.config.read_timeout),
                              files={'photo': (path.name, f)})

    def send_video(self, path: Path, endpoint: Endpoint = Endpoint.CLOUD,
                   large: bool = False) -> ApiResponse:
        """
        Upload one video with streaming support.

        Args:
            path: Video file
            endpoint: Target endpoint
            large: Use the extended read timeout for files above the cloud limit
        """
        read = self.config.large_file_timeout if large else self.config.video_timeout
        with open(path, 'rb') as f:
            return self._post('sendVideo', endpoint, self._timeout(read),
                              data={'supports_streaming': 'true'},
                              files={'video': (path.name, f)})

    def send_media_group(self, media: Sequence[Tuple[Path, MediaKind]],
                         endpoint: Endpoint = Endpoint.CLOUD) -> ApiResponse:
        """
        Upload 2-10 photos and videos as one album message.

        Args:
            media: (path, kind) pairs in display order
            endpoint: Target endpoint
        """
        if not 2 <= len(media) <= 10:
            raise ValueError(f"A media group needs 2-10 items, got {len(media)}")

        descriptors: List[Dict[str, str]] = []
        with ExitStack() as stack:
            files = {}
            for index, (path, kind) in enumerate(media):
                attach_name = f"media{index}"
                files[attach_name] = (path.name, stack.enter_context(open(path, 'rb')))
                descriptors.append({
                    'type': 'video' if kind == MediaKind.VIDEO else 'photo',
                    'media': f"attach://{attach_name}",
                })

            return self._post('sendMediaGroup', endpoint,
                              self._timeout(self.config.read_timeout),
                              data={'media': json.dumps(descriptors)},
                              files=files)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
