"""
Batch uploader: send manifest entries to the chat in chronological batches.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import requests
from tqdm import tqdm

from telegram_album_sync.config import ProcessingConfig
from telegram_album_sync.processor.manifest import ManifestEntry
from telegram_album_sync.processor.media_scanner import MediaKind
from telegram_album_sync.reporting.notifier import Notifier
from telegram_album_sync.uploader.telegram_client import ApiResponse, Endpoint, TelegramClient
from telegram_album_sync.utils.ledger import TrackerStore
from telegram_album_sync.utils.parallel import BackgroundJobs
from telegram_album_sync.utils.retry import call_with_retry

logger = logging.getLogger(__name__)

# A request that raised without an HTTP response (connection reset, timeout,
# file vanished while opening) is retried like a rejected response.
RETRYABLE_ERRORS = (requests.RequestException, OSError)


@dataclass
class UploadSummary:
    """Counters for one uploader run."""
    batches: int = 0
    uploaded: int = 0
    failed: int = 0
    requests: int = 0


class BatchUploader:
    """
    Uploads manifest entries batch by batch.

    Within a batch, photos and videos up to the size threshold go out as one
    media group (or one single request when only one is eligible). Videos
    above the threshold are sent individually through the proxy as background
    jobs, which ``finish`` joins.
    """

    def __init__(self, tracker: TrackerStore, client: TelegramClient,
                 processing: ProcessingConfig, notifier: Optional[Notifier] = None,
                 background: Optional[BackgroundJobs] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize uploader.

        Args:
            tracker: Ledger repository for the album
            client: Bot API client used for uploads
            processing: Batch size, thresholds, retry and routing settings
            notifier: Receives a progress message after each batch
            background: Job tracker for oversize videos (created if omitted)
            sleep: Sleep function for retry backoff and batch pauses, injectable for tests
        """
        self.tracker = tracker
        self.client = client
        self.processing = processing
        self.notifier = notifier
        self._sleep = sleep
        self.background = background or BackgroundJobs(
            max_outstanding=processing.max_background_jobs,
            min_available_memory_mb=processing.min_available_memory_mb,
            sleep=sleep,
        )
        self.summary = UploadSummary()
        self._lock = threading.Lock()

    # Routing
    def is_oversize(self, entry: ManifestEntry) -> bool:
        """True for videos too large for the cloud endpoint."""
        return entry.kind == MediaKind.VIDEO and self._size(entry) > self.processing.max_upload_size

    @staticmethod
    def _size(entry: ManifestEntry) -> int:
        try:
            return entry.upload_path.stat().st_size
        except OSError:
            return 0

    def group_endpoint(self, entries: List[ManifestEntry]) -> Endpoint:
        """Endpoint for a media group under the configured routing policy."""
        if self.processing.group_routing == 'size':
            total = sum(self._size(entry) for entry in entries)
            return Endpoint.PROXY if total > self.processing.max_upload_size else Endpoint.CLOUD
        return Endpoint.PROXY

    def single_endpoint(self, entry: ManifestEntry) -> Endpoint:
        """Endpoint for a single photo or video."""
        if entry.kind == MediaKind.VIDEO and self.is_oversize(entry):
            return Endpoint.PROXY
        return Endpoint.CLOUD

    # Sending
    def _send(self, request: Callable[[], ApiResponse], entries: List[ManifestEntry],
              description: str) -> bool:
        outcome = call_with_retry(
            request,
            max_attempts=self.processing.retry_attempts,
            backoff=self.processing.retry_backoff,
            is_success=lambda response: response.ok,
            exceptions=RETRYABLE_ERRORS,
            description=description,
            sleep=self._sleep,
        )

        with self._lock:
            self.summary.requests += outcome.attempts
            if outcome.succeeded:
                self.summary.uploaded += len(entries)
            else:
                self.summary.failed += len(entries)

        for entry in entries:
            if outcome.succeeded:
                self.tracker.mark_sent(str(entry.source_path))
            else:
                self.tracker.mark_failed(str(entry.source_path))
        return outcome.succeeded

    def send_group(self, entries: List[ManifestEntry]) -> bool:
        """Send 2-10 entries as one media group."""
        endpoint = self.group_endpoint(entries)
        media = [(entry.upload_path, entry.kind) for entry in entries]
        sent = self._send(
            lambda: self.client.send_media_group(media, endpoint=endpoint),
            entries,
            f"sendMediaGroup ({len(entries)} items via {endpoint.value})",
        )
        if sent:
            logger.info(f"✅ Sent media group of {len(entries)} via {endpoint.value}")
        else:
            logger.error(f"❌ Media group of {len(entries)} failed: "
                         f"{', '.join(entry.source_path.name for entry in entries)}")
        return sent

    def send_single(self, entry: ManifestEntry) -> bool:
        """Send one entry with sendPhoto or sendVideo."""
        endpoint = self.single_endpoint(entry)
        if entry.kind == MediaKind.VIDEO:
            large = endpoint == Endpoint.PROXY
            request = lambda: self.client.send_video(entry.upload_path, endpoint=endpoint, large=large)
            method = 'sendVideo'
        else:
            request = lambda: self.client.send_photo(entry.upload_path, endpoint=endpoint)
            method = 'sendPhoto'

        sent = self._send(request, [entry], f"{method} {entry.source_path.name} via {endpoint.value}")
        if sent:
            logger.info(f"✅ Sent {entry.source_path.name} via {endpoint.value}")
        else:
            logger.error(f"❌ Failed to send {entry.source_path.name}")
        return sent

    def _send_oversize(self, entry: ManifestEntry) -> bool:
        size_mb = self._size(entry) / (1024 * 1024)
        logger.info(f"📹 Sending large video {entry.source_path.name} ({size_mb:.1f}MB) via proxy")
        return self._send(
            lambda: self.client.send_video(entry.upload_path, endpoint=Endpoint.PROXY, large=True),
            [entry],
            f"sendVideo {entry.source_path.name} via proxy",
        )

    def send_batch(self, batch: List[ManifestEntry]) -> None:
        """Send one batch: the eligible items together, oversize videos in the background."""
        eligible = [entry for entry in batch if not self.is_oversize(entry)]
        oversize = [entry for entry in batch if self.is_oversize(entry)]

        if len(eligible) >= 2:
            self.send_group(eligible)
        elif len(eligible) == 1:
            self.send_single(eligible[0])

        for entry in oversize:
            self.background.submit(self._send_oversize, entry)

    # Driver
    def _pending_entries(self, entries: List[ManifestEntry]) -> List[ManifestEntry]:
        pending = []
        for entry in entries:
            source = str(entry.source_path)
            if self.tracker.is_sent(source):
                continue
            if not entry.upload_path.exists():
                logger.error(f"❌ Upload file missing: {entry.upload_path}")
                self.tracker.mark_failed(source)
                with self._lock:
                    self.summary.failed += 1
                continue
            pending.append(entry)
        return pending

    def upload(self, entries: List[ManifestEntry]) -> UploadSummary:
        """
        Upload all unsent entries in manifest order.

        Background jobs may still be running when this returns; call
        ``finish`` before reporting the run complete.

        Args:
            entries: Manifest entries in chronological order

        Returns:
            UploadSummary for the batches sent so far
        """
        pending = self._pending_entries(entries)
        batch_size = self.processing.batch_size
        batches = [pending[i:i + batch_size] for i in range(0, len(pending), batch_size)]

        if not batches:
            logger.info("✅ Nothing to upload")
            return self.summary

        logger.info(f"🚀 Uploading {len(pending)} files in {len(batches)} batches of up to {batch_size}")

        with tqdm(total=len(pending), desc="Uploading", unit="file",
                  disable=not self.processing.show_progress) as pbar:
            remaining = len(pending)
            for number, batch in enumerate(batches, start=1):
                self.send_batch(batch)
                self.summary.batches += 1
                remaining -= len(batch)
                pbar.update(len(batch))

                if self.notifier is not None:
                    counts = self.tracker.counts()
                    self.notifier.batch_done(number, len(batch), counts['sent'],
                                             counts['failed'], remaining)

                if number < len(batches) and self.processing.batch_pause > 0:
                    self._sleep(self.processing.batch_pause)

        return self.summary

    def finish(self) -> UploadSummary:
        """Wait for background uploads and return the final summary."""
        self.background.join()
        return self.summary

    def close(self) -> None:
        """Release background worker threads."""
        self.background.shutdown()
