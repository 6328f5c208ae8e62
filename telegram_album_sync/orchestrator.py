"""
Sync orchestrator: runs one album through conversion, ordering and upload.
"""
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import requests

from telegram_album_sync.config import SyncConfig
from telegram_album_sync.exceptions import EndpointUnavailableError, LedgerError, SyncError
from telegram_album_sync.processor.conversion import ConversionStage
from telegram_album_sync.processor.heic_converter import HeicConverter
from telegram_album_sync.processor.manifest import ManifestBuilder, ManifestEntry
from telegram_album_sync.processor.media_scanner import scan_album
from telegram_album_sync.reporting.notifier import Notifier
from telegram_album_sync.reporting.statistics import SyncStatistics
from telegram_album_sync.uploader.batch_uploader import BatchUploader
from telegram_album_sync.uploader.telegram_client import TelegramClient
from telegram_album_sync.utils.health_check import HealthChecker
from telegram_album_sync.utils.ledger import ResetScope, TrackerStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one orchestrated run."""
    album_name: str
    test_mode: bool
    statistics: SyncStatistics
    nothing_new: bool = False

    @property
    def success(self) -> bool:
        """True when nothing failed during this run."""
        return self.statistics.failed_this_run == 0 and self.statistics.conversion_failed == 0


class SyncOrchestrator:
    """Orchestrates the sync of one album directory."""

    def __init__(self, config: SyncConfig, album_dir: Path, test_mode: bool = False,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the orchestrator.

        Args:
            config: Loaded configuration
            album_dir: Album directory to sync; its name is the album name
            test_mode: Use test-mode ledgers and the notification bot for uploads
            session: HTTP session shared by all clients (created if omitted)
            sleep: Sleep function for backoff and pauses, injectable for tests

        Raises:
            ConfigurationError: If the bot token or chat id is missing
        """
        config.validate_credentials()

        self.config = config
        self.album_dir = Path(album_dir).absolute()
        self.album_name = self.album_dir.name
        self.test_mode = test_mode
        self._sleep = sleep

        processing = config.processing
        telegram = config.telegram
        self.scratch_dir = processing.scratch_path / self.album_name

        self.tracker = TrackerStore(processing.state_path, self.album_name, test_mode=test_mode)
        self.converter = HeicConverter(max_dimension=processing.max_dimension,
                                       quality=processing.jpeg_quality)

        self._owns_session = session is None
        session = session or requests.Session()
        # Test runs upload with the notification bot so they land in a separate feed
        upload_token = telegram.bot_token
        if test_mode and telegram.info_bot_token:
            upload_token = telegram.info_bot_token
        notify_token = telegram.info_bot_token or telegram.bot_token

        self.upload_client = TelegramClient(upload_token, telegram.chat_id, telegram, session=session)
        self.preflight_client = TelegramClient(telegram.bot_token, telegram.chat_id, telegram, session=session)
        self.notifier = Notifier(
            TelegramClient(notify_token, telegram.chat_id, telegram, session=session),
            self.album_name,
            test_mode=test_mode,
        )

        self.statistics = SyncStatistics(album_name=self.album_name, test_mode=test_mode)

    # Steps
    def reset_state(self, scope: ResetScope) -> None:
        """Clear ledgers (and for ALL, the scratch directory) before the run."""
        if scope == ResetScope.NONE:
            return
        cleared = self.tracker.reset(scope, scratch_dir=self.scratch_dir)
        logger.info(f"🧹 Reset '{scope.value}' cleared {len(cleared)} state files")
        self.notifier.reset_done(all_state=scope == ResetScope.ALL)

    def repair_conversions(self) -> int:
        """
        Forget conversions whose artifact no longer exists so they are redone.

        Returns:
            Number of conversion records dropped
        """
        stale = [
            source for source in self.tracker.converted.entries()
            if not self.converter.artifact_path(Path(source), self.scratch_dir).exists()
        ]
        if not stale:
            logger.info("✅ All recorded conversions have their artifacts")
            return 0
        removed = self.tracker.forget_conversions(stale)
        logger.info(f"🔧 Dropped {removed} conversion records with missing artifacts")
        return removed

    def preflight(self) -> None:
        """
        Check state directory access and the local Bot API server.

        Raises:
            LedgerError: If the state directory is not writable
            EndpointUnavailableError: If the proxy does not answer getMe
        """
        checker = HealthChecker(self.preflight_client, self.config.processing.state_path,
                                scratch_dir=self.config.processing.scratch_path)
        all_passed, results = checker.check_all()
        checker.log_results()
        if all_passed:
            return

        for result in results:
            if not result.is_blocking:
                continue
            if result.name == "Bot API Proxy":
                url = self.config.telegram.proxy_api_url
                self.notifier.endpoint_unavailable(url, result.message)
                raise EndpointUnavailableError(result.message, endpoint=url)
            raise LedgerError(result.message)

    def _announce_resume(self) -> None:
        counts = self.tracker.counts()
        if counts['sent'] or counts['failed']:
            logger.info(f"🔄 Resuming: {counts['sent']} already sent, {counts['failed']} failed")
            self.notifier.resume(counts['sent'], counts['failed'])

    def _cleanup_scratch(self) -> None:
        if self.test_mode:
            # Artifacts are shared with production, which may not have sent them yet
            logger.info(f"🧪 Test mode: keeping converted artifacts in {self.scratch_dir}")
            return
        if not self.scratch_dir.exists():
            return
        removed = 0
        for source in self.tracker.converted.entries():
            if not self.tracker.is_sent(source):
                continue
            artifact = self.converter.artifact_path(Path(source), self.scratch_dir)
            try:
                if artifact.exists():
                    artifact.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"Could not remove {artifact}: {e}")
        logger.info(f"🧹 Removed {removed} uploaded artifacts from {self.scratch_dir}")

        try:
            next(self.scratch_dir.iterdir())
        except StopIteration:
            self.scratch_dir.rmdir()
            logger.info(f"🧹 Removed empty scratch directory {self.scratch_dir}")

    def close(self) -> None:
        """Close the HTTP session if this orchestrator created it."""
        if self._owns_session:
            self.upload_client.close()

    # Driver
    def run(self, reset: ResetScope = ResetScope.NONE, retry_failed: bool = False,
            repair_conversions: bool = False) -> SyncResult:
        """
        Run the full sync for the album.

        Args:
            reset: State to clear before starting
            retry_failed: Only upload sources currently recorded as failed
            repair_conversions: Redo conversions whose artifact is missing

        Returns:
            SyncResult with run statistics

        Raises:
            EndpointUnavailableError: If the proxy pre-flight fails
            SyncError: On unrecoverable errors (ledger IO, missing album directory)
        """
        mode = "TEST" if self.test_mode else "PRODUCTION"
        logger.info(f"🚀 Starting sync of '{self.album_name}' ({mode} mode) from {self.album_dir}")

        try:
            return self._run_pipeline(reset, retry_failed, repair_conversions)
        finally:
            self.close()

    def _run_pipeline(self, reset: ResetScope, retry_failed: bool,
                      repair_conversions: bool) -> SyncResult:
        self.reset_state(reset)
        self.tracker.load()
        self.preflight()

        # Repairs and conversion retries prune the failed ledger, so retry mode works from this snapshot
        failed_at_start = self.tracker.failed.entries()
        if repair_conversions:
            self.repair_conversions()

        result = SyncResult(self.album_name, self.test_mode, self.statistics)
        uploader: Optional[BatchUploader] = None
        try:
            self._announce_resume()

            items, _ = scan_album(self.album_dir)
            self.statistics.total_files = sum(1 for item in items if item.is_supported)

            stage = ConversionStage(self.tracker, self.converter, self.scratch_dir,
                                    parallel_jobs=self.config.processing.parallel_jobs)
            conversion = stage.run(items)
            self.statistics.converted = conversion.converted
            self.statistics.conversion_skipped = conversion.skipped
            self.statistics.conversion_failed = conversion.failed
            if conversion.total:
                self.notifier.conversion_done(conversion.converted, conversion.skipped,
                                              conversion.failed, conversion.total)

            builder = ManifestBuilder(self.tracker, self.scratch_dir, self.converter.artifact_path)
            entries: List[ManifestEntry] = builder.build(
                self.album_dir, retry_only=retry_failed, retry_sources=failed_at_start
            )
            builder.write(entries, self.tracker.manifest_path)
            self.statistics.manifest_entries = len(entries)

            if not entries:
                logger.info("✅ No new media to process")
                self.notifier.nothing_new()
                result.nothing_new = True
                return result

            self.notifier.manifest_ready(len(entries))

            uploader = BatchUploader(self.tracker, self.upload_client, self.config.processing,
                                     notifier=self.notifier, sleep=self._sleep)
            uploader.upload(entries)
            summary = uploader.finish()

            self.statistics.batches = summary.batches
            self.statistics.uploaded_this_run = summary.uploaded
            self.statistics.failed_this_run = summary.failed
            self.statistics.requests_made = summary.requests
            return result

        except SyncError as e:
            logger.error(f"❌ Sync of '{self.album_name}' aborted: {e}", exc_info=True)
            self.notifier.run_error(e)
            raise
        finally:
            if uploader is not None:
                uploader.close()
            self.statistics.finish(self.tracker.counts())
            logger.info(f"📊 {self.statistics.summary()}")
            if not result.nothing_new:
                self.notifier.final(self.statistics)
            if self.config.processing.cleanup_scratch:
                self._cleanup_scratch()
