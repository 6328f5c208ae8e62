"""
Operator notifications sent to the chat as plain text messages.

Notifications are best effort: a failed notification is logged and never
interrupts the sync.
"""
import logging
from typing import Optional

import requests

from telegram_album_sync.reporting.statistics import SyncStatistics
from telegram_album_sync.uploader.telegram_client import TelegramClient

logger = logging.getLogger(__name__)


class Notifier:
    """Formats and sends run progress messages for one album."""

    def __init__(self, client: Optional[TelegramClient], album_name: str, test_mode: bool = False):
        """
        Initialize notifier.

        Args:
            client: Client bound to the notification bot token, or None to only log
            album_name: Album the messages refer to
            test_mode: Mark completion messages as test runs
        """
        self.client = client
        self.album_name = album_name
        self.test_mode = test_mode

    def send(self, text: str) -> bool:
        """
        Send one message, swallowing delivery errors.

        Returns:
            True if the backend accepted the message
        """
        logger.info(f"📣 {text}")
        if self.client is None:
            return False
        try:
            response = self.client.send_message(text)
        except requests.RequestException as e:
            logger.warning(f"Notification failed: {e}")
            return False
        if not response.ok:
            logger.warning(f"Notification rejected: {response}")
        return response.ok

    def reset_done(self, all_state: bool) -> bool:
        if all_state:
            return self.send(f"CLEANUP 🧹 album={self.album_name} ALL state files cleaned (production + test)")
        mode = "test" if self.test_mode else "production"
        return self.send(
            f"CLEANUP 🧪 album={self.album_name} {mode} upload state cleaned (conversion preserved)"
        )

    def endpoint_unavailable(self, url: str, detail: str) -> bool:
        return self.send(f"ERROR ❌ album={self.album_name} API server not available at {url} ({detail})")

    def resume(self, sent: int, failed: int) -> bool:
        return self.send(f"RESUME 🔄 album={self.album_name} sent={sent} failed={failed}")

    def conversion_done(self, converted: int, skipped: int, failed: int, total: int) -> bool:
        return self.send(
            f"PHASE1 ✅ album={self.album_name} converted={converted} "
            f"skipped={skipped} failed={failed} total={total}"
        )

    def manifest_ready(self, total: int) -> bool:
        return self.send(f"PHASE2 ✅ album={self.album_name} manifest_ready={total} files sorted chronologically")

    def nothing_new(self) -> bool:
        return self.send(f"COMPLETE 🎯 album={self.album_name} no new media to process")

    def batch_done(self, batch_number: int, items: int, total_sent: int,
                   failed: int, pending: int) -> bool:
        return self.send(
            f"BATCH ✅ album={self.album_name} batch={batch_number} items={items} "
            f"total_sent={total_sent} failed={failed} pending={pending}"
        )

    def run_error(self, error: BaseException) -> bool:
        return self.send(f"ERROR ❌ album={self.album_name} {type(error).__name__}: {error}")

    def final(self, stats: SyncStatistics) -> bool:
        """Send the end-of-run summary."""
        if self.test_mode:
            return self.send(
                f"TEST COMPLETE 🧪 album={self.album_name} sent={stats.sent} "
                f"failed={stats.failed} total={stats.total_files} (source files preserved)"
            )
        return self.send(
            f"COMPLETE 🎉 album={self.album_name} sent={stats.sent} "
            f"failed={stats.failed} total={stats.total_files}"
        )
