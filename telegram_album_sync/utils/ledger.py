"""
Durable tracker ledgers for sync resumption.

Each ledger is a plain text file holding one absolute path per line. Writes
are line appends; removals rewrite the file to a temporary sibling and rename
it over the original, so a concurrent reader never sees a half-edited file.
"""
import logging
import os
import shutil
import threading
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from telegram_album_sync.exceptions import LedgerError

logger = logging.getLogger(__name__)

# Extensions a HEIC original may have been recorded under in older ledgers
_CROSS_MATCH_EXTENSIONS = {'.heic', '.jpg', '.jpeg'}


class ResetScope(Enum):
    """How much persisted state a reset clears."""
    NONE = "none"
    UPLOADS = "uploads"
    ALL = "all"


class Ledger:
    """One append-only ledger file with a write-through in-memory set."""

    def __init__(self, path: Path, lock: Optional[threading.RLock] = None):
        """
        Initialize ledger.

        Args:
            path: Ledger file path
            lock: Lock shared with sibling ledgers; a private one is created if omitted
        """
        self.path = path
        self._lock = lock or threading.RLock()
        self._entries: Set[str] = set()

    def load(self) -> None:
        """Rebuild the in-memory set from the file. Duplicate lines collapse."""
        with self._lock:
            self._entries = set()
            if not self.path.exists():
                return
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    for line in f:
                        entry = line.rstrip('\n')
                        if entry:
                            self._entries.add(entry)
            except (IOError, OSError) as e:
                raise LedgerError(f"Could not read ledger {self.path}: {e}") from e
            logger.debug(f"Loaded {len(self._entries)} entries from {self.path.name}")

    def add(self, entry: str) -> bool:
        """
        Append an entry unless it is already present.

        Returns:
            True if a line was written, False if the entry was already recorded
        """
        with self._lock:
            if entry in self._entries:
                return False
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(entry + '\n')
                    f.flush()
            except (IOError, OSError) as e:
                raise LedgerError(f"Could not append to ledger {self.path}: {e}") from e
            self._entries.add(entry)
            return True

    def remove(self, entries: Iterable[str]) -> int:
        """
        Remove entries by rewriting the file and renaming it into place.

        Returns:
            Number of entries removed
        """
        with self._lock:
            to_remove = self._entries.intersection(entries)
            if not to_remove:
                return 0

            tmp_path = self.path.with_name(self.path.name + '.tmp')
            try:
                kept_lines = []
                if self.path.exists():
                    with open(self.path, 'r', encoding='utf-8') as f:
                        kept_lines = [
                            line for line in f
                            if line.rstrip('\n') and line.rstrip('\n') not in to_remove
                        ]
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    f.writelines(kept_lines)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except (IOError, OSError) as e:
                raise LedgerError(f"Could not rewrite ledger {self.path}: {e}") from e

            self._entries -= to_remove
            return len(to_remove)

    def entries(self) -> Set[str]:
        """Snapshot of current entries."""
        with self._lock:
            return set(self._entries)

    def __contains__(self, entry: str) -> bool:
        with self._lock:
            return entry in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class TrackerStore:
    """
    Per-album repository of sync ledgers.

    Upload ledgers (sent, failed, skipped) and the manifest are scoped to the
    run mode: test mode uses a ``_test`` suffix so test runs never touch
    production state. The converted ledger is shared between modes because
    converted artifacts are shared too.
    """

    def __init__(self, state_dir: Path, album_name: str, test_mode: bool = False):
        """
        Initialize tracker store.

        Args:
            state_dir: Directory holding ledger files
            album_name: Album the ledgers belong to
            test_mode: Use the separate test-mode upload ledgers
        """
        self.state_dir = Path(state_dir)
        self.album_name = album_name
        self.test_mode = test_mode
        self.state_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        suffix = self.mode_suffix(test_mode)

        self.sent = Ledger(self._ledger_path('sent', suffix), self._lock)
        self.failed = Ledger(self._ledger_path('failed', suffix), self._lock)
        self.skipped = Ledger(self._ledger_path('skipped', suffix), self._lock)
        self.converted = Ledger(self._ledger_path('converted', ''), self._lock)
        self.manifest_path = self._ledger_path('manifest', suffix)

        self._sent_stems: Set[str] = set()

    @staticmethod
    def mode_suffix(test_mode: bool) -> str:
        """File-name suffix for the given run mode."""
        return '_test' if test_mode else ''

    def _ledger_path(self, kind: str, suffix: str) -> Path:
        return self.state_dir / f"{kind}_{self.album_name}{suffix}.txt"

    def load(self) -> None:
        """Rebuild all in-memory caches from the ledger files."""
        with self._lock:
            for ledger in (self.sent, self.failed, self.skipped, self.converted):
                ledger.load()
            self._sent_stems = {
                self._stem_key(entry) for entry in self.sent.entries()
                if Path(entry).suffix.lower() in _CROSS_MATCH_EXTENSIONS
            }
        logger.info(
            f"📂 Loaded tracker state for '{self.album_name}'"
            f"{' (test mode)' if self.test_mode else ''}: "
            f"{len(self.sent)} sent, {len(self.failed)} failed, "
            f"{len(self.converted)} converted, {len(self.skipped)} skipped"
        )

    @staticmethod
    def _stem_key(path: str) -> str:
        return Path(path).stem

    # Queries
    def is_sent(self, source_path: str) -> bool:
        """
        Check whether a source has already been delivered.

        Exact path membership is authoritative. A HEIC original also counts as
        sent when a sent entry with the same file stem and a jpg/heic extension
        exists, which covers ledgers that recorded the converted JPG path.
        """
        with self._lock:
            if source_path in self.sent:
                return True
            if Path(source_path).suffix.lower() == '.heic':
                return self._stem_key(source_path) in self._sent_stems
            return False

    def is_converted(self, source_path: str) -> bool:
        """Check whether a source has a recorded successful conversion."""
        return source_path in self.converted

    def is_failed(self, source_path: str) -> bool:
        """Check whether a source is currently recorded as failed."""
        return source_path in self.failed

    def counts(self) -> Dict[str, int]:
        """Current ledger sizes."""
        return {
            'sent': len(self.sent),
            'failed': len(self.failed),
            'converted': len(self.converted),
            'skipped': len(self.skipped),
        }

    # Mutations
    def mark_sent(self, source_path: str) -> None:
        """Record a successful delivery and prune any failure entry."""
        with self._lock:
            self.sent.add(source_path)
            if Path(source_path).suffix.lower() in _CROSS_MATCH_EXTENSIONS:
                self._sent_stems.add(self._stem_key(source_path))
            self.failed.remove([source_path])

    def mark_failed(self, source_path: str) -> None:
        """Record a recoverable failure (ignored if the source was already sent)."""
        with self._lock:
            if source_path in self.sent:
                return
            self.failed.add(source_path)

    def mark_converted(self, source_path: str) -> None:
        """Record a successful conversion and prune any failure entry."""
        with self._lock:
            self.converted.add(source_path)
            self.failed.remove([source_path])

    def mark_skipped(self, source_path: str) -> None:
        """Record a source that will never be uploaded (unsupported format)."""
        self.skipped.add(source_path)

    def forget_conversions(self, source_paths: Iterable[str]) -> int:
        """
        Drop conversion records so the next conversion stage redoes them.

        Returns:
            Number of conversion records removed
        """
        paths = list(source_paths)
        with self._lock:
            removed = self.converted.remove(paths)
            self.failed.remove(paths)
        return removed

    def reset(self, scope: ResetScope, scratch_dir: Optional[Path] = None) -> List[Path]:
        """
        Clear persisted state.

        ``UPLOADS`` clears the sent, failed, skipped and manifest files of the
        current mode and keeps conversion state. ``ALL`` clears the upload
        state of both modes, the shared converted ledger and the scratch
        directory.

        Args:
            scope: Reset scope
            scratch_dir: Album scratch directory to remove for ``ALL``

        Returns:
            List of files that were cleared
        """
        if scope == ResetScope.NONE:
            return []

        with self._lock:
            if scope == ResetScope.UPLOADS:
                suffixes = [self.mode_suffix(self.test_mode)]
                kinds = ['sent', 'failed', 'skipped', 'manifest']
            else:
                suffixes = ['', '_test']
                kinds = ['sent', 'failed', 'skipped', 'manifest', 'converted']

            cleared = []
            for suffix in suffixes:
                for kind in kinds:
                    path = self._ledger_path(kind, suffix)
                    if path.exists():
                        logger.info(f"🧹 Clearing: {path}")
                        path.write_text('', encoding='utf-8')
                        cleared.append(path)

            if scope == ResetScope.ALL and scratch_dir is not None and scratch_dir.exists():
                logger.info(f"🧹 Removing scratch directory: {scratch_dir}")
                shutil.rmtree(scratch_dir)

            self.load()
            return cleared
