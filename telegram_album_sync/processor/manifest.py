"""
Build the chronological upload manifest for an album.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Set

from PIL import ExifTags, Image

from telegram_album_sync.exceptions import ManifestError
from telegram_album_sync.processor.media_scanner import MediaKind, SourceItem, scan_album
from telegram_album_sync.utils.ledger import TrackerStore

logger = logging.getLogger(__name__)

EXIF_DATE_FORMAT = '%Y:%m:%d %H:%M:%S'
EPOCH_FALLBACK = 0

MISSING_ARTIFACT_REASON = "converted artifact missing"


@dataclass(frozen=True)
class ManifestEntry:
    """One upload task, in manifest order."""
    timestamp: int
    source_path: Path
    upload_path: Path
    kind: MediaKind

    def to_line(self) -> str:
        """Serialize as ``timestamp|source_path|upload_path|kind``."""
        return f"{self.timestamp}|{self.source_path}|{self.upload_path}|{self.kind.value}"

    @classmethod
    def from_line(cls, line: str) -> 'ManifestEntry':
        """Parse a serialized manifest line."""
        parts = line.rstrip('\n').split('|')
        if len(parts) != 4:
            raise ManifestError(f"Malformed manifest line: {line!r}")
        timestamp, source, upload, kind = parts
        try:
            return cls(int(timestamp), Path(source), Path(upload), MediaKind(kind))
        except ValueError as e:
            raise ManifestError(f"Malformed manifest line: {line!r}") from e


def read_exif_datetime(path: Path) -> Optional[str]:
    """
    Read the capture date string from an image's EXIF data.

    Prefers DateTimeOriginal from the Exif sub-IFD and falls back to the
    IFD0 DateTime tag. HEIC files are readable once the pillow-heif opener is
    registered (done by HeicConverter).
    """
    try:
        with Image.open(path) as image:
            exif = image.getexif()
            if not exif:
                return None
            value = exif.get_ifd(ExifTags.IFD.Exif).get(ExifTags.Base.DateTimeOriginal)
            if not value:
                value = exif.get(ExifTags.Base.DateTime)
    except (OSError, ValueError, SyntaxError) as e:
        logger.debug(f"Could not read EXIF from {path.name}: {e}")
        return None

    if isinstance(value, bytes):
        value = value.decode('utf-8', errors='ignore')
    return value.strip().rstrip('\x00') if value else None


def capture_timestamp(item: SourceItem,
                      exif_reader: Callable[[Path], Optional[str]] = read_exif_datetime) -> int:
    """
    Chronological sort key for an item, in epoch seconds.

    EXIF capture time (interpreted as local wall-clock time) when present and
    parseable, else the file modification time, else the epoch.
    """
    if item.kind == MediaKind.PHOTO:
        date_str = exif_reader(item.path)
        if date_str:
            try:
                return int(datetime.strptime(date_str, EXIF_DATE_FORMAT).timestamp())
            except (ValueError, OverflowError, OSError):
                logger.debug(f"Unparseable EXIF date {date_str!r} in {item.path.name}")

    try:
        return int(os.path.getmtime(item.path))
    except OSError:
        return EPOCH_FALLBACK


class ManifestBuilder:
    """Resolves album items into an ordered list of upload tasks."""

    def __init__(self, tracker: TrackerStore, scratch_dir: Path,
                 artifact_path: Callable[[Path, Path], Path],
                 exif_reader: Callable[[Path], Optional[str]] = read_exif_datetime):
        """
        Initialize manifest builder.

        Args:
            tracker: Ledger repository for the album
            scratch_dir: Album scratch directory holding converted artifacts
            artifact_path: Maps (source, scratch_dir) to the converted artifact path
            exif_reader: Capture-date reader, injectable for tests
        """
        self.tracker = tracker
        self.scratch_dir = scratch_dir
        self.artifact_path = artifact_path
        self.exif_reader = exif_reader

    def _resolve_upload_path(self, item: SourceItem) -> Optional[Path]:
        if not item.needs_conversion:
            return item.path

        artifact = self.artifact_path(item.path, self.scratch_dir)
        if artifact.exists():
            return artifact

        source = str(item.path)
        if self.tracker.is_converted(source):
            logger.error(
                f"❌ {item.path.name}: {MISSING_ARTIFACT_REASON} ({artifact}). "
                f"Run with --repair-conversions to convert it again."
            )
            self.tracker.mark_failed(source)
        else:
            logger.debug(f"Not converted yet, leaving for next run: {item.path.name}")
        return None

    def build(self, album_dir: Path, retry_only: bool = False,
              retry_sources: Optional[Set[str]] = None) -> List[ManifestEntry]:
        """
        Build the manifest for an album.

        Unsupported files go to the skipped ledger, unreadable files to the
        failed ledger, and already-sent files are left out. Everything else is
        resolved to its upload path and sorted by capture time; ties keep
        discovery order.

        Args:
            album_dir: Album directory
            retry_only: Only include sources recorded as failed
            retry_sources: Failed sources captured before conversion ran; a retried
                conversion clears its source from the failed ledger, so the run
                start snapshot decides what is retried (default: current ledger)

        Returns:
            Ordered list of manifest entries (may be empty)
        """
        if retry_only and retry_sources is None:
            retry_sources = self.tracker.failed.entries()

        items, unreadable = scan_album(album_dir)
        for path in unreadable:
            self.tracker.mark_failed(str(path))

        entries = []
        already_sent = 0
        for item in items:
            source = str(item.path)

            if not item.is_supported:
                if self.tracker.skipped.add(source):
                    logger.warning(f"⚠️  Skipping unsupported format: {item.path.name}")
                continue

            if self.tracker.is_sent(source):
                already_sent += 1
                continue

            if retry_only and source not in retry_sources:
                continue

            upload_path = self._resolve_upload_path(item)
            if upload_path is None:
                continue

            entries.append(ManifestEntry(
                timestamp=capture_timestamp(item, self.exif_reader),
                source_path=item.path,
                upload_path=upload_path,
                kind=item.kind,
            ))

        entries.sort(key=lambda entry: entry.timestamp)

        logger.info(
            f"📋 Manifest ready: {len(entries)} files in chronological order "
            f"({already_sent} already sent)"
        )
        return entries

    def write(self, entries: List[ManifestEntry], manifest_path: Path) -> None:
        """Persist the manifest, replacing any previous one atomically."""
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = manifest_path.with_name(manifest_path.name + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            for entry in entries:
                f.write(entry.to_line() + '\n')
        os.replace(tmp_path, manifest_path)

