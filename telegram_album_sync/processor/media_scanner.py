"""
Discover media files in an album directory.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Tuple

from telegram_album_sync.exceptions import ManifestError

logger = logging.getLogger(__name__)

PHOTO_EXTENSIONS = {'jpg', 'jpeg', 'png', 'heic'}
VIDEO_EXTENSIONS = {'mp4', 'mov'}

# Formats that must be converted to JPEG before upload
CONVERSION_EXTENSIONS = {'heic'}


class MediaKind(Enum):
    """Kind of a discovered file, assigned once from its extension."""
    PHOTO = "photo"
    VIDEO = "video"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_extension(cls, extension: str) -> 'MediaKind':
        """Classify a file extension (with or without leading dot, any case)."""
        ext = extension.lower().lstrip('.')
        if ext in PHOTO_EXTENSIONS:
            return cls.PHOTO
        if ext in VIDEO_EXTENSIONS:
            return cls.VIDEO
        return cls.UNSUPPORTED


@dataclass(frozen=True)
class SourceItem:
    """One file discovered directly under an album directory."""
    path: Path
    kind: MediaKind
    extension: str
    size: int

    @classmethod
    def from_path(cls, path: Path) -> 'SourceItem':
        """Build an item from a file on disk."""
        path = path.absolute()
        extension = path.suffix.lower().lstrip('.')
        return cls(
            path=path,
            kind=MediaKind.from_extension(extension),
            extension=extension,
            size=path.stat().st_size,
        )

    @property
    def needs_conversion(self) -> bool:
        """True for formats the backend cannot display (HEIC)."""
        return self.extension in CONVERSION_EXTENSIONS

    @property
    def is_supported(self) -> bool:
        return self.kind != MediaKind.UNSUPPORTED


def scan_album(album_dir: Path) -> Tuple[List[SourceItem], List[Path]]:
    """
    List the top-level files of an album directory.

    Subdirectories are not descended into and hidden files are ignored.
    Files that cannot be stat'ed during the scan are returned separately so
    the caller can record them as failed.

    Args:
        album_dir: Album directory

    Returns:
        Tuple of (items in sorted file-name order, unreadable paths)

    Raises:
        ManifestError: If the album directory does not exist
    """
    if not album_dir.is_dir():
        raise ManifestError(f"Album directory not found: {album_dir}")

    items = []
    unreadable = []
    for path in sorted(album_dir.iterdir()):
        if path.name.startswith('.') or not path.is_file():
            continue
        try:
            items.append(SourceItem.from_path(path))
        except OSError as e:
            logger.error(f"❌ Could not read source file {path}: {e}")
            unreadable.append(path.absolute())

    logger.debug(f"Discovered {len(items)} files in {album_dir}")
    return items, unreadable
