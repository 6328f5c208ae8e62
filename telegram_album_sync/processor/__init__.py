"""File processing modules (discovery, HEIC conversion and manifest building)."""

from telegram_album_sync.processor.conversion import ConversionStage
from telegram_album_sync.processor.heic_converter import HeicConverter
from telegram_album_sync.processor.manifest import ManifestBuilder, ManifestEntry
from telegram_album_sync.processor.media_scanner import MediaKind, SourceItem, scan_album

__all__ = [
    'ConversionStage',
    'HeicConverter',
    'ManifestBuilder',
    'ManifestEntry',
    'MediaKind',
    'SourceItem',
    'scan_album',
]
