"""
Telegram Album Sync

Uploads photo and video albums exported from an iPhone media library to a
Telegram chat in chronological order, converting HEIC images on the way and
keeping enough state to resume safely after an interruption.
"""
__version__ = "1.0.0"

# Import main classes for easy access
from telegram_album_sync.config import SyncConfig
from telegram_album_sync.exceptions import (
    SyncError,
    ConfigurationError,
    LedgerError,
    ConversionError,
    ManifestError,
    LibraryError,
    EndpointUnavailableError,
)

__all__ = [
    '__version__',
    'SyncConfig',
    'SyncError',
    'ConfigurationError',
    'LedgerError',
    'ConversionError',
    'ManifestError',
    'LibraryError',
    'EndpointUnavailableError',
]
