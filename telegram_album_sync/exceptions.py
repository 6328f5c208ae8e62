"""
Custom exceptions for the Telegram album sync tool.
"""
from typing import Optional


class SyncError(Exception):
    """Base exception for sync errors."""
    pass


class ConfigurationError(SyncError):
    """Error related to configuration or missing credentials."""
    pass


class LedgerError(SyncError):
    """Error reading or writing a tracker ledger."""
    pass


class ConversionError(SyncError):
    """Error during image format conversion."""
    pass


class ManifestError(SyncError):
    """Error while building the upload manifest."""
    pass


class LibraryError(SyncError):
    """Error querying the media library database."""
    pass


class EndpointUnavailableError(SyncError):
    """Raised when the local Bot API proxy fails the pre-flight check."""
    def __init__(self, message: str, endpoint: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code
