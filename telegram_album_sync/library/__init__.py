"""iPhone media library access."""

from telegram_album_sync.library.photo_library import AlbumInfo, PhotoLibrary

__all__ = ['AlbumInfo', 'PhotoLibrary']
