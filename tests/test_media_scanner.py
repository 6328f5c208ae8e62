"""
Tests for album discovery.
"""
import pytest

from telegram_album_sync.exceptions import ManifestError
from telegram_album_sync.processor.media_scanner import MediaKind, SourceItem, scan_album


class TestMediaKind:
    """Tests for MediaKind classification."""

    @pytest.mark.parametrize("extension,kind", [
        ('jpg', MediaKind.PHOTO),
        ('.JPEG', MediaKind.PHOTO),
        ('png', MediaKind.PHOTO),
        ('HEIC', MediaKind.PHOTO),
        ('mp4', MediaKind.VIDEO),
        ('.MOV', MediaKind.VIDEO),
        ('gif', MediaKind.UNSUPPORTED),
        ('', MediaKind.UNSUPPORTED),
    ])
    def test_from_extension(self, extension, kind):
        """Test extension classification is case-insensitive."""
        assert MediaKind.from_extension(extension) == kind


class TestSourceItem:
    """Tests for SourceItem."""

    def test_from_path(self, album_dir):
        """Test item attributes are taken from the file."""
        path = album_dir / 'IMG_0001.HEIC'
        path.write_bytes(b'12345')
        item = SourceItem.from_path(path)

        assert item.path.is_absolute()
        assert item.kind == MediaKind.PHOTO
        assert item.extension == 'heic'
        assert item.size == 5
        assert item.needs_conversion is True
        assert item.is_supported is True

    def test_jpeg_needs_no_conversion(self, album_dir):
        """Test JPEG files are uploaded as-is."""
        path = album_dir / 'a.jpg'
        path.write_bytes(b'x')
        assert SourceItem.from_path(path).needs_conversion is False


class TestScanAlbum:
    """Tests for scan_album."""

    def test_lists_top_level_files_sorted(self, album_dir):
        """Test files are returned in name order, without recursion or hidden files."""
        for name in ('b.jpg', 'a.mp4', '.DS_Store', 'notes.txt'):
            (album_dir / name).write_bytes(b'x')
        (album_dir / 'nested').mkdir()
        (album_dir / 'nested' / 'c.jpg').write_bytes(b'x')

        items, unreadable = scan_album(album_dir)

        assert [item.path.name for item in items] == ['a.mp4', 'b.jpg', 'notes.txt']
        assert items[2].kind == MediaKind.UNSUPPORTED
        assert unreadable == []

    def test_missing_directory(self, tmp_path):
        """Test a missing album directory is an error."""
        with pytest.raises(ManifestError, match="not found"):
            scan_album(tmp_path / 'nope')

    def test_empty_directory(self, album_dir):
        """Test an empty album."""
        assert scan_album(album_dir) == ([], [])
