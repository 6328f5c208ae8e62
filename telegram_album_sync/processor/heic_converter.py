"""
Convert HEIC photos to JPEG for upload.
"""
import logging
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageOps
from pillow_heif import register_heif_opener

from telegram_album_sync.exceptions import ConversionError

logger = logging.getLogger(__name__)

_heif_registered = False


def _register_heif_opener() -> None:
    global _heif_registered
    if not _heif_registered:
        register_heif_opener()
        _heif_registered = True


class HeicConverter:
    """Converts HEIC originals into size-bounded, upright JPEG files."""

    def __init__(self, max_dimension: int = 2048, quality: int = 95):
        """
        Initialize the converter.

        Args:
            max_dimension: Neither side of the output exceeds this many pixels
            quality: JPEG quality (1-100)
        """
        if max_dimension < 1:
            raise ValueError("max_dimension must be positive")
        if not 1 <= quality <= 100:
            raise ValueError("quality must be between 1 and 100")

        self.max_dimension = max_dimension
        self.quality = quality
        _register_heif_opener()

    @staticmethod
    def artifact_path(source: Path, output_dir: Path) -> Path:
        """Path of the converted JPEG for a source file."""
        return output_dir / f"{source.stem}.jpg"

    def convert(self, source: Path, target: Path) -> Tuple[bool, Optional[str]]:
        """
        Convert one image to JPEG.

        The image is rotated according to its EXIF orientation, converted to
        RGB, shrunk to fit ``max_dimension`` and written without the EXIF
        block. A partial output file is removed on failure.

        Args:
            source: Input image path
            target: Output JPEG path

        Returns:
            Tuple of (success, error message or None)
        """
        if not source.exists():
            return (False, f"Source file does not exist: {source}")

        target.parent.mkdir(parents=True, exist_ok=True)

        try:
            with Image.open(source) as image:
                image = ImageOps.exif_transpose(image)
                if image.mode != 'RGB':
                    image = image.convert('RGB')
                if image.width > self.max_dimension or image.height > self.max_dimension:
                    image.thumbnail((self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS)
                image.save(target, format='JPEG', quality=self.quality, optimize=True)

            if not target.exists() or target.stat().st_size == 0:
                raise ConversionError(f"Conversion produced empty or missing file: {target.name}")

            logger.debug(f"✓ Converted {source.name} -> {target.name}")
            return (True, None)

        except ConversionError as e:
            self._remove_partial(target)
            return (False, str(e))
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            self._remove_partial(target)
            return (False, f"{type(e).__name__}: {e}")

    @staticmethod
    def _remove_partial(target: Path) -> None:
        try:
            if target.exists():
                target.unlink()
        except OSError as e:
            logger.warning(f"Could not remove partial file {target}: {e}")
