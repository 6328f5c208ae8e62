"""
Read-only access to an iPhone media library (``Photos.sqlite``).

The phone's filesystem is expected to be mounted (for example with
ifuse) so that asset paths recorded in the database can be resolved under
the mount point.
"""
import logging
import shutil
import sqlite3
from contextlib import closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from tqdm import tqdm

from telegram_album_sync.exceptions import LibraryError

logger = logging.getLogger(__name__)

# ZGENERICALBUM.ZKIND for user-created albums
USER_ALBUM_KIND = 2

_VIDEO_CASE = (
    "CASE WHEN LOWER(z.ZFILENAME) LIKE '%.mov' OR LOWER(z.ZFILENAME) LIKE '%.mp4' "
    "THEN 1 ELSE 0 END"
)

LIST_ALBUMS_SQL = f"""
SELECT
    a.Z_PK AS album_id,
    a.ZTITLE AS title,
    SUM(CASE WHEN z.Z_PK IS NULL THEN 0 ELSE 1 - {_VIDEO_CASE} END) AS photo_count,
    SUM(CASE WHEN z.Z_PK IS NULL THEN 0 ELSE {_VIDEO_CASE} END) AS video_count
FROM ZGENERICALBUM a
LEFT JOIN Z_30ASSETS za ON a.Z_PK = za.Z_30ALBUMS
LEFT JOIN ZASSET z ON za.Z_3ASSETS = z.Z_PK
WHERE a.ZKIND = ?
GROUP BY a.Z_PK, a.ZTITLE
ORDER BY a.ZTITLE
"""

ALBUM_ASSETS_SQL = """
SELECT ZASSET.ZDIRECTORY AS directory, ZASSET.ZFILENAME AS filename
FROM ZASSET
JOIN Z_30ASSETS ON ZASSET.Z_PK = Z_30ASSETS.Z_3ASSETS
JOIN ZGENERICALBUM ON ZGENERICALBUM.Z_PK = Z_30ASSETS.Z_30ALBUMS
WHERE {condition}
ORDER BY ZASSET.Z_PK
"""


@dataclass(frozen=True)
class AlbumInfo:
    """One user album and its media counts."""
    album_id: int
    title: str
    photo_count: int
    video_count: int


@dataclass
class CopyResult:
    """Outcome of copying an album out of the library."""
    destination: Path
    copied: List[str] = field(default_factory=list)
    missing: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.failed


class PhotoLibrary:
    """Queries albums and assets from a mounted device's media library."""

    def __init__(self, mount_path: Path, db_path: Optional[Path] = None):
        """
        Initialize library access.

        Args:
            mount_path: Mount point of the device filesystem
            db_path: Photos.sqlite path (default: <mount>/PhotoData/Photos.sqlite)
        """
        self.mount_path = Path(mount_path)
        self.db_path = Path(db_path) if db_path else self.mount_path / 'PhotoData' / 'Photos.sqlite'

    def _connect(self) -> sqlite3.Connection:
        if not self.db_path.exists():
            raise LibraryError(f"Media library database not found: {self.db_path}")
        try:
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise LibraryError(f"Could not open media library {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    def list_albums(self) -> List[AlbumInfo]:
        """List user albums with photo and video counts, ordered by title."""
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(LIST_ALBUMS_SQL, (USER_ALBUM_KIND,)).fetchall()
        except sqlite3.Error as e:
            raise LibraryError(f"Album query failed: {e}") from e

        return [
            AlbumInfo(
                album_id=row['album_id'],
                title=row['title'] or '',
                photo_count=row['photo_count'] or 0,
                video_count=row['video_count'] or 0,
            )
            for row in rows
        ]

    def album_assets(self, name: str, exact: bool = False) -> List[Tuple[str, str]]:
        """
        Find the assets of an album.

        Args:
            name: Album title
            exact: Match the whole title (case-insensitive) instead of a substring

        Returns:
            (directory, filename) pairs relative to the mount point
        """
        if exact:
            condition = "LOWER(TRIM(ZGENERICALBUM.ZTITLE)) = LOWER(TRIM(?))"
        else:
            condition = "LOWER(TRIM(ZGENERICALBUM.ZTITLE)) LIKE '%' || LOWER(TRIM(?)) || '%'"

        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(ALBUM_ASSETS_SQL.format(condition=condition), (name,)).fetchall()
        except sqlite3.Error as e:
            raise LibraryError(f"Asset query for album '{name}' failed: {e}") from e

        return [(row['directory'], row['filename']) for row in rows]

    def copy_album(self, name: str, dest_root: Path, exact: bool = False,
                   show_progress: bool = True) -> CopyResult:
        """
        Copy an album's files into ``<dest_root>/<name>``.

        Files missing under the mount point or failing to copy are reported in
        the result; copying continues with the next file.
        """
        destination = Path(dest_root) / name
        destination.mkdir(parents=True, exist_ok=True)
        result = CopyResult(destination=destination)

        assets = self.album_assets(name, exact=exact)
        logger.info(f"Copying {len(assets)} assets of album '{name}' to '{destination}'")

        for directory, filename in tqdm(assets, desc="Copying", unit="file", disable=not show_progress):
            source = self.mount_path / directory / filename
            if not source.is_file():
                logger.error(f"[{name}] File not found: {source}")
                result.missing.append(source)
                continue
            try:
                shutil.copy2(source, destination / filename)
                result.copied.append(filename)
                logger.debug(f"Copied: {filename}")
            except OSError as e:
                logger.error(f"[{name}] Failed to copy {source}: {e}")
                result.failed.append(source)

        logger.info(
            f"Finished copying album '{name}': {len(result.copied)} copied, "
            f"{len(result.missing)} missing, {len(result.failed)} failed"
        )
        return result
