"""
Conversion stage: produce upload-ready JPEGs for HEIC originals.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from telegram_album_sync.processor.heic_converter import HeicConverter
from telegram_album_sync.processor.media_scanner import SourceItem
from telegram_album_sync.utils.ledger import TrackerStore
from telegram_album_sync.utils.parallel import parallel_map

logger = logging.getLogger(__name__)


class ConversionStatus(Enum):
    """Outcome of converting one source."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ConversionRecord:
    """Result of one conversion, produced by a worker and owned by it until join."""
    source: Path
    artifact: Path
    status: ConversionStatus = ConversionStatus.PENDING
    reason: Optional[str] = None


@dataclass
class ConversionSummary:
    """Aggregate result of a conversion stage run."""
    total: int = 0
    converted: int = 0
    skipped: int = 0
    failed: int = 0
    records: List[ConversionRecord] = field(default_factory=list)


class ConversionStage:
    """
    Converts every HEIC source that is neither converted nor already sent.

    Workers never touch the ledgers. Each returns its own ConversionRecord and
    the calling thread applies all ledger updates after the pool has joined.
    """

    def __init__(self, tracker: TrackerStore, converter: HeicConverter,
                 scratch_dir: Path, parallel_jobs: int = 3):
        """
        Initialize the stage.

        Args:
            tracker: Ledger repository for the album
            converter: HEIC to JPEG converter
            scratch_dir: Album scratch directory receiving the artifacts
            parallel_jobs: Number of concurrent conversions
        """
        self.tracker = tracker
        self.converter = converter
        self.scratch_dir = scratch_dir
        self.parallel_jobs = parallel_jobs

    def _convert_one(self, record: ConversionRecord) -> ConversionRecord:
        success, error = self.converter.convert(record.source, record.artifact)
        if success:
            record.status = ConversionStatus.SUCCESS
        else:
            record.status = ConversionStatus.FAILED
            record.reason = error or "unknown conversion error"
        return record

    def run(self, items: List[SourceItem]) -> ConversionSummary:
        """
        Convert the given items where needed.

        Args:
            items: Discovered album items; only those needing conversion are considered

        Returns:
            ConversionSummary with per-file records
        """
        candidates = [item for item in items if item.needs_conversion]
        summary = ConversionSummary(total=len(candidates))

        if not candidates:
            logger.info("✅ No HEIC images to convert")
            return summary

        work = []
        for item in candidates:
            record = ConversionRecord(
                source=item.path,
                artifact=self.converter.artifact_path(item.path, self.scratch_dir),
            )
            source = str(item.path)
            if self.tracker.is_converted(source) or self.tracker.is_sent(source):
                record.status = ConversionStatus.SKIPPED
                summary.skipped += 1
                summary.records.append(record)
            else:
                work.append(record)

        logger.info(
            f"📊 Conversion pre-filter: {len(work)} need conversion, "
            f"{summary.skipped} already done"
        )

        if not work:
            return summary

        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"🚀 Converting {len(work)} images with {self.parallel_jobs} parallel jobs")
        results = parallel_map(self._convert_one, work, max_workers=self.parallel_jobs)

        for record in results:
            source = str(record.source)
            if record.status == ConversionStatus.SUCCESS:
                self.tracker.mark_converted(source)
                summary.converted += 1
                logger.info(f"✅ Converted: {record.source.name}")
            else:
                self.tracker.mark_failed(source)
                summary.failed += 1
                logger.error(f"❌ Conversion failed: {record.source.name} - {record.reason}")
            summary.records.append(record)

        logger.info(
            f"✅ Conversion complete: {summary.converted} converted, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        return summary
