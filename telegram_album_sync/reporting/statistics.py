"""
Statistics tracking for a sync run.
"""
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional


@dataclass
class SyncStatistics:
    """Counters collected during one run of one album."""
    album_name: str
    test_mode: bool = False
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    # Discovery
    total_files: int = 0
    manifest_entries: int = 0

    # Conversion stage
    converted: int = 0
    conversion_skipped: int = 0
    conversion_failed: int = 0

    # Upload stage (this run)
    batches: int = 0
    uploaded_this_run: int = 0
    failed_this_run: int = 0
    requests_made: int = 0

    # Ledger totals at the end of the run
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def duration(self) -> float:
        """Get duration in seconds."""
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time

    def finish(self, ledger_counts: Dict[str, int]) -> None:
        """Mark the run finished and record the final ledger sizes."""
        self.end_time = time.time()
        self.sent = ledger_counts.get('sent', 0)
        self.failed = ledger_counts.get('failed', 0)
        self.skipped = ledger_counts.get('skipped', 0)

    def to_dict(self) -> Dict:
        """Convert statistics to dictionary."""
        data = asdict(self)
        data['duration_seconds'] = round(self.duration, 1)
        return data

    def summary(self) -> str:
        """One-paragraph human readable summary."""
        return (
            f"Album '{self.album_name}'{' (test mode)' if self.test_mode else ''}: "
            f"{self.uploaded_this_run} uploaded this run in {self.batches} batches, "
            f"{self.failed_this_run} failed this run; totals sent={self.sent} "
            f"failed={self.failed} skipped={self.skipped} "
            f"({self.duration:.1f}s)"
        )
