"""
Parallel processing utilities.

This module provides:
- ``parallel_map`` for a bounded thread pool over a work list (used by the
  conversion stage)
- ``BackgroundJobs`` for fire-and-forget uploads that must still be joined
  before a run is reported complete, with throttling on outstanding job count
  and available memory
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, Future, FIRST_COMPLETED, wait
from typing import Callable, List, TypeVar, Optional

import psutil

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


def parallel_map(
    func: Callable[[T], R],
    items: List[T],
    max_workers: int = 3
) -> List[R]:
    """
    Apply a function to a list of items on a bounded thread pool.

    Results are returned in the same order as the input items. Completion
    order among workers is not guaranteed; callers that need an ordering
    impose it on the returned list.

    Args:
        func: Function to apply to each item. Should return a result record
              rather than raise; an exception from any worker propagates.
        items: List of items to process
        max_workers: Maximum number of worker threads (default: 3)

    Returns:
        List of results. Result at index i corresponds to items[i].
    """
    if not items:
        return []

    if len(items) == 1 or max_workers <= 1:
        return [func(item) for item in items]

    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        return list(executor.map(func, items))


class BackgroundJobs:
    """
    Collects handles of fire-and-forget jobs so they can be joined later.

    Jobs cannot be cancelled once submitted; ``join`` waits for all of them.
    """

    def __init__(self, max_outstanding: int = 5, min_available_memory_mb: int = 150,
                 poll_interval: float = 1.0, low_memory_pause: float = 3.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize background job tracker.

        Args:
            max_outstanding: Wait before submitting while this many jobs are running
            min_available_memory_mb: Pause before submitting while available memory is below this
            poll_interval: Seconds between checks while throttled on job count
            low_memory_pause: Seconds to pause when memory is low
            sleep: Sleep function, injectable for tests
        """
        self.max_outstanding = max_outstanding
        self.min_available_memory_mb = min_available_memory_mb
        self.poll_interval = poll_interval
        self.low_memory_pause = low_memory_pause
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_outstanding,
                                            thread_name_prefix="upload-bg")
        self._futures: List[Future] = []

    @property
    def outstanding(self) -> int:
        """Number of submitted jobs that have not finished."""
        return sum(1 for future in self._futures if not future.done())

    def _available_memory_mb(self) -> Optional[float]:
        try:
            return psutil.virtual_memory().available / (1024 * 1024)
        except (OSError, RuntimeError) as e:
            logger.debug(f"Could not read available memory: {e}")
            return None

    def throttle(self) -> None:
        """Block while too many jobs are outstanding; pause once if memory is low."""
        available = self._available_memory_mb()
        if available is not None and available < self.min_available_memory_mb:
            logger.info(f"🧠 Low memory ({available:.0f}MB available), pausing...")
            self._sleep(self.low_memory_pause)

        while self.outstanding >= self.max_outstanding:
            logger.info(f"⏳ Throttling ({self.outstanding} background jobs)...")
            pending = [future for future in self._futures if not future.done()]
            wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)

    def submit(self, func: Callable[..., R], *args, **kwargs) -> Future:
        """Throttle, then start ``func`` in the background and keep its handle."""
        self.throttle()
        future = self._executor.submit(func, *args, **kwargs)
        self._futures.append(future)
        return future

    def join(self) -> List[R]:
        """
        Wait for every submitted job.

        Returns:
            Results of all jobs in submission order

        Raises:
            Exception: The first exception raised by a job, after all jobs finished
        """
        if self._futures:
            logger.info(f"⏳ Waiting for {self.outstanding} background job(s) to finish...")
        wait(self._futures)
        results = [future.result() for future in self._futures]
        self._futures = []
        return results

    def shutdown(self) -> None:
        """Join outstanding jobs and release the worker threads."""
        wait(self._futures)
        self._executor.shutdown(wait=True)
