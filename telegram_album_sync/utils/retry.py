"""
Retry utility with fixed backoff for network operations.

Every backend request in the uploader goes through ``call_with_retry`` so the
attempt count, the pause between attempts and the definition of success live
in one place.
"""
import time
import logging
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a retried call."""
    succeeded: bool
    attempts: int
    result: Optional[T] = None
    error: Optional[BaseException] = None


def call_with_retry(
    func: Callable[[], T],
    max_attempts: int = 3,
    backoff: float = 3.0,
    is_success: Callable[[T], bool] = lambda result: True,
    exceptions: Tuple = (Exception,),
    description: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome[T]:
    """
    Call ``func`` until it succeeds or ``max_attempts`` is exhausted.

    An attempt fails either by raising one of ``exceptions`` (for example a
    connection error with no response at all) or by returning a value that
    ``is_success`` rejects (for example an HTTP 200 whose body says not ok).
    Both kinds are retried the same way. Exceptions outside ``exceptions``
    propagate immediately.

    Args:
        func: Zero-argument callable performing one attempt
        max_attempts: Total number of attempts (default: 3)
        backoff: Fixed delay in seconds between attempts (default: 3.0)
        is_success: Predicate deciding whether a returned value is a success
        exceptions: Exception types treated as retryable failures
        description: Human-readable name used in log messages
        sleep: Sleep function, injectable for tests

    Returns:
        RetryOutcome with the last result or error and the number of attempts made

    Example:
        >>> outcome = call_with_retry(lambda: client.get_me(), max_attempts=3,
        ...                           is_success=lambda r: r.ok)
        >>> outcome.succeeded
        True
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    result: Optional[T] = None
    error: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        result, error = None, None
        try:
            result = func()
        except exceptions as e:
            error = e

        if error is None and is_success(result):
            if attempt > 1:
                logger.info(f"{description} succeeded on attempt {attempt}/{max_attempts}")
            return RetryOutcome(succeeded=True, attempts=attempt, result=result)

        reason = error if error is not None else result
        if attempt < max_attempts:
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {reason}. "
                f"Retrying in {backoff:.1f} seconds..."
            )
            if backoff > 0:
                sleep(backoff)
        else:
            logger.error(f"{description} failed after {max_attempts} attempts: {reason}")

    return RetryOutcome(succeeded=False, attempts=max_attempts, result=result, error=error)
