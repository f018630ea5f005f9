"""
Retry utilities with exponential backoff for provider calls.

Only transient failures are retried: connection errors, timeouts and
provider responses with a throttling or server-side status. Credential
failures and other 4xx responses surface immediately.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Type

from storesync.exceptions import AuthError, UpstreamError
from storesync.utils.logger import log


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        """Record a retry attempt."""
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)

    def mark_success(self):
        self.success = True

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/storage."""
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]
        }


# Network-level failures
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

RETRYABLE_STATUS_CODES: Tuple[int, ...] = (429, 500, 502, 503, 504)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add 0-25% randomness to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base ** (attempt - 1))
    delay = min(delay, max_delay)

    if jitter:
        delay += delay * random.uniform(0, 0.25)

    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    retryable_status_codes: Tuple[int, ...] = RETRYABLE_STATUS_CODES
) -> bool:
    """Check if an error is worth another attempt."""
    if isinstance(error, AuthError):
        return False

    if isinstance(error, UpstreamError):
        return error.upstream_status in retryable_status_codes

    if isinstance(error, retryable_exceptions):
        return True

    # aiohttp wraps socket failures in its own hierarchy
    error_str = str(error).lower()
    if "timeout" in error_str or "timed out" in error_str:
        return True
    if "connection" in error_str and ("refused" in error_str or "reset" in error_str or "failed" in error_str):
        return True

    return False


class RetryContext:
    """
    Retry runner with stats tracking.

    Usage:
        ctx = RetryContext(max_attempts=3)
        result = await ctx.execute(api_call, arg1, arg2)
        print(ctx.stats.to_dict())
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
        operation_name: str = "operation",
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.retryable_exceptions = retryable_exceptions
        self.operation_name = operation_name
        self.stats = RetryStats()

    async def execute(self, func: Callable, *args, **kwargs):
        """Await func(*args, **kwargs), retrying transient failures."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await func(*args, **kwargs)
                self.stats.record_attempt()
                self.stats.mark_success()
                if attempt > 1:
                    log.info(
                        f"{self.operation_name} succeeded on attempt {attempt} "
                        f"after {self.stats.total_delay_seconds:.1f}s total delay"
                    )
                return result

            except Exception as e:
                if attempt >= self.max_attempts or not is_retryable_error(e, self.retryable_exceptions):
                    self.stats.record_attempt(error=e)
                    raise

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.base_delay,
                    max_delay=self.max_delay,
                    exponential_base=self.exponential_base
                )
                self.stats.record_attempt(error=e, delay=delay)

                log.warning(
                    f"{self.operation_name} attempt {attempt} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        raise RuntimeError("Retry exhausted")
