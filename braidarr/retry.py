"""
Retry Logic for Braidarr provider clients
Provides bounded exponential backoff driven by the classified error kind.
"""

import asyncio
import dataclasses
import logging
import random
import time
from dataclasses import dataclass
from typing import Optional, Callable, Awaitable, TypeVar, Dict

from .classifier import classify
from .exceptions import ClassifiedError, ConfigurationError, ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.1
MAX_TRACKED_OPERATIONS = 1000


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings for one call or one client."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    jitter: bool = True

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", str(self.max_retries))
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("Retry delays must not be negative")
        if self.backoff_factor <= 1:
            raise ConfigurationError("backoff_factor must be greater than 1", str(self.backoff_factor))

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt_index: int) -> float:
        """Delay before the retry that follows failed attempt ``attempt_index`` (0-based), without jitter."""
        return min(self.base_delay * (self.backoff_factor ** attempt_index), self.max_delay)

    def with_overrides(self, **changes) -> "RetryPolicy":
        """Return a copy with the given fields replaced. None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **changes)


def is_retryable(error: ClassifiedError) -> bool:
    """
    Decide retryability from the classified kind and status.

    401/403 and other 4xx responses are final, except 408 and 429.
    Network, timeout and 5xx failures are transient. Everything else,
    including local application errors, is final.
    """
    if error.http_status in (408, 429):
        return True
    if error.kind in (ErrorKind.AUTH_FAILED, ErrorKind.FORBIDDEN):
        return False
    if error.http_status is not None and 400 <= error.http_status < 500:
        return False
    return error.kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVER_ERROR)


@dataclass
class RetryStats:
    """Counters kept per handler, exposed through ``get_stats``."""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retried_operations: int = 0
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    last_error_time: Optional[float] = None

    @property
    def success_rate(self) -> float:
        if not self.total_attempts:
            return 0
        return self.successful_attempts / self.total_attempts * 100


class RetryHandler:
    """
    Runs provider calls under a RetryPolicy.
    Each failure is classified first; only transient kinds are retried.
    """

    def __init__(self, policy: RetryPolicy = None):
        self.policy = policy or RetryPolicy()
        self._failure_counts: Dict[str, int] = {}
        self._stats = RetryStats()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy = None,
        operation_id: str = None,
    ) -> T:
        """
        Await ``operation()`` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            policy: Replaces the handler's policy for this call only
            operation_id: Name used in log lines and failure counts

        Raises:
            ClassifiedError: the last classified failure
            asyncio.CancelledError: when the caller stops waiting
        """
        policy = policy or self.policy
        operation_id = operation_id or f"op_{id(operation)}"
        attempts = policy.max_attempts
        attempt = 0

        while True:
            attempt += 1
            self._stats.total_attempts += 1
            try:
                result = await operation()
            except asyncio.CancelledError:
                logger.debug(f"{operation_id}: cancelled during attempt {attempt}")
                raise
            except Exception as e:
                error = classify(e)
                self._record_failure(operation_id, attempt, error)

                give_up = not is_retryable(error) or attempt >= attempts
                if give_up:
                    reason = "not retryable" if attempt < attempts else f"gave up after {attempt} attempts"
                    log = logger.warning if attempt < attempts else logger.error
                    log(f"{operation_id}: {reason} [{error.kind.value}] {error.message}")
                    if error is e:
                        raise
                    raise error from e

                delay = self._calculate_delay(policy, attempt - 1)
                self._stats.retried_operations += 1
                logger.warning(
                    f"{operation_id}: attempt {attempt}/{attempts} failed "
                    f"[{error.kind.value}], next try in {delay:.1f}s: {error.message}"
                )
                await asyncio.sleep(delay)
            else:
                self._failure_counts.pop(operation_id, None)
                self._stats.successful_attempts += 1
                if attempt > 1:
                    logger.info(f"{operation_id}: recovered on attempt {attempt}")
                return result

    def _record_failure(self, operation_id: str, attempt: int, error: ClassifiedError) -> None:
        stats = self._stats
        stats.failed_attempts += 1
        stats.last_error = error.message
        stats.last_error_kind = error.kind.value
        stats.last_error_time = time.time()
        # most recently failed last, oldest evicted first
        self._failure_counts.pop(operation_id, None)
        self._failure_counts[operation_id] = attempt
        while len(self._failure_counts) > MAX_TRACKED_OPERATIONS:
            del self._failure_counts[next(iter(self._failure_counts))]

    @staticmethod
    def _calculate_delay(policy: RetryPolicy, attempt_index: int) -> float:
        delay = policy.delay_for(attempt_index)
        if policy.jitter:
            delay += random.random() * JITTER_RATIO * delay
        return delay

    def get_failure_count(self, operation_id: str) -> int:
        """Consecutive failures of the last run of ``operation_id``; reset on success."""
        return self._failure_counts.get(operation_id, 0)

    def get_stats(self) -> dict:
        stats = dataclasses.asdict(self._stats)
        stats["success_rate"] = self._stats.success_rate
        return stats
