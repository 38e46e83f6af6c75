"""
RetryExecutor -- runs an async operation under a :class:`RetryPolicy`.

Delay before retry ``n`` (0-based)::

    delay = min(base_delay * 2**n, max_delay)
    delay += uniform(0, jitter_factor * delay)

Terminal errors short-circuit immediately; the last error is re-raised
once attempts are exhausted.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel

from profile_guard.recovery.policy import ErrorDisposition, RetryPolicy, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[BaseException, int], None]


class ExecutorStats(BaseModel):
    """Counters kept by a :class:`RetryExecutor`.

    Attributes:
        operations: Calls to :meth:`RetryExecutor.execute`.
        attempts: Individual attempts made.
        retries: Attempts after the first one.
        retried_operations: Operations that needed at least one retry.
        successes: Operations that eventually succeeded.
        failures: Operations that raised after their last attempt.
    """

    operations: int = 0
    attempts: int = 0
    retries: int = 0
    retried_operations: int = 0
    successes: int = 0
    failures: int = 0


class RetryExecutor:
    """Executes async operations with bounded exponential backoff.

    Args:
        policy: Default policy for calls that do not pass one.
        sleep: Awaitable sleep used between attempts.
        rng: Random source for jitter.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._stats = ExecutorStats()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def compute_delay(self, policy: RetryPolicy, retry_index: int) -> float:
        """Backoff delay with jitter before retry *retry_index* (0-based)."""
        delay = policy.backoff(retry_index)
        return delay + self._rng.uniform(0, policy.jitter_factor * delay)

    def should_retry(self, policy: RetryPolicy, error: BaseException) -> bool:
        disposition = classify_error(error)
        if disposition is ErrorDisposition.TERMINAL:
            return False
        return bool(policy.is_retryable(error))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        """Run *operation* until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument coroutine function.
            policy: Overrides the executor's default policy.
            on_retry: Called with ``(error, next_attempt_number)`` before
                each backoff sleep.

        Returns:
            The operation's result.

        Raises:
            BaseException: The last error raised by *operation*.
        """
        policy = policy or self._policy
        self._stats.operations += 1
        retried = False

        for attempt in range(policy.max_attempts):
            self._stats.attempts += 1
            if attempt > 0:
                self._stats.retries += 1
                if not retried:
                    self._stats.retried_operations += 1
                    retried = True
            try:
                result = await operation()
            except Exception as error:
                last_attempt = attempt + 1 >= policy.max_attempts
                if last_attempt or not self.should_retry(policy, error):
                    self._stats.failures += 1
                    logger.warning(
                        "Operation failed, not retrying",
                        extra={
                            "attempt": attempt + 1,
                            "max_attempts": policy.max_attempts,
                            "disposition": classify_error(error).value,
                            "error": str(error),
                        },
                    )
                    raise

                delay = self.compute_delay(policy, attempt)
                logger.info(
                    "Attempt %d/%d failed, retrying in %.0fms",
                    attempt + 1,
                    policy.max_attempts,
                    delay * 1000,
                    extra={"error": str(error)},
                )
                if on_retry is not None:
                    on_retry(error, attempt + 2)
                await self._sleep(delay)
            else:
                self._stats.successes += 1
                return result

        # max_attempts >= 1 guarantees the loop returns or raises
        raise RuntimeError("Retry loop exited without a result")

    def stats(self) -> ExecutorStats:
        return self._stats.model_copy()

    def reset(self) -> None:
        self._stats = ExecutorStats()
