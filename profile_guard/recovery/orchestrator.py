"""
RecoveryOrchestrator -- retry the primary operation, then walk an
ordered fallback chain.

The first fallback supplier that returns without raising wins.  Only
when the primary and every supplier failed does the caller see an
exception, so a chain ending in an always-succeeding supplier (e.g.
``lambda: None``) never raises.
"""

import inspect
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel

from profile_guard.cache.entry import Origin
from profile_guard.config import get_settings
from profile_guard.exceptions import RecoveryExhaustedError
from profile_guard.recovery.executor import RetryExecutor
from profile_guard.recovery.policy import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

FallbackSupplier = Callable[[], Union[T, Awaitable[T]]]

PRIMARY_SOURCE = "primary"


class CircuitState(str, Enum):
    """Derived label for the current failure streak."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"


class RecoveryStats(BaseModel):
    """Counters kept by the orchestrator.

    Attributes:
        total_operations: Calls to :meth:`RecoveryOrchestrator.run`.
        successful_operations: Runs whose primary operation succeeded.
        failed_operations: Runs whose primary operation gave up.
        exhausted_operations: Runs where every fallback failed too.
        fallback_usages: Runs served by a fallback supplier.
        fallback_failures: Individual fallback suppliers that raised.
        attempts: Primary attempts made by the executor.
        retries: Primary attempts after the first one.
        retried_operations: Primary operations retried at least once.
        current_failure_streak: Consecutive runs whose primary failed.
        average_latency_ms: Mean run duration over the latency window.
        latency_samples: Number of durations in the window.
        success_rate: Percentage of runs whose primary succeeded.
        circuit_state: ``CLOSED`` when the failure streak is zero.
    """

    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    exhausted_operations: int = 0
    fallback_usages: int = 0
    fallback_failures: int = 0
    attempts: int = 0
    retries: int = 0
    retried_operations: int = 0
    current_failure_streak: int = 0
    average_latency_ms: float = 0.0
    latency_samples: int = 0
    success_rate: float = 0.0
    circuit_state: CircuitState = CircuitState.CLOSED


class RecoveryOutcome(BaseModel):
    """Result of :meth:`RecoveryOrchestrator.run`.

    Attributes:
        value: Value returned by the primary or the winning supplier.
        origin: ``authoritative`` for the primary, ``fallback`` otherwise.
        source: ``"primary"`` or the winning supplier's name.
        attempts: Primary attempts made during the run.
        primary_error: Message of the primary failure, if any.
    """

    value: Any = None
    origin: Origin = Origin.AUTHORITATIVE
    source: str = PRIMARY_SOURCE
    attempts: int = 0
    primary_error: Optional[str] = None


def _supplier_name(supplier: Callable[..., Any]) -> str:
    return getattr(supplier, "__name__", None) or repr(supplier)


class RecoveryOrchestrator:
    """Composes a :class:`RetryExecutor` with ordered fallback suppliers.

    Args:
        executor: Executor for the primary operation.
        latency_window: Number of recent run durations kept for the
            average latency.
        timer: Monotonic clock in seconds.
    """

    def __init__(
        self,
        executor: Optional[RetryExecutor] = None,
        latency_window: Optional[int] = None,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._executor = executor or RetryExecutor()
        window = latency_window if latency_window is not None else get_settings().recovery.latency_window
        self._latencies: Deque[float] = deque(maxlen=max(1, window))
        self._timer = timer
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._exhausted = 0
        self._fallback_usages = 0
        self._fallback_failures = 0
        self._failure_streak = 0
        self._latencies.clear()

    @property
    def executor(self) -> RetryExecutor:
        return self._executor

    async def with_recovery(
        self,
        primary: Callable[[], Awaitable[T]],
        fallback_chain: Sequence[FallbackSupplier] = (),
        policy: Optional[RetryPolicy] = None,
    ) -> Optional[T]:
        """Run *primary* with retries, falling back along *fallback_chain*.

        Returns:
            The primary result or the first successful fallback value.

        Raises:
            RecoveryExhaustedError: If the primary and every supplier
                failed.
            Exception: The primary error itself when the chain is empty.
        """
        outcome = await self.run(primary, fallback_chain, policy)
        return outcome.value

    async def run(
        self,
        primary: Callable[[], Awaitable[T]],
        fallback_chain: Sequence[FallbackSupplier] = (),
        policy: Optional[RetryPolicy] = None,
    ) -> RecoveryOutcome:
        """Like :meth:`with_recovery` but reports where the value came from."""
        self._total += 1
        started = self._timer()
        attempts = 1

        def _count_attempt(error: BaseException, attempt: int) -> None:
            nonlocal attempts
            attempts = attempt

        try:
            try:
                value = await self._executor.execute(primary, policy, on_retry=_count_attempt)
            except Exception as primary_error:
                self._failed += 1
                self._failure_streak += 1
                logger.warning(
                    "Primary operation failed, using fallback chain",
                    extra={"error": str(primary_error), "fallbacks": len(fallback_chain)},
                )
                return await self._run_fallbacks(primary_error, fallback_chain, attempts)

            self._successful += 1
            self._failure_streak = 0
            return RecoveryOutcome(value=value, attempts=attempts)
        finally:
            self._latencies.append(self._timer() - started)

    async def _run_fallbacks(
        self,
        primary_error: Exception,
        fallback_chain: Sequence[FallbackSupplier],
        attempts: int,
    ) -> RecoveryOutcome:
        if not fallback_chain:
            self._exhausted += 1
            raise primary_error

        last_error: Optional[Exception] = None
        for supplier in fallback_chain:
            name = _supplier_name(supplier)
            try:
                value = supplier()
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                last_error = e
                self._fallback_failures += 1
                logger.warning(
                    "Fallback supplier failed",
                    extra={"fallback": name, "error": str(e)},
                )
                continue

            self._fallback_usages += 1
            logger.info("Fallback supplier succeeded", extra={"fallback": name})
            return RecoveryOutcome(
                value=value,
                origin=Origin.FALLBACK,
                source=name,
                attempts=attempts,
                primary_error=str(primary_error),
            )

        self._exhausted += 1
        logger.error(
            "Primary operation and every fallback failed",
            extra={"error": str(primary_error), "fallback_error": str(last_error)},
        )
        raise RecoveryExhaustedError(primary_error, last_error) from last_error

    def stats(self) -> RecoveryStats:
        """Return a snapshot of the recovery counters (no side effects)."""
        executor_stats = self._executor.stats()
        samples = len(self._latencies)
        avg_ms = (sum(self._latencies) / samples) * 1000 if samples else 0.0
        return RecoveryStats(
            total_operations=self._total,
            successful_operations=self._successful,
            failed_operations=self._failed,
            exhausted_operations=self._exhausted,
            fallback_usages=self._fallback_usages,
            fallback_failures=self._fallback_failures,
            attempts=executor_stats.attempts,
            retries=executor_stats.retries,
            retried_operations=executor_stats.retried_operations,
            current_failure_streak=self._failure_streak,
            average_latency_ms=round(avg_ms, 3),
            latency_samples=samples,
            success_rate=(self._successful / self._total) * 100 if self._total else 0.0,
            circuit_state=CircuitState.CLOSED if self._failure_streak == 0 else CircuitState.OPEN,
        )

    def reset(self) -> None:
        """Clear every counter and the latency window."""
        self._reset_counters()
        self._executor.reset()
        logger.info("Recovery statistics reset")
