"""Tests for RecoveryOrchestrator fallback chains and statistics."""

from typing import Iterator

import pytest

from profile_guard.cache.entry import Origin
from profile_guard.exceptions import ErrorKind, RecoveryExhaustedError, RemoteSourceError
from profile_guard.recovery.executor import RetryExecutor
from profile_guard.recovery.orchestrator import CircuitState, RecoveryOrchestrator
from profile_guard.recovery.policy import RetryPolicy


def ticking_timer(step: float) -> "Iterator[float]":
    now = 0.0
    while True:
        yield now
        now += step


@pytest.fixture
def orchestrator(sleep) -> RecoveryOrchestrator:
    executor = RetryExecutor(RetryPolicy(jitter_factor=0.0), sleep=sleep)
    return RecoveryOrchestrator(executor, latency_window=100)


async def succeed() -> str:
    return "primary"


async def unauthorized() -> str:
    raise RemoteSourceError(ErrorKind.UNAUTHORIZED, "Unauthorized")


class TestWithRecovery:
    @pytest.mark.asyncio
    async def test_primary_success(self, orchestrator) -> None:
        outcome = await orchestrator.run(succeed, [lambda: "fallback"])
        assert outcome.value == "primary"
        assert outcome.origin is Origin.AUTHORITATIVE
        assert outcome.source == "primary"
        assert outcome.attempts == 1
        assert outcome.primary_error is None

    @pytest.mark.asyncio
    async def test_first_fallback_wins(self, orchestrator) -> None:
        def cached_copy() -> str:
            return "cached"

        value = await orchestrator.with_recovery(unauthorized, [cached_copy, lambda: "never"])
        assert value == "cached"

    @pytest.mark.asyncio
    async def test_outcome_names_the_supplier(self, orchestrator) -> None:
        def cached_copy() -> str:
            return "cached"

        outcome = await orchestrator.run(unauthorized, [cached_copy])
        assert outcome.origin is Origin.FALLBACK
        assert outcome.source == "cached_copy"
        assert outcome.primary_error == "Unauthorized"
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_async_supplier(self, orchestrator) -> None:
        async def remote_mirror() -> str:
            return "mirror"

        assert await orchestrator.with_recovery(unauthorized, [remote_mirror]) == "mirror"

    @pytest.mark.asyncio
    async def test_failing_supplier_is_skipped(self, orchestrator) -> None:
        def broken() -> str:
            raise LookupError("nothing cached")

        value = await orchestrator.with_recovery(unauthorized, [broken, lambda: "second"])
        assert value == "second"
        assert orchestrator.stats().fallback_failures == 1

    @pytest.mark.asyncio
    async def test_trailing_none_supplier_never_raises(self, orchestrator) -> None:
        def broken() -> str:
            raise LookupError("nothing cached")

        assert await orchestrator.with_recovery(unauthorized, [broken, lambda: None]) is None

    @pytest.mark.asyncio
    async def test_all_failures_aggregate_messages(self, orchestrator) -> None:
        def broken() -> str:
            raise LookupError("Cache miss")

        with pytest.raises(RecoveryExhaustedError) as exc_info:
            await orchestrator.with_recovery(unauthorized, [broken])

        message = str(exc_info.value)
        assert "Unauthorized" in message
        assert "Cache miss" in message
        assert isinstance(exc_info.value.primary_error, RemoteSourceError)
        assert isinstance(exc_info.value.fallback_error, LookupError)
        assert orchestrator.stats().exhausted_operations == 1

    @pytest.mark.asyncio
    async def test_two_failing_fallbacks(self, orchestrator) -> None:
        def stale() -> str:
            raise LookupError("No stale copy")

        def synthesized() -> str:
            raise LookupError("No session data")

        with pytest.raises(RecoveryExhaustedError) as exc_info:
            await orchestrator.with_recovery(unauthorized, [stale, synthesized])
        assert "Unauthorized" in str(exc_info.value)
        assert "No session data" in str(exc_info.value)
        assert orchestrator.stats().fallback_failures == 2

    @pytest.mark.asyncio
    async def test_terminal_primary_uses_stale_copy_without_retry(self, orchestrator, sleep) -> None:
        stale_cached = {"id": "u1", "full_name": "Cached"}
        value = await orchestrator.with_recovery(unauthorized, [lambda: stale_cached, lambda: None])
        assert value is stale_cached
        assert sleep.delays == []
        assert orchestrator.stats().retries == 0

    @pytest.mark.asyncio
    async def test_empty_chain_reraises_primary(self, orchestrator) -> None:
        with pytest.raises(RemoteSourceError, match="Unauthorized"):
            await orchestrator.with_recovery(unauthorized)

    @pytest.mark.asyncio
    async def test_transient_primary_is_retried_before_fallback(self, orchestrator, sleep) -> None:
        calls = 0

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            raise RemoteSourceError(ErrorKind.NETWORK, "Network error")

        outcome = await orchestrator.run(flaky, [lambda: "fb"])
        assert outcome.value == "fb"
        assert outcome.attempts == 3
        assert calls == 3
        assert sleep.delays == [1.0, 2.0]


class TestStats:
    @pytest.mark.asyncio
    async def test_no_operations(self, orchestrator) -> None:
        stats = orchestrator.stats()
        assert stats.success_rate == 0
        assert stats.circuit_state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failure_streak_opens_and_closes(self, orchestrator) -> None:
        await orchestrator.with_recovery(unauthorized, [lambda: None])
        await orchestrator.with_recovery(unauthorized, [lambda: None])
        stats = orchestrator.stats()
        assert stats.current_failure_streak == 2
        assert stats.circuit_state is CircuitState.OPEN

        await orchestrator.with_recovery(succeed)
        stats = orchestrator.stats()
        assert stats.current_failure_streak == 0
        assert stats.circuit_state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_success_rate_percentage(self, orchestrator) -> None:
        await orchestrator.with_recovery(succeed)
        await orchestrator.with_recovery(unauthorized, [lambda: None])
        stats = orchestrator.stats()
        assert stats.total_operations == 2
        assert stats.successful_operations == 1
        assert stats.failed_operations == 1
        assert stats.fallback_usages == 1
        assert stats.success_rate == 50.0

    @pytest.mark.asyncio
    async def test_average_latency_from_timer(self, sleep) -> None:
        ticks = ticking_timer(0.05)
        orchestrator = RecoveryOrchestrator(
            RetryExecutor(RetryPolicy(), sleep=sleep), latency_window=100, timer=lambda: next(ticks)
        )
        await orchestrator.with_recovery(succeed)
        stats = orchestrator.stats()
        assert stats.latency_samples == 1
        assert stats.average_latency_ms == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_latency_window_is_bounded(self, sleep) -> None:
        durations = iter([0.0, 0.010, 0.0, 0.020, 0.0, 0.030])
        orchestrator = RecoveryOrchestrator(
            RetryExecutor(RetryPolicy(), sleep=sleep), latency_window=2, timer=lambda: next(durations)
        )
        for _ in range(3):
            await orchestrator.with_recovery(succeed)
        stats = orchestrator.stats()
        assert stats.latency_samples == 2
        assert stats.average_latency_ms == pytest.approx(25.0)

    @pytest.mark.asyncio
    async def test_retry_counters_come_from_executor(self, orchestrator) -> None:
        attempts = iter([RemoteSourceError(ErrorKind.TIMEOUT), None])

        async def once_flaky() -> str:
            error = next(attempts)
            if error is not None:
                raise error
            return "ok"

        await orchestrator.with_recovery(once_flaky)
        stats = orchestrator.stats()
        assert stats.attempts == 2
        assert stats.retries == 1
        assert stats.retried_operations == 1

    @pytest.mark.asyncio
    async def test_reset(self, orchestrator) -> None:
        await orchestrator.with_recovery(unauthorized, [lambda: None])
        orchestrator.reset()
        stats = orchestrator.stats()
        assert stats.total_operations == 0
        assert stats.current_failure_streak == 0
        assert stats.attempts == 0
        assert stats.latency_samples == 0
