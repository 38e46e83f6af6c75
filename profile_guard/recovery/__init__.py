"""Retry with backoff and fallback-chain recovery."""

from profile_guard.recovery.executor import ExecutorStats, RetryExecutor
from profile_guard.recovery.orchestrator import (
    CircuitState,
    RecoveryOrchestrator,
    RecoveryOutcome,
    RecoveryStats,
)
from profile_guard.recovery.policy import ErrorDisposition, RetryPolicy, classify_error

__all__ = [
    "CircuitState",
    "ErrorDisposition",
    "ExecutorStats",
    "RecoveryOrchestrator",
    "RecoveryOutcome",
    "RecoveryStats",
    "RetryExecutor",
    "RetryPolicy",
    "classify_error",
]
