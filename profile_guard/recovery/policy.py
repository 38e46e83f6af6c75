"""
Retry policy and error classification.

Classification dispatches on the typed :class:`ErrorKind` carried by
:class:`RemoteSourceError` and on a few builtin exception types.
Anything unrecognised is non-retryable so programming errors are not
masked by retries.
"""

import asyncio
import socket
from enum import Enum
from typing import Callable, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from profile_guard.config import RetrySettings, get_settings
from profile_guard.exceptions import ErrorKind, RemoteSourceError

TERMINAL_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.UNAUTHORIZED,
    ErrorKind.FORBIDDEN,
    ErrorKind.NOT_FOUND,
    ErrorKind.INVALID_CREDENTIALS,
    ErrorKind.MALFORMED,
})

TRANSIENT_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK,
    ErrorKind.DNS,
    ErrorKind.CONNECTION_RESET,
})


class ErrorDisposition(str, Enum):
    """How the executor treats a failed attempt."""

    TERMINAL = "terminal"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


def classify_error(error: BaseException) -> ErrorDisposition:
    """Classify *error* as terminal, transient or unknown.

    Args:
        error: Exception raised by an attempt.

    Returns:
        The :class:`ErrorDisposition` for *error*.
    """
    if isinstance(error, RemoteSourceError):
        if error.kind in TERMINAL_KINDS:
            return ErrorDisposition.TERMINAL
        if error.kind in TRANSIENT_KINDS:
            return ErrorDisposition.TRANSIENT
        return ErrorDisposition.UNKNOWN
    if isinstance(error, PermissionError):
        return ErrorDisposition.TERMINAL
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError, socket.gaierror)):
        return ErrorDisposition.TRANSIENT
    return ErrorDisposition.UNKNOWN


def is_transient(error: BaseException) -> bool:
    """Default retry predicate: only transient errors are retried."""
    return classify_error(error) is ErrorDisposition.TRANSIENT


class RetryPolicy(BaseModel):
    """Bounded exponential-backoff retry policy.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Cap applied to the exponential delay, in seconds.
        jitter_factor: Upper bound of the random jitter as a fraction
            of the capped delay.
        is_retryable: Predicate for errors that are not terminal.
            Terminal errors are never retried whatever it returns.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=5.0, ge=0.0)
    jitter_factor: float = Field(default=0.1, ge=0.0)
    is_retryable: Callable[[BaseException], bool] = Field(default=is_transient, exclude=True)

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryPolicy":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self

    @classmethod
    def from_settings(cls, settings: Optional[RetrySettings] = None, **overrides: object) -> "RetryPolicy":
        """Build a policy from the ``retry`` settings section."""
        s = settings or get_settings().retry
        values = {
            "max_attempts": s.max_attempts,
            "base_delay": s.base_delay_seconds,
            "max_delay": s.max_delay_seconds,
            "jitter_factor": s.jitter_factor,
        }
        values.update(overrides)
        return cls(**values)

    def backoff(self, retry_index: int) -> float:
        """Capped delay before retry number *retry_index* (0-based), without jitter."""
        return min(self.base_delay * (2 ** retry_index), self.max_delay)

    def max_total_wait(self) -> float:
        """Upper bound of the total time spent sleeping between attempts."""
        return sum(
            self.backoff(i) * (1 + self.jitter_factor)
            for i in range(self.max_attempts - 1)
        )
