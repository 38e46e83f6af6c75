"""
profile-guard exception hierarchy.

All custom exceptions inherit from ProfileGuardException so callers can
catch a single base type when they want a broad safety net.
"""

from enum import Enum
from typing import Optional


class ProfileGuardException(Exception):
    """Base exception for all profile-guard errors."""


class ConfigurationError(ProfileGuardException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class StorageError(ProfileGuardException):
    """Raised by a storage provider when a read or write fails."""


class StorageQuotaExceededError(StorageError):
    """Raised when a write would exceed the provider's byte quota."""


class ErrorKind(str, Enum):
    """Failure categories reported by the remote profile source."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    DNS = "dns"
    CONNECTION_RESET = "connection_reset"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    MALFORMED = "malformed"


class RemoteSourceError(ProfileGuardException):
    """Raised by a remote source with a typed :class:`ErrorKind`.

    Args:
        kind: Failure category used for retry classification.
        message: Human-readable description.
    """

    def __init__(self, kind: ErrorKind, message: str = "") -> None:
        self.kind = ErrorKind(kind)
        super().__init__(message or self.kind.value)


class RecoveryExhaustedError(ProfileGuardException):
    """Raised when the primary operation and every fallback failed.

    Args:
        primary_error: Last error raised by the primary operation.
        fallback_error: Error raised by the last fallback supplier.
    """

    def __init__(
        self,
        primary_error: BaseException,
        fallback_error: Optional[BaseException],
    ) -> None:
        self.primary_error = primary_error
        self.fallback_error = fallback_error
        super().__init__(
            "Primary operation and fallbacks failed. "
            f"Primary: {primary_error}, Fallback: {fallback_error}"
        )


class ObservabilityError(ProfileGuardException):
    """Raised when metrics aggregation or report export fails."""


class SchemaVersionMismatch(ProfileGuardException):
    """Raised when a stored cache entry carries another schema version.

    Args:
        found: Version recorded in the stored entry.
        expected: Version the reader understands.
    """

    def __init__(self, found: str, expected: str) -> None:
        self.found = found
        self.expected = expected
        super().__init__(f"Cache schema version {found!r} does not match {expected!r}")
