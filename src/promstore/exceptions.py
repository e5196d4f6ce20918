"""Exception hierarchy for promstore.

All errors raised by the package derive from ``PromstoreError`` so callers
can catch everything the library raises with a single clause. Validation
errors also derive from ``ValueError``.
"""

from __future__ import annotations

from typing import Any


class PromstoreError(Exception):
    """Base exception for all promstore errors."""

    pass


# =============================================================================
# Metric definition / usage errors
# =============================================================================


class MetricError(PromstoreError):
    """Base exception for metric registration and usage errors."""

    pass


class DuplicateMetricError(MetricError):
    """Raised when a metric name is re-registered with a different schema."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Metric '{name}' already registered: {reason}")


class InvalidLabelError(MetricError, ValueError):
    """Raised on malformed label names or label value arity mismatch."""

    pass


class InvalidBucketsError(MetricError, ValueError):
    """Raised when histogram bucket bounds are empty, unsorted or duplicated."""

    pass


class InvalidArgumentError(MetricError, ValueError):
    """Raised when an operation receives an unusable value.

    For example a negative counter increment.
    """

    def __init__(self, message: str, value: Any = None) -> None:
        self.value = value
        super().__init__(message)


# =============================================================================
# Storage errors
# =============================================================================


class StorageError(PromstoreError):
    """Base exception for storage adapter errors."""

    pass


class StorageUnavailableError(StorageError):
    """Raised when the storage backend cannot be reached."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"Storage backend '{backend}' unavailable: {message}")


class StorageContentionError(StorageError):
    """Raised when a bounded retry loop on an atomic operation is exhausted."""

    def __init__(self, key: str, attempts: int) -> None:
        self.key = key
        self.attempts = attempts
        super().__init__(
            f"Gave up on atomic operation for '{key}' after {attempts} attempts"
        )


# =============================================================================
# Configuration errors
# =============================================================================


class ConfigError(PromstoreError):
    """Raised when configuration cannot be loaded or is invalid."""

    pass
