"""Base class for storage adapters.

A storage adapter is the only place numeric metric state lives. It exposes
a small set of per-key atomic primitives that every metric kind is built
on. Atomicity is per key only; there are no cross-key transactions.

Implementations:
    - MemoryStorage: in-process dictionary (single process, many threads)
    - FileStorage: JSON document guarded by a file lock (many processes)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar


@dataclass
class StorageConfig:
    """Base configuration for all storage adapters.

    Attributes:
        max_attempts: Upper bound on retries for contended atomic operations.
    """

    max_attempts: int = 10


ConfigT = TypeVar("ConfigT", bound=StorageConfig)


class StorageAdapter(ABC, Generic[ConfigT]):
    """Abstract atomic key-value store backing all metrics.

    Keys are strings, values are floats. Records are created lazily: adding
    to an absent key behaves as if it held 0.

    Example:
        >>> storage = MemoryStorage()
        >>> storage.add_and_get("promstore/counter/x/W10=/value", 2)
        2.0
        >>> storage.enumerate("promstore/")
        [('promstore/counter/x/W10=/value', 2.0)]
    """

    #: Short backend name used in error messages.
    backend_name: str = "abstract"

    def __init__(self, config: ConfigT | None = None) -> None:
        """Initialize the adapter with optional configuration.

        Args:
            config: Adapter configuration. If None, uses default configuration.
        """
        self._config = config or self._default_config()
        self._initialized = False

    @classmethod
    @abstractmethod
    def _default_config(cls) -> ConfigT:
        """Create default configuration for this adapter type."""
        pass

    @property
    def config(self) -> ConfigT:
        """Get the adapter configuration."""
        return self._config

    # -------------------------------------------------------------------------
    # Lifecycle Methods
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """Prepare the backend (create directories, open connections, ...).

        Called automatically on first use.
        """
        if not self._initialized:
            self._do_initialize()
            self._initialized = True

    @abstractmethod
    def _do_initialize(self) -> None:
        """Perform actual initialization. Override in subclasses."""
        pass

    def close(self) -> None:
        """Release backend resources. Override where needed."""
        pass

    def __enter__(self) -> "StorageAdapter[ConfigT]":
        self.initialize()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Atomic primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    def add_and_get(self, key: str, delta: float) -> float:
        """Atomically add ``delta`` to ``key`` and return the new value.

        Absent records are created at 0 first.

        Raises:
            StorageUnavailableError: If the backend is unreachable.
            StorageContentionError: If bounded retries are exhausted.
        """
        pass

    @abstractmethod
    def set_and_get(self, key: str, value: float) -> float:
        """Atomically overwrite ``key`` with ``value`` and return it.

        Raises:
            StorageUnavailableError: If the backend is unreachable.
            StorageContentionError: If bounded retries are exhausted.
        """
        pass

    @abstractmethod
    def get(self, key: str) -> float | None:
        """Read one record. Returns None when the record does not exist."""
        pass

    @abstractmethod
    def enumerate(self, prefix: str) -> list[tuple[str, Any]]:
        """Snapshot all records whose key starts with ``prefix``.

        No isolation is guaranteed across keys. Values are returned as stored;
        callers must tolerate non-numeric values written by foreign code.
        """
        pass

    @abstractmethod
    def wipe(self, prefix: str) -> int:
        """Remove every record whose key starts with ``prefix``.

        Returns:
            Number of records removed.
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._config!r})"
