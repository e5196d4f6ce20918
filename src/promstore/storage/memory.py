"""In-memory storage adapter.

Keeps every record in a dictionary guarded by a lock. All threads of one
process share the data; other processes do not. Useful for tests, for
single-process servers and as the reference implementation of the adapter
contract.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from promstore.exceptions import StorageUnavailableError
from promstore.storage.base import StorageAdapter, StorageConfig


@dataclass
class MemoryConfig(StorageConfig):
    """Configuration for memory storage.

    Attributes:
        max_items: Maximum number of records (0 for unlimited). Writes that
            would create a record beyond the limit raise
            StorageUnavailableError.
    """

    max_items: int = 0


class MemoryStorage(StorageAdapter[MemoryConfig]):
    """Dictionary-backed storage adapter.

    Example:
        >>> storage = MemoryStorage()
        >>> storage.add_and_get("k", 1.5)
        1.5
        >>> storage.set_and_get("k", 10)
        10.0
    """

    backend_name = "memory"

    def __init__(self, max_items: int = 0, **kwargs: Any) -> None:
        """Initialize the memory storage.

        Args:
            max_items: Maximum number of records (0 for unlimited).
            **kwargs: Additional StorageConfig options.
        """
        super().__init__(MemoryConfig(max_items=max_items, **kwargs))
        self._data: dict[str, float] = {}
        self._lock = threading.Lock()

    @classmethod
    def _default_config(cls) -> MemoryConfig:
        return MemoryConfig()

    def _do_initialize(self) -> None:
        pass

    def _check_capacity(self, key: str) -> None:
        limit = self._config.max_items
        if limit > 0 and key not in self._data and len(self._data) >= limit:
            raise StorageUnavailableError(self.backend_name, f"full ({limit} records)")

    def add_and_get(self, key: str, delta: float) -> float:
        with self._lock:
            self._check_capacity(key)
            value = self._data.get(key, 0.0) + float(delta)
            self._data[key] = value
            return value

    def set_and_get(self, key: str, value: float) -> float:
        with self._lock:
            self._check_capacity(key)
            self._data[key] = float(value)
            return self._data[key]

    def get(self, key: str) -> float | None:
        with self._lock:
            return self._data.get(key)

    def enumerate(self, prefix: str) -> list[tuple[str, Any]]:
        with self._lock:
            return [(k, v) for k, v in self._data.items() if k.startswith(prefix)]

    def wipe(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
