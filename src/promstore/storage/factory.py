"""Factory functions for creating storage adapters.

Built-in backends are loaded lazily by name; third-party backends can be
registered at runtime with ``register_storage``.
"""

from __future__ import annotations

from typing import Any, Callable

from promstore.exceptions import StorageError
from promstore.storage.base import StorageAdapter

StorageConstructor = Callable[..., StorageAdapter[Any]]

_storage_registry: dict[str, StorageConstructor] = {}


def register_storage(name: str) -> Callable[[StorageConstructor], StorageConstructor]:
    """Decorator to register a storage backend.

    Example:
        >>> @register_storage("redis")
        ... class RedisStorage(StorageAdapter):
        ...     ...
    """

    def decorator(cls: StorageConstructor) -> StorageConstructor:
        _storage_registry[name.lower().strip()] = cls
        return cls

    return decorator


def create_storage(backend: str = "memory", **kwargs: Any) -> StorageAdapter[Any]:
    """Create a storage adapter for the specified backend.

    Args:
        backend: Backend name. Built-ins:
            - "memory": in-process storage (default)
            - "file" / "filesystem": locked JSON document shared by processes
        **kwargs: Backend-specific options.

    Raises:
        StorageError: If the backend is unknown or rejects its options.

    Example:
        >>> storage = create_storage("file", path="/tmp/metrics.json")
    """
    backend = backend.lower().strip()

    if backend in _storage_registry:
        constructor = _storage_registry[backend]
    elif backend == "memory":
        from promstore.storage.memory import MemoryStorage

        constructor = MemoryStorage
    elif backend in ("file", "filesystem"):
        from promstore.storage.filesystem import FileStorage

        constructor = FileStorage
    else:
        available = sorted({"memory", "file", *_storage_registry})
        raise StorageError(
            f"Unknown storage backend: '{backend}'. Available: {', '.join(available)}"
        )

    try:
        return constructor(**kwargs)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Invalid options for storage backend '{backend}': {e}") from e


def list_storages() -> list[str]:
    """Names of all available backends."""
    return sorted({"memory", "file", *_storage_registry})
