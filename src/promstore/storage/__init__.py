"""Storage adapters holding all numeric metric state.

Example:
    >>> from promstore.storage import create_storage
    >>> storage = create_storage("file", path="/tmp/metrics.json")
"""

from promstore.storage.base import StorageAdapter, StorageConfig
from promstore.storage.factory import create_storage, list_storages, register_storage
from promstore.storage.filesystem import FileStorage, FileStorageConfig
from promstore.storage.locks import (
    FcntlLockStrategy,
    FileLockStrategy,
    LockHandle,
    LockMode,
    LockStrategy,
    LockTimeout,
    NoOpLockStrategy,
    get_lock_strategy,
)
from promstore.storage.memory import MemoryConfig, MemoryStorage

__all__ = [
    # Base
    "StorageAdapter",
    "StorageConfig",
    # Backends
    "MemoryStorage",
    "MemoryConfig",
    "FileStorage",
    "FileStorageConfig",
    # Factory
    "create_storage",
    "list_storages",
    "register_storage",
    # Locks
    "LockMode",
    "LockHandle",
    "LockStrategy",
    "LockTimeout",
    "FcntlLockStrategy",
    "FileLockStrategy",
    "NoOpLockStrategy",
    "get_lock_strategy",
]
