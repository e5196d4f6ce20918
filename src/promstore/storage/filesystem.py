"""File-backed storage adapter shared between processes.

All records live in one JSON document. Every mutation runs under an
exclusive cross-process lock as read, update, then atomic replace
(write-to-temp, fsync, ``os.replace``), so concurrent workers on the same
host accumulate into a single view. Readers never observe a half-written
document.

Each operation rewrites the whole document, which keeps the implementation
simple and correct; it is meant for modest cardinalities (thousands of
series), not for hot paths with millions of records.

Example:
    >>> storage = FileStorage("/var/run/myapp/metrics.json")
    >>> storage.add_and_get("promstore/counter/jobs_total/W10=/value", 1)
    1.0
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from promstore.exceptions import StorageContentionError, StorageUnavailableError
from promstore.storage.base import StorageAdapter, StorageConfig
from promstore.storage.locks import LockMode, LockStrategy, LockTimeout, get_lock_strategy

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


@dataclass
class FileStorageConfig(StorageConfig):
    """Configuration for file storage.

    Attributes:
        path: Location of the JSON document.
        lock_strategy: Lock strategy name (see ``get_lock_strategy``).
        lock_timeout: Seconds to wait for the lock on each attempt.
        fsync: Whether to fsync the document before replacing it.
    """

    path: Path = field(default_factory=lambda: Path(".promstore/metrics.json"))
    lock_strategy: str = "auto"
    lock_timeout: float = 1.0
    fsync: bool = True


class FileStorage(StorageAdapter[FileStorageConfig]):
    """Storage adapter persisting records in a locked JSON document."""

    backend_name = "file"

    def __init__(
        self,
        path: str | Path = ".promstore/metrics.json",
        *,
        lock_strategy: str | LockStrategy = "auto",
        lock_timeout: float = 1.0,
        max_attempts: int = 10,
        fsync: bool = True,
    ) -> None:
        """Initialize the file storage.

        Args:
            path: Location of the JSON document. Parent directories are
                created on first use.
            lock_strategy: Strategy name or instance.
            lock_timeout: Seconds to wait for the lock on each attempt.
            max_attempts: Lock attempts before giving up with
                StorageContentionError.
            fsync: Whether to fsync before the atomic rename.
        """
        strategy_name = lock_strategy if isinstance(lock_strategy, str) else lock_strategy.name
        config = FileStorageConfig(
            path=Path(path),
            lock_strategy=strategy_name,
            lock_timeout=lock_timeout,
            max_attempts=max_attempts,
            fsync=fsync,
        )
        super().__init__(config)
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if isinstance(lock_strategy, LockStrategy):
            self._strategy = lock_strategy
        else:
            self._strategy = get_lock_strategy(lock_strategy)

    @classmethod
    def _default_config(cls) -> FileStorageConfig:
        return FileStorageConfig()

    @property
    def path(self) -> Path:
        return self._config.path

    def _do_initialize(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(self.backend_name, f"cannot create {self.path.parent}: {e}") from e

    # -------------------------------------------------------------------------
    # Locking and document I/O
    # -------------------------------------------------------------------------

    @contextmanager
    def _locked(self, mode: LockMode, key: str) -> Iterator[None]:
        """Hold the document lock, retrying a bounded number of times."""
        self.initialize()
        attempts = self._config.max_attempts
        handle = None
        for attempt in range(1, attempts + 1):
            try:
                handle = self._strategy.acquire(self.path, mode, self._config.lock_timeout)
                break
            except LockTimeout:
                logger.debug(
                    "Lock on %s busy (attempt %d/%d)", self.path, attempt, attempts
                )
            except OSError as e:
                raise StorageUnavailableError(self.backend_name, f"cannot lock {self.path}: {e}") from e

        if handle is None:
            logger.warning(
                "Giving up on %s for key %r after %d attempts (lock held elsewhere: %s)",
                self.path, key, attempts, self._strategy.is_locked(self.path),
            )
            raise StorageContentionError(key, attempts)

        try:
            yield
        finally:
            self._strategy.release(handle)
            logger.debug(
                "Released %s after %.3fs (thread %d)",
                handle, time.time() - handle.timestamp, handle.thread_id,
            )

    def _read(self, strict: bool = True) -> dict[str, Any]:
        """Load the record map.

        Args:
            strict: If False, a corrupt document is logged and treated as
                empty instead of raising.

        Raises:
            StorageUnavailableError: If the document cannot be read, or is
                corrupt and ``strict`` is set.
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageUnavailableError(self.backend_name, f"cannot read {self.path}: {e}") from e

        if not text.strip():
            return {}
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            return self._corrupt(f"invalid JSON: {e}", strict)

        records = document.get("records") if isinstance(document, dict) else None
        if not isinstance(records, dict):
            return self._corrupt("no record map", strict)
        return records

    def _corrupt(self, reason: str, strict: bool) -> dict[str, Any]:
        if strict:
            raise StorageUnavailableError(self.backend_name, f"corrupt document {self.path}: {reason}")
        logger.error("Ignoring corrupt metrics document %s: %s", self.path, reason)
        return {}

    def _write(self, records: dict[str, Any]) -> None:
        """Atomically replace the document."""
        payload = json.dumps({"version": _FORMAT_VERSION, "records": records}, sort_keys=True)
        temp_path: str | None = None
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                if self._config.fsync:
                    os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
            temp_path = None
        except OSError as e:
            raise StorageUnavailableError(self.backend_name, f"cannot write {self.path}: {e}") from e
        finally:
            if temp_path is not None:
                Path(temp_path).unlink(missing_ok=True)

    def _current(self, records: dict[str, Any], key: str) -> float:
        value = records.get(key, 0.0)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise StorageUnavailableError(
                self.backend_name, f"record {key!r} holds non-numeric value {value!r}"
            )
        return float(value)

    # -------------------------------------------------------------------------
    # Atomic primitives
    # -------------------------------------------------------------------------

    def add_and_get(self, key: str, delta: float) -> float:
        with self._locked(LockMode.EXCLUSIVE, key):
            records = self._read()
            value = self._current(records, key) + float(delta)
            records[key] = value
            self._write(records)
            return value

    def set_and_get(self, key: str, value: float) -> float:
        with self._locked(LockMode.EXCLUSIVE, key):
            records = self._read()
            records[key] = float(value)
            self._write(records)
            return float(value)

    def get(self, key: str) -> float | None:
        with self._locked(LockMode.SHARED, key):
            records = self._read()
            if key not in records:
                return None
            return self._current(records, key)

    def enumerate(self, prefix: str) -> list[tuple[str, Any]]:
        with self._locked(LockMode.SHARED, prefix):
            records = self._read(strict=False)
        return [(k, v) for k, v in records.items() if k.startswith(prefix)]

    def wipe(self, prefix: str) -> int:
        with self._locked(LockMode.EXCLUSIVE, prefix):
            records = self._read()
            kept = {k: v for k, v in records.items() if not k.startswith(prefix)}
            removed = len(records) - len(kept)
            if removed:
                self._write(kept)
            return removed
