"""Lock strategies for cross-process file storage.

This module implements the Strategy pattern for file locking so the file
storage adapter can run on any platform:

- FcntlLockStrategy: POSIX ``flock`` (Linux, macOS, BSD), shared + exclusive
- FileLockStrategy: cross-platform locking via the filelock library
- NoOpLockStrategy: no locking, for single-process use and tests

Locks are taken on a sidecar ``.<name>.lock`` file next to the protected
file, so the protected file itself can be replaced atomically while the
lock is held. Sidecar files are never removed; removing them while another
process waits on the old inode would break mutual exclusion.
"""

from __future__ import annotations

import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Iterator

import filelock

# Sleep between non-blocking attempts while waiting for a lock.
_POLL_INTERVAL = 0.005


class LockMode(Enum):
    """Lock acquisition modes."""

    SHARED = auto()  # readers
    EXCLUSIVE = auto()  # writers


class LockTimeout(Exception):
    """Raised when lock acquisition times out."""

    def __init__(self, path: Path, timeout: float) -> None:
        self.path = path
        self.timeout = timeout
        super().__init__(f"Timeout acquiring lock on {path} after {timeout}s")


@dataclass(frozen=True)
class LockHandle:
    """Handle representing an acquired lock.

    Attributes:
        path: Path of the protected file.
        mode: Lock mode.
        fd: File descriptor of the sidecar lock file (fcntl strategy).
        token: Strategy-specific lock object (filelock strategy).
        timestamp: When the lock was acquired.
        thread_id: ID of the acquiring thread.
        process_id: ID of the acquiring process.
    """

    path: Path
    mode: LockMode
    fd: int | None = None
    token: Any = field(default=None, compare=False, repr=False)
    timestamp: float = field(default_factory=time.time)
    thread_id: int = field(default_factory=threading.get_ident)
    process_id: int = field(default_factory=os.getpid)

    def __str__(self) -> str:
        return f"LockHandle({self.path}, {self.mode.name}, pid={self.process_id})"


def lock_path_for(path: Path) -> Path:
    """Sidecar lock file for ``path``."""
    return path.parent / f".{path.name}.lock"


class LockStrategy(ABC):
    """Abstract base class for lock strategies.

    Implementations must exclude both other threads and other processes.
    """

    name: str = "abstract"

    @abstractmethod
    def acquire(
        self,
        path: Path,
        mode: LockMode,
        timeout: float | None = None,
    ) -> LockHandle:
        """Acquire a lock on ``path``.

        Args:
            path: Path of the file to protect.
            mode: Lock mode.
            timeout: Maximum seconds to wait (None waits forever).

        Raises:
            LockTimeout: If the timeout expires first.
        """
        pass

    @abstractmethod
    def release(self, handle: LockHandle) -> None:
        """Release a lock returned by ``acquire``."""
        pass

    @abstractmethod
    def is_locked(self, path: Path) -> bool:
        """Check whether any process currently holds a lock on ``path``."""
        pass

    @contextmanager
    def lock(
        self,
        path: Path,
        mode: LockMode,
        timeout: float | None = None,
    ) -> Iterator[LockHandle]:
        """Context manager for lock acquisition.

        Example:
            >>> with strategy.lock(path, LockMode.EXCLUSIVE):
            ...     rewrite(path)
        """
        handle = self.acquire(path, mode, timeout)
        try:
            yield handle
        finally:
            self.release(handle)


class FcntlLockStrategy(LockStrategy):
    """POSIX ``flock`` based locking.

    ``flock`` locks belong to the open file description, so two threads of
    the same process using separate descriptors exclude each other just like
    two processes do.
    """

    name = "fcntl"

    def __init__(self) -> None:
        if sys.platform == "win32":
            raise RuntimeError("FcntlLockStrategy is not available on Windows")

        import fcntl

        self._fcntl = fcntl

    def acquire(
        self,
        path: Path,
        mode: LockMode,
        timeout: float | None = None,
    ) -> LockHandle:
        lock_path = lock_path_for(path)
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        operation = self._fcntl.LOCK_SH if mode == LockMode.SHARED else self._fcntl.LOCK_EX
        fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o666)

        try:
            if timeout is None:
                self._fcntl.flock(fd, operation)
            else:
                deadline = time.monotonic() + timeout
                while True:
                    try:
                        self._fcntl.flock(fd, operation | self._fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        if time.monotonic() >= deadline:
                            raise LockTimeout(path, timeout)
                        time.sleep(_POLL_INTERVAL)
        except BaseException:
            os.close(fd)
            raise

        return LockHandle(path=path, mode=mode, fd=fd)

    def release(self, handle: LockHandle) -> None:
        if handle.fd is None:
            raise ValueError(f"Not an fcntl lock handle: {handle}")
        try:
            self._fcntl.flock(handle.fd, self._fcntl.LOCK_UN)
        finally:
            os.close(handle.fd)

    def is_locked(self, path: Path) -> bool:
        lock_path = lock_path_for(path)
        if not lock_path.exists():
            return False

        try:
            fd = os.open(str(lock_path), os.O_RDWR)
        except OSError:
            return False
        try:
            self._fcntl.flock(fd, self._fcntl.LOCK_EX | self._fcntl.LOCK_NB)
            self._fcntl.flock(fd, self._fcntl.LOCK_UN)
            return False
        except BlockingIOError:
            return True
        finally:
            os.close(fd)


class FileLockStrategy(LockStrategy):
    """Cross-platform locking using the filelock library.

    filelock only provides exclusive locks, so shared requests are served
    with an exclusive lock.
    """

    name = "filelock"

    def acquire(
        self,
        path: Path,
        mode: LockMode,
        timeout: float | None = None,
    ) -> LockHandle:
        lock_path = lock_path_for(path)
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        # A fresh, non-reentrant lock object per acquisition keeps threads
        # of the same process mutually exclusive.
        lock = filelock.FileLock(str(lock_path), thread_local=False)
        try:
            lock.acquire(timeout=-1 if timeout is None else timeout, poll_interval=_POLL_INTERVAL)
        except filelock.Timeout as e:
            raise LockTimeout(path, timeout or 0) from e

        return LockHandle(path=path, mode=mode, token=lock)

    def release(self, handle: LockHandle) -> None:
        if handle.token is None:
            raise ValueError(f"Not a filelock lock handle: {handle}")
        handle.token.release()

    def is_locked(self, path: Path) -> bool:
        lock_path = lock_path_for(path)
        if not lock_path.exists():
            return False

        probe = filelock.FileLock(str(lock_path), thread_local=False)
        try:
            probe.acquire(timeout=0)
        except filelock.Timeout:
            return True
        probe.release()
        return False


class NoOpLockStrategy(LockStrategy):
    """No-op lock strategy.

    Useful when a single process owns the file or when external locking is
    already in place.
    """

    name = "none"

    def acquire(
        self,
        path: Path,
        mode: LockMode,
        timeout: float | None = None,
    ) -> LockHandle:
        return LockHandle(path=path, mode=mode)

    def release(self, handle: LockHandle) -> None:
        pass

    def is_locked(self, path: Path) -> bool:
        return False


def get_lock_strategy(name: str = "auto") -> LockStrategy:
    """Create a lock strategy by name.

    Args:
        name: ``auto`` (fcntl on POSIX, filelock elsewhere), ``fcntl``,
            ``filelock`` or ``none``.

    Raises:
        ValueError: For unknown names.
    """
    name = name.lower().strip()
    if name == "auto":
        if sys.platform != "win32":
            return FcntlLockStrategy()
        return FileLockStrategy()
    if name == "fcntl":
        return FcntlLockStrategy()
    if name == "filelock":
        return FileLockStrategy()
    if name in ("none", "noop"):
        return NoOpLockStrategy()
    raise ValueError(f"Unknown lock strategy: '{name}'")
