"""Shared fixtures for promstore tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from promstore.registry import CollectorRegistry
from promstore.storage.filesystem import FileStorage
from promstore.storage.memory import MemoryStorage


@pytest.fixture
def memory_storage() -> MemoryStorage:
    """Fresh in-memory storage."""
    return MemoryStorage()


@pytest.fixture
def file_storage(tmp_path: Path) -> FileStorage:
    """File storage in a temporary directory (no fsync, for speed)."""
    return FileStorage(tmp_path / "metrics.json", fsync=False)


@pytest.fixture(params=["memory", "file"])
def storage(request: pytest.FixtureRequest, tmp_path: Path):
    """Every built-in storage backend."""
    if request.param == "memory":
        return MemoryStorage()
    return FileStorage(tmp_path / "metrics.json", fsync=False)


@pytest.fixture
def registry(storage) -> CollectorRegistry:
    """Registry over each built-in backend."""
    return CollectorRegistry(storage)
