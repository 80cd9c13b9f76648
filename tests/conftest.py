"""
Pytest configuration and fixtures for entrystore tests.

This module provides shared fixtures used across unit and integration tests.
"""

import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Generator

import pytest

from entrystore.schema import Entry
from entrystore.store import EntryStore, LiveQuery

# Seconds to wait for a live query snapshot before failing a test.
SNAPSHOT_TIMEOUT = 5.0


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    """Path for a fresh database file."""
    return temp_dir / "entries.db"


@pytest.fixture
def store(db_path: Path) -> Generator[EntryStore, None, None]:
    """Create a file-backed store."""
    entry_store = EntryStore(db_path)
    yield entry_store
    entry_store.close()


@pytest.fixture
def t1() -> datetime:
    """An earlier instant."""
    return datetime(2024, 1, 1, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def t2() -> datetime:
    """A later instant."""
    return datetime(2024, 1, 2, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def make_entry() -> Callable[..., Entry]:
    """Factory for entries with sensible defaults."""

    def _make(value: int = 1, timestamp: datetime | None = None, id: int = 0) -> Entry:
        if timestamp is None:
            timestamp = datetime(2024, 1, 1, tzinfo=UTC)
        return Entry(id=id, timestamp=timestamp, value=value)

    return _make


def next_matching(
    live: LiveQuery,
    predicate: Callable[[list[Entry]], bool],
    timeout: float = SNAPSHOT_TIMEOUT,
) -> list[Entry]:
    """Pull snapshots until one satisfies predicate."""
    while True:
        snapshot = live.get(timeout=timeout)
        assert snapshot is not None, "subscription ended before a matching snapshot"
        if predicate(snapshot):
            return snapshot
