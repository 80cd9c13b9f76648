"""
Live query subscriptions.

A LiveQuery keeps a query result up to date: it emits the current result
as soon as it starts and a fresh result every time one of its tables is
invalidated. Re-queries run on a dedicated worker thread, never on the
writer's thread; invalidations that arrive while a query is running are
coalesced into a single follow-up query.

Delivery guarantees:
    - Snapshots arrive in the order they were produced
    - After cancel() returns, nothing more is delivered
    - An error ends the subscription with a SubscriptionError instead of
      silently going quiet
"""

import itertools
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Iterator, TypeVar

from entrystore.errors import (
    EntryStoreError,
    StorageConnectionError,
    SubscriptionClosedError,
    SubscriptionError,
)
from entrystore.store.invalidation import InvalidationTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")

_counter = itertools.count(1)


@dataclass(frozen=True)
class _Terminal:
    """End-of-stream marker, optionally carrying the error that ended it."""

    error: SubscriptionError | None = None


class LiveQuery(Generic[T]):
    """
    A cancellable, push-updated query result.

    Snapshots can be consumed by iterating, by calling get(), or by passing
    an on_snapshot callback (invoked on the worker thread) at creation.

    Usage:
        with store.subscribe_all_entries() as live:
            for entries in live:
                render(entries)

    Attributes:
        name: Identifier used in logs and the worker thread name
        tables: Tables whose invalidation triggers a re-query
        sql: The query being re-run (for diagnostics)
    """

    def __init__(
        self,
        query: Callable[[], T],
        tracker: InvalidationTracker,
        tables: Iterable[str],
        sql: str = "",
        on_snapshot: Callable[[T], None] | None = None,
        on_close: Callable[["LiveQuery[T]"], None] | None = None,
    ) -> None:
        """
        Register with the tracker and start producing snapshots.

        Args:
            query: Runs the query and returns one snapshot
            tracker: Invalidation bus to observe
            tables: Table names to observe
            sql: SQL text, kept for error reporting
            on_snapshot: Optional push callback; snapshots are then not queued
            on_close: Called once when the subscription ends for any reason
        """
        self.name = f"live-{next(_counter)}"
        self.tables = frozenset(tables)
        self.sql = sql
        self._query = query
        self._tracker = tracker
        self._on_snapshot = on_snapshot
        self._on_close = on_close

        self._queue: queue.Queue[T | _Terminal] = queue.Queue()
        self._dirty = threading.Event()
        self._stopped = threading.Event()
        self._delivery_lock = threading.RLock()
        self._closed_notified = False
        self._emitted = 0

        self._dirty.set()
        self._observer = tracker.add_observer(self.tables, self._on_invalidated)
        self._thread = threading.Thread(
            target=self._run,
            name=f"entrystore-{self.name}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Started %s on %s", self.name, sorted(self.tables))

    # =========================================================================
    # Producer side
    # =========================================================================

    def _on_invalidated(self, tables: set[str]) -> None:
        self._dirty.set()

    def _run(self) -> None:
        while True:
            self._dirty.wait()
            if self._stopped.is_set():
                return
            self._dirty.clear()

            try:
                snapshot = self._query()
            except StorageConnectionError as e:
                self._terminate(SubscriptionClosedError(
                    query=self.sql,
                    underlying_error=e.message,
                ))
                return
            except EntryStoreError as e:
                self._terminate(SubscriptionError(
                    query=self.sql,
                    underlying_error=e.message,
                    context={"cause": e.to_dict()},
                ))
                return
            except Exception as e:
                logger.exception("%s query failed", self.name)
                self._terminate(SubscriptionError(query=self.sql, underlying_error=str(e)))
                return

            with self._delivery_lock:
                if self._stopped.is_set():
                    return
                self._deliver(snapshot)

    def _deliver(self, snapshot: T) -> None:
        self._emitted += 1
        if self._on_snapshot is None:
            self._queue.put(snapshot)
            return
        try:
            self._on_snapshot(snapshot)
        except Exception:
            logger.exception("%s snapshot callback failed", self.name)

    def _terminate(self, error: SubscriptionError | None) -> None:
        """Stop producing, drop undelivered snapshots and post the end marker."""
        with self._delivery_lock:
            if self._stopped.is_set():
                return
            self._stopped.set()
            self._tracker.remove_observer(self._observer)
            self._drain()
            self._queue.put(_Terminal(error))
            # Wake the worker if it is idle so it can exit.
            self._dirty.set()

        if error is not None:
            logger.warning("%s terminated: %s", self.name, error.message)
        else:
            logger.debug("%s cancelled", self.name)

        if self._on_close is not None and not self._closed_notified:
            self._closed_notified = True
            self._on_close(self)

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    # =========================================================================
    # Consumer side
    # =========================================================================

    def cancel(self) -> None:
        """
        Stop the subscription and release its resources.

        Idempotent. Blocks until any in-flight emission has finished and the
        worker thread has exited; may be called from an on_snapshot callback.
        """
        self._terminate(None)
        self._join()

    def close_with_error(self, error: SubscriptionError) -> None:
        """End the subscription with a terminal error (used by the store on close)."""
        self._terminate(error)
        self._join()

    def _join(self) -> None:
        if threading.current_thread() is not self._thread:
            self._thread.join()

    def get(self, timeout: float | None = None) -> T | None:
        """
        Wait for the next snapshot.

        Args:
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            The next snapshot, or None once the subscription was cancelled

        Raises:
            TimeoutError: If no snapshot arrived within the timeout
            SubscriptionError: If the subscription ended because of an error
        """
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"No snapshot from {self.name} within {timeout}s") from None

        if isinstance(item, _Terminal):
            # Keep the marker so later calls see the same outcome.
            self._queue.put(item)
            if item.error is not None:
                raise item.error
            return None
        return item

    def __iter__(self) -> Iterator[T]:
        while True:
            snapshot = self.get()
            if snapshot is None:
                return
            yield snapshot

    @property
    def active(self) -> bool:
        """Whether the subscription is still producing snapshots."""
        return not self._stopped.is_set()

    @property
    def emitted(self) -> int:
        """Number of snapshots produced so far."""
        return self._emitted

    def __enter__(self) -> "LiveQuery[T]":
        """Enter context manager."""
        return self

    def __exit__(self, *args: object) -> None:
        """Exit context manager, cancelling the subscription."""
        self.cancel()

    def __repr__(self) -> str:
        state = "active" if self.active else "stopped"
        return f"LiveQuery(name={self.name!r}, tables={sorted(self.tables)!r}, {state})"
