"""
Table invalidation tracking.

The store publishes "table X changed" after every committed mutation.
Observers register interest in a set of table names and are called
synchronously on the publishing thread, so callbacks must be cheap; the
live query only flips a flag and lets its own worker do the re-query.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Observer:
    """
    A registered interest in one or more tables.

    Attributes:
        tables: Table names this observer tracks
        callback: Called with the set of changed tables it tracks
    """

    tables: frozenset[str]
    callback: Callable[[set[str]], None]
    active: bool = field(default=True)


class InvalidationTracker:
    """
    Change-notification bus keyed by table name.

    Usage:
        tracker = InvalidationTracker()
        observer = tracker.add_observer(["entries"], lambda tables: ...)
        tracker.notify("entries")
        tracker.remove_observer(observer)
    """

    def __init__(self) -> None:
        self._observers: list[Observer] = []
        self._lock = threading.Lock()

    def add_observer(
        self,
        tables: Iterable[str],
        callback: Callable[[set[str]], None],
    ) -> Observer:
        """Register a callback for changes to any of the given tables."""
        observer = Observer(tables=frozenset(tables), callback=callback)
        with self._lock:
            self._observers.append(observer)
        logger.debug("Observer added for tables %s", sorted(observer.tables))
        return observer

    def remove_observer(self, observer: Observer) -> None:
        """Unregister an observer. Removing twice is a no-op."""
        observer.active = False
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def notify(self, *tables: str) -> None:
        """
        Publish that the given tables changed.

        Observer failures are logged and never propagate to the writer,
        whose transaction has already committed.
        """
        changed = set(tables)
        with self._lock:
            observers = list(self._observers)

        for observer in observers:
            relevant = changed & observer.tables
            if not relevant or not observer.active:
                continue
            try:
                observer.callback(relevant)
            except Exception:
                logger.exception("Observer for %s failed", sorted(relevant))

    @property
    def observer_count(self) -> int:
        """Number of currently registered observers."""
        with self._lock:
            return len(self._observers)
