"""
Storage module for entrystore.

This module provides SQLite-based persistence for Entry rows, plus the
change-notification plumbing behind live listing subscriptions.

Components:
    - EntryStore: the table itself (insert-or-replace, delete, lookups)
    - InvalidationTracker: "table X changed" bus, published after commit
    - LiveQuery: a push-updated query result re-run on invalidation
"""

from entrystore.store.db import EntryStore, row_to_entry
from entrystore.store.invalidation import InvalidationTracker, Observer
from entrystore.store.live import LiveQuery

__all__ = [
    "EntryStore",
    "InvalidationTracker",
    "LiveQuery",
    "Observer",
    "row_to_entry",
]
