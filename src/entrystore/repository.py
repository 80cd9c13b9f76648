"""
Entry repository.

Thin layer over EntryStore that applies application rules before writes:
an entry's value must be a positive integer. Reads and subscriptions are
passed through unchanged.
"""

import logging
from typing import Callable, Iterable

from entrystore.errors import EntryValidationError
from entrystore.schema import Entry
from entrystore.store import EntryStore, LiveQuery

logger = logging.getLogger(__name__)


class EntryRepository:
    """
    Application-facing access to stored entries.

    Attributes:
        store: The underlying EntryStore
    """

    def __init__(self, store: EntryStore) -> None:
        self.store = store

    def get_all_entries(
        self,
        on_snapshot: Callable[[list[Entry]], None] | None = None,
    ) -> LiveQuery[list[Entry]]:
        """Live, newest-first list of all entries."""
        return self.store.subscribe_all_entries(on_snapshot=on_snapshot)

    def list_entries(self) -> list[Entry]:
        """One-shot, newest-first list of all entries."""
        return self.store.list_entries()

    def get_entry_by_id(self, entry_id: int) -> Entry | None:
        """Look up an entry; None if absent."""
        return self.store.get_by_id(entry_id)

    def insert_entry(self, entry: Entry) -> int:
        """
        Validate and store an entry.

        Returns:
            The id of the stored row

        Raises:
            EntryValidationError: If entry.value is not positive
        """
        self._validate(entry)
        return self.store.insert_or_replace(entry)

    def update_entry(self, entry: Entry) -> bool:
        """Validate and update an existing entry in place."""
        self._validate(entry)
        return self.store.update_entry(entry)

    def delete_entry(self, entry: Entry | int) -> bool:
        """Delete an entry; False if it did not exist."""
        return self.store.delete(entry)

    def replace_all_entries(self, entries: Iterable[Entry]) -> None:
        """Atomically replace every stored entry (used by backup import)."""
        entries = list(entries)
        for entry in entries:
            self._validate(entry)
        self.store.replace_all(entries)
        logger.info("Replaced all entries", extra={"count": len(entries)})

    @staticmethod
    def _validate(entry: Entry) -> None:
        if entry.value <= 0:
            raise EntryValidationError(value=entry.value)
