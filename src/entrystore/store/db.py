"""
SQLite storage for entrystore.

This module provides EntryStore: durable storage of Entry rows in a single
SQLite table, with point lookups, ordered listing, deletion and live
listing subscriptions.

Design Principles:
    - Atomic: every mutation runs in its own transaction (BEGIN IMMEDIATE),
      committed in full or rolled back in full
    - Single writer: mutations are serialized on the store's lock
    - Notify after commit: observers only ever see committed state
    - Explicit id policy: id 0 means "assign a new id", any other id means
      "replace that row if present, else insert it"

Tables:
    - entries: id, timestamp (epoch milliseconds), entryValue
    - schema_version: schema version bookkeeping
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Generator, Iterable

from entrystore.converters import from_epoch_millis, to_epoch_millis
from entrystore.errors import (
    DataIntegrityError,
    StorageConnectionError,
    StorageReadError,
    SubscriptionClosedError,
    TransactionError,
)
from entrystore.schema import Entry, JournalMode, StoreConfig
from entrystore.store.invalidation import InvalidationTracker
from entrystore.store.live import LiveQuery

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

ENTRIES_TABLE = "entries"

# SQL for creating tables
CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Entries table: timestamp is nullable on disk, non-null is enforced on read
CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER,
    entryValue INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_entries_timestamp ON entries(timestamp);
"""

SELECT_ALL_SQL = "SELECT id, timestamp, entryValue FROM entries ORDER BY timestamp DESC, id DESC"
SELECT_BY_ID_SQL = "SELECT id, timestamp, entryValue FROM entries WHERE id = ?"
# NULL for the id column makes SQLite assign the next AUTOINCREMENT value.
INSERT_OR_REPLACE_SQL = "INSERT OR REPLACE INTO entries (id, timestamp, entryValue) VALUES (?, ?, ?)"
UPDATE_SQL = "UPDATE entries SET timestamp = ?, entryValue = ? WHERE id = ?"
DELETE_SQL = "DELETE FROM entries WHERE id = ?"
DELETE_ALL_SQL = "DELETE FROM entries"


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


def row_to_entry(row: sqlite3.Row) -> Entry:
    """
    Decode a row of the entries table.

    Raises:
        DataIntegrityError: If the stored timestamp is NULL
    """
    timestamp = from_epoch_millis(row["timestamp"])
    if timestamp is None:
        raise DataIntegrityError(
            operation="decode_row",
            entry_id=row["id"],
            column="timestamp",
        )
    return Entry(id=row["id"], timestamp=timestamp, value=row["entryValue"])


def bind_id(entry: Entry) -> int | None:
    """Map the "0 means assign" policy onto SQLite's NULL rowid."""
    return entry.id if entry.id != 0 else None


class EntryStore:
    """
    SQLite-backed store of Entry rows.

    Usage:
        store = EntryStore("entries.db")
        entry_id = store.insert_or_replace(Entry(timestamp=now, value=5))
        entry = store.get_by_id(entry_id)
        store.close()

    Or use as context manager:
        with EntryStore(":memory:") as store:
            with store.subscribe_all_entries() as live:
                ...
    """

    def __init__(self, db: str | Path | StoreConfig = ":memory:") -> None:
        """
        Open (and if needed create) the database.

        Args:
            db: Path to the SQLite database file, ":memory:", or a StoreConfig.
                The file is created if it doesn't exist.
        """
        if isinstance(db, StoreConfig):
            self.config = db
        else:
            self.config = StoreConfig(db_path=str(db))
        self.db_path = self.config.db_path
        self.tracker = InvalidationTracker()

        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._subscriptions: set[LiveQuery[list[Entry]]] = set()
        self._connect()
        self._init_schema()
        logger.info("Opened entry store at %s", self.db_path)

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            # Transactions are managed explicitly in transaction().
            self._conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
                timeout=self.config.busy_timeout_ms / 1000,
            )
            self._conn.row_factory = sqlite3.Row
            if not self.config.in_memory:
                self._conn.execute(f"PRAGMA journal_mode = {self.config.journal_mode.value}")
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=self.db_path,
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            with self._lock:
                conn = self._require_connection("init_schema")
                conn.executescript(CREATE_TABLES_SQL)
                with self.transaction(notify=False):
                    row = conn.execute(
                        "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
                    ).fetchone()
                    if row is None:
                        conn.execute(
                            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                            (SCHEMA_VERSION, now_iso()),
                        )
        except sqlite3.Error as e:
            raise TransactionError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    def _require_connection(self, operation: str) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageConnectionError(
                db_path=self.db_path,
                operation=operation,
                message="Database connection is closed",
            )
        return self._conn

    @contextmanager
    def transaction(self, notify: bool = True) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for a write transaction.

        Serializes with every other writer, commits on success and rolls
        back on any exception. After a successful commit the entries table
        is reported to the invalidation tracker (unless notify is False).

        Raises:
            TransactionError: If SQLite fails to execute or commit, or a bound
                integer is outside SQLite's 64-bit range
        """
        operation = "transaction"
        with self._lock:
            conn = self._require_connection(operation)
            nested = conn.in_transaction
            try:
                if not nested:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
                if not nested:
                    conn.execute("COMMIT")
            except (sqlite3.Error, OverflowError) as e:
                if not nested and conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise TransactionError(operation=operation, underlying_error=str(e)) from e
            except BaseException:
                if not nested and conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

        if notify and not nested:
            self.tracker.notify(ENTRIES_TABLE)

    def _write(self, operation: str, work: Callable[[sqlite3.Connection], Any]) -> Any:
        """
        Run work in a transaction, notifying observers only if it changed rows.

        work returns (result, changed).
        """
        try:
            with self.transaction(notify=False) as conn:
                result, changed = work(conn)
        except TransactionError as e:
            e.operation = operation
            e.context["operation"] = operation
            logger.error("%s failed: %s", operation, e.underlying_error)
            raise
        if changed:
            self.tracker.notify(ENTRIES_TABLE)
        logger.debug("%s committed", operation, extra={"changed": changed})
        return result

    def close(self) -> None:
        """
        Close the database connection.

        Live subscriptions are ended first; their consumers receive a
        SubscriptionClosedError.
        """
        for live in list(self._subscriptions):
            live.close_with_error(SubscriptionClosedError(query=live.sql))
        self._subscriptions.clear()
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("Closed entry store at %s", self.db_path)

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._conn is None

    def __enter__(self) -> "EntryStore":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Write Operations
    # =========================================================================

    def insert_or_replace(self, entry: Entry) -> int:
        """
        Insert an entry, replacing any row with the same id.

        Args:
            entry: Entry to write. id 0 assigns a new id; any other id
                   replaces that row if present, else inserts with that id.

        Returns:
            The id of the written row
        """

        def work(conn: sqlite3.Connection) -> tuple[int, bool]:
            cursor = conn.execute(
                INSERT_OR_REPLACE_SQL,
                (bind_id(entry), to_epoch_millis(entry.timestamp), entry.value),
            )
            return cursor.lastrowid, True

        return self._write("insert_or_replace", work)

    def insert_all(self, entries: Iterable[Entry]) -> list[int]:
        """
        Insert-or-replace several entries in one transaction.

        Returns:
            The ids of the written rows, in input order
        """
        entries = list(entries)

        def work(conn: sqlite3.Connection) -> tuple[list[int], bool]:
            ids = []
            for entry in entries:
                cursor = conn.execute(
                    INSERT_OR_REPLACE_SQL,
                    (bind_id(entry), to_epoch_millis(entry.timestamp), entry.value),
                )
                ids.append(cursor.lastrowid)
            return ids, bool(ids)

        return self._write("insert_all", work)

    def update_entry(self, entry: Entry) -> bool:
        """
        Update the row with entry.id in place.

        Returns:
            True if a row was updated, False if no row has that id
        """

        def work(conn: sqlite3.Connection) -> tuple[bool, bool]:
            cursor = conn.execute(
                UPDATE_SQL,
                (to_epoch_millis(entry.timestamp), entry.value, entry.id),
            )
            return cursor.rowcount > 0, cursor.rowcount > 0

        return self._write("update_entry", work)

    def delete(self, entry: Entry | int) -> bool:
        """
        Delete the row identified by an entry (or a bare id).

        Deleting an id that doesn't exist is a no-op, not an error.

        Returns:
            True if a row was removed
        """
        entry_id = entry.id if isinstance(entry, Entry) else entry

        def work(conn: sqlite3.Connection) -> tuple[bool, bool]:
            cursor = conn.execute(DELETE_SQL, (entry_id,))
            return cursor.rowcount > 0, cursor.rowcount > 0

        return self._write("delete", work)

    def delete_all(self) -> int:
        """Delete every row. Returns the number of rows removed."""

        def work(conn: sqlite3.Connection) -> tuple[int, bool]:
            cursor = conn.execute(DELETE_ALL_SQL)
            return cursor.rowcount, cursor.rowcount > 0

        return self._write("delete_all", work)

    def replace_all(self, entries: Iterable[Entry]) -> None:
        """
        Replace the whole table with the given entries atomically.

        Observers never see the intermediate empty table.
        """
        entries = list(entries)

        def work(conn: sqlite3.Connection) -> tuple[None, bool]:
            conn.execute(DELETE_ALL_SQL)
            for entry in entries:
                conn.execute(
                    INSERT_OR_REPLACE_SQL,
                    (bind_id(entry), to_epoch_millis(entry.timestamp), entry.value),
                )
            return None, True

        self._write("replace_all", work)

    # =========================================================================
    # Read Operations
    # =========================================================================

    def _read(self, operation: str, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            conn = self._require_connection(operation)
            try:
                cursor = conn.execute(sql, params)
                try:
                    return cursor.fetchall()
                finally:
                    cursor.close()
            except (sqlite3.Error, OverflowError) as e:
                raise StorageReadError(
                    operation=operation,
                    underlying_error=str(e),
                ) from e

    def get_by_id(self, entry_id: int) -> Entry | None:
        """
        Get an entry by id.

        Args:
            entry_id: The id to look up

        Returns:
            Entry, or None if no row has that id

        Raises:
            DataIntegrityError: If the stored row has a NULL timestamp
        """
        rows = self._read("get_by_id", SELECT_BY_ID_SQL, (entry_id,))
        if not rows:
            return None
        return row_to_entry(rows[0])

    def list_entries(self) -> list[Entry]:
        """
        Get every entry, newest timestamp first.

        Raises:
            DataIntegrityError: If any stored row has a NULL timestamp
        """
        return [row_to_entry(row) for row in self._read("list_entries", SELECT_ALL_SQL)]

    def count(self) -> int:
        """Number of stored entries."""
        rows = self._read("count", "SELECT COUNT(*) AS n FROM entries")
        return rows[0]["n"]

    def integrity_check(self) -> dict[str, Any]:
        """
        Run SQLite's integrity check and look for rows without a timestamp.

        Returns:
            Dictionary with "ok", "sqlite" (SQLite's verdict) and
            "null_timestamps" (ids of rows that would fail to decode)
        """
        verdict = self._read("integrity_check", "PRAGMA integrity_check")
        null_rows = self._read(
            "integrity_check",
            "SELECT id FROM entries WHERE timestamp IS NULL ORDER BY id",
        )
        sqlite_result = verdict[0][0] if verdict else "unknown"
        null_ids = [row["id"] for row in null_rows]
        return {
            "ok": sqlite_result == "ok" and not null_ids,
            "sqlite": sqlite_result,
            "null_timestamps": null_ids,
        }

    def subscribe_all_entries(
        self,
        on_snapshot: Callable[[list[Entry]], None] | None = None,
    ) -> LiveQuery[list[Entry]]:
        """
        Subscribe to the ordered list of all entries.

        The first snapshot reflects the table at subscription time; a new
        snapshot follows every committed change to the table.

        Args:
            on_snapshot: Optional callback receiving each snapshot on the
                         subscription's worker thread

        Returns:
            A LiveQuery; cancel it (or use it as a context manager) when done
        """
        self._require_connection("subscribe_all_entries")
        live: LiveQuery[list[Entry]] = LiveQuery(
            query=self.list_entries,
            tracker=self.tracker,
            tables=[ENTRIES_TABLE],
            sql=SELECT_ALL_SQL,
            on_snapshot=on_snapshot,
            on_close=self._subscriptions.discard,
        )
        self._subscriptions.add(live)
        # The worker may already have stopped and run its on_close discard.
        if not live.active:
            self._subscriptions.discard(live)
        return live

    @property
    def subscription_count(self) -> int:
        """Number of live subscriptions attached to this store."""
        return len(self._subscriptions)
