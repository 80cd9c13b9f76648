"""
Unit tests for live listing subscriptions.

Tests cover:
- Initial snapshot on subscribe
- Re-emission after insert, replace and delete
- Ordering of snapshots
- Cancellation and resource release
- Terminal errors (integrity violation, store closed)
- Callback delivery
"""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from conftest import SNAPSHOT_TIMEOUT, next_matching
from entrystore.errors import StorageConnectionError, SubscriptionClosedError, SubscriptionError
from entrystore.schema import Entry
from entrystore.store import EntryStore, InvalidationTracker, LiveQuery


# =============================================================================
# Emission Tests
# =============================================================================


class TestEmission:
    """Tests for what a subscription emits."""

    def test_initial_snapshot_empty(self, store: EntryStore) -> None:
        """An empty table yields an empty first snapshot."""
        with store.subscribe_all_entries() as live:
            assert live.get(timeout=SNAPSHOT_TIMEOUT) == []

    def test_initial_snapshot_current_state(self, store: EntryStore, make_entry) -> None:
        """The first snapshot is the table at subscription time."""
        store.insert_or_replace(make_entry(value=1))
        store.insert_or_replace(make_entry(value=2))

        with store.subscribe_all_entries() as live:
            snapshot = live.get(timeout=SNAPSHOT_TIMEOUT)

        assert sorted(e.value for e in snapshot) == [1, 2]

    def test_emits_after_insert(self, store: EntryStore, make_entry) -> None:
        """An insert produces a snapshot containing the new row."""
        with store.subscribe_all_entries() as live:
            live.get(timeout=SNAPSHOT_TIMEOUT)
            entry_id = store.insert_or_replace(make_entry(value=7))

            snapshot = next_matching(live, lambda s: any(e.id == entry_id for e in s))
            assert [e.value for e in snapshot] == [7]

    def test_emits_after_replace(self, store: EntryStore, make_entry) -> None:
        """Replacing a row produces a snapshot with the new value."""
        entry_id = store.insert_or_replace(make_entry(value=1))

        with store.subscribe_all_entries() as live:
            live.get(timeout=SNAPSHOT_TIMEOUT)
            store.insert_or_replace(make_entry(id=entry_id, value=2))

            snapshot = next_matching(live, lambda s: s and s[0].value == 2)
            assert len(snapshot) == 1

    def test_emits_after_delete(self, store: EntryStore, make_entry) -> None:
        """A delete produces a snapshot without the row."""
        entry_id = store.insert_or_replace(make_entry(value=1))

        with store.subscribe_all_entries() as live:
            assert len(live.get(timeout=SNAPSHOT_TIMEOUT)) == 1
            store.delete(entry_id)

            assert next_matching(live, lambda s: not s) == []

    def test_snapshots_sorted(self, store: EntryStore, make_entry) -> None:
        """Every snapshot is ordered newest first."""
        base = datetime(2024, 1, 1, tzinfo=UTC)
        with store.subscribe_all_entries() as live:
            for hours in (5, 1, 3, 2, 4):
                store.insert_or_replace(make_entry(value=hours, timestamp=base + timedelta(hours=hours)))

            snapshot = next_matching(live, lambda s: len(s) == 5)
            assert [e.value for e in snapshot] == [5, 4, 3, 2, 1]

    def test_snapshots_never_go_back_in_time(self, store: EntryStore, make_entry) -> None:
        """Row counts only grow while only inserts happen."""
        with store.subscribe_all_entries() as live:
            sizes = [len(live.get(timeout=SNAPSHOT_TIMEOUT))]
            for value in range(1, 21):
                store.insert_or_replace(make_entry(value=value))
            while sizes[-1] < 20:
                sizes.append(len(live.get(timeout=SNAPSHOT_TIMEOUT)))

        assert sizes == sorted(sizes)

    def test_multiple_subscribers(self, store: EntryStore, make_entry) -> None:
        """Each subscriber receives its own snapshots."""
        with store.subscribe_all_entries() as a, store.subscribe_all_entries() as b:
            a.get(timeout=SNAPSHOT_TIMEOUT)
            b.get(timeout=SNAPSHOT_TIMEOUT)
            store.insert_or_replace(make_entry(value=3))

            assert next_matching(a, lambda s: len(s) == 1)[0].value == 3
            assert next_matching(b, lambda s: len(s) == 1)[0].value == 3

    def test_iteration(self, store: EntryStore, make_entry) -> None:
        """Iterating yields snapshots until cancelled."""
        seen = []
        live = store.subscribe_all_entries()
        for snapshot in live:
            seen.append(snapshot)
            if len(seen) == 1:
                store.insert_or_replace(make_entry(value=1))
            if snapshot:
                live.cancel()

        assert seen[0] == []
        assert [e.value for e in seen[-1]] == [1]


# =============================================================================
# Cancellation Tests
# =============================================================================


class TestCancellation:
    """Tests for cancelling subscriptions."""

    def test_cancel_releases_resources(self, store: EntryStore) -> None:
        """Cancelling unregisters the observer and stops the worker."""
        live = store.subscribe_all_entries()
        live.get(timeout=SNAPSHOT_TIMEOUT)

        live.cancel()

        assert not live.active
        assert store.tracker.observer_count == 0
        assert store.subscription_count == 0
        assert not live._thread.is_alive()

    def test_no_snapshots_after_cancel(self, store: EntryStore, make_entry) -> None:
        """After cancel(), get() reports the end of the stream."""
        live = store.subscribe_all_entries()
        live.cancel()
        store.insert_or_replace(make_entry())

        assert live.get(timeout=SNAPSHOT_TIMEOUT) is None
        assert live.get(timeout=SNAPSHOT_TIMEOUT) is None

    def test_cancel_is_idempotent(self, store: EntryStore) -> None:
        """Cancelling twice is harmless."""
        live = store.subscribe_all_entries()
        live.cancel()
        live.cancel()
        assert not live.active

    def test_cancel_from_callback(self, store: EntryStore, make_entry) -> None:
        """A callback may cancel its own subscription."""
        ready = threading.Event()
        done = threading.Event()
        received: list[list[Entry]] = []
        holder: dict[str, LiveQuery] = {}

        def on_snapshot(snapshot: list[Entry]) -> None:
            ready.wait(SNAPSHOT_TIMEOUT)
            received.append(snapshot)
            holder["live"].cancel()
            done.set()

        holder["live"] = store.subscribe_all_entries(on_snapshot=on_snapshot)
        ready.set()
        assert done.wait(SNAPSHOT_TIMEOUT)
        store.insert_or_replace(make_entry())
        holder["live"]._thread.join(SNAPSHOT_TIMEOUT)

        assert len(received) == 1
        assert not holder["live"].active

    def test_cancel_during_writes(self, store: EntryStore, make_entry) -> None:
        """Cancelling while writes are in flight never delivers afterwards."""
        live = store.subscribe_all_entries()
        stop = threading.Event()

        def writer() -> None:
            value = 1
            while not stop.is_set():
                store.insert_or_replace(make_entry(value=value))
                value += 1

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            live.get(timeout=SNAPSHOT_TIMEOUT)
            live.cancel()
            assert live.get(timeout=SNAPSHOT_TIMEOUT) is None
        finally:
            stop.set()
            thread.join()


# =============================================================================
# Callback Tests
# =============================================================================


class TestCallbacks:
    """Tests for push delivery through on_snapshot."""

    def test_callback_receives_snapshots(self, store: EntryStore, make_entry) -> None:
        """Snapshots are pushed to the callback in order."""
        received: list[int] = []
        got_two = threading.Event()

        def on_snapshot(snapshot: list[Entry]) -> None:
            received.append(len(snapshot))
            if len(snapshot) == 2:
                got_two.set()

        with store.subscribe_all_entries(on_snapshot=on_snapshot):
            store.insert_or_replace(make_entry(value=1))
            store.insert_or_replace(make_entry(value=2))
            assert got_two.wait(SNAPSHOT_TIMEOUT)

        assert received == sorted(received)
        assert received[-1] == 2

    def test_failing_callback_keeps_subscription(self, store: EntryStore, make_entry) -> None:
        """A raising callback is logged; later snapshots still arrive."""
        calls: list[int] = []
        first = threading.Event()
        second = threading.Event()

        def on_snapshot(snapshot: list[Entry]) -> None:
            calls.append(len(snapshot))
            if len(calls) == 1:
                first.set()
                raise ValueError("render failed")
            second.set()

        with store.subscribe_all_entries(on_snapshot=on_snapshot) as live:
            assert first.wait(SNAPSHOT_TIMEOUT)
            store.insert_or_replace(make_entry())
            assert second.wait(SNAPSHOT_TIMEOUT)
            assert live.active


# =============================================================================
# Terminal Error Tests
# =============================================================================


class TestTerminalErrors:
    """Tests for subscriptions ending with an error."""

    def test_integrity_violation_terminates(self, store: EntryStore) -> None:
        """A NULL timestamp ends the subscription with SubscriptionError."""
        store.insert_or_replace(Entry(timestamp=None, value=1))

        live = store.subscribe_all_entries()
        with pytest.raises(SubscriptionError) as exc_info:
            live.get(timeout=SNAPSHOT_TIMEOUT)

        assert not isinstance(exc_info.value, SubscriptionClosedError)
        assert exc_info.value.context["cause"]["error_type"] == "DataIntegrityError"
        assert not live.active

    def test_failed_subscription_not_tracked(self, store: EntryStore) -> None:
        """A subscription that ends on its first query is not left registered."""
        store.insert_or_replace(Entry(timestamp=None, value=1))

        for _ in range(20):
            live = store.subscribe_all_entries()
            with pytest.raises(SubscriptionError):
                live.get(timeout=SNAPSHOT_TIMEOUT)
            live._thread.join(SNAPSHOT_TIMEOUT)

        assert store.subscription_count == 0
        assert store.tracker.observer_count == 0

    def test_error_is_sticky(self, store: EntryStore) -> None:
        """Every later get() raises the same terminal error."""
        store.insert_or_replace(Entry(timestamp=None, value=1))
        live = store.subscribe_all_entries()

        with pytest.raises(SubscriptionError):
            live.get(timeout=SNAPSHOT_TIMEOUT)
        with pytest.raises(SubscriptionError):
            live.get(timeout=SNAPSHOT_TIMEOUT)

    def test_store_close_terminates(self, db_path) -> None:
        """Closing the store ends subscriptions with SubscriptionClosedError."""
        store = EntryStore(db_path)
        live = store.subscribe_all_entries()
        live.get(timeout=SNAPSHOT_TIMEOUT)

        store.close()

        with pytest.raises(SubscriptionClosedError):
            live.get(timeout=SNAPSHOT_TIMEOUT)
        assert not live._thread.is_alive()

    def test_iteration_raises_terminal_error(self, db_path) -> None:
        """Iterating surfaces the terminal error instead of stopping quietly."""
        store = EntryStore(db_path)
        live = store.subscribe_all_entries()

        with pytest.raises(SubscriptionClosedError):
            for _ in live:
                store.close()

    def test_subscribe_on_closed_store(self, db_path) -> None:
        """Subscribing to a closed store fails immediately."""
        store = EntryStore(db_path)
        store.close()
        with pytest.raises(StorageConnectionError):
            store.subscribe_all_entries()


# =============================================================================
# LiveQuery in isolation
# =============================================================================


class TestLiveQueryDirect:
    """Tests for LiveQuery with a plain query function."""

    def test_coalesces_and_requeries(self) -> None:
        """Invalidations of tracked tables trigger a re-query."""
        tracker = InvalidationTracker()
        counter = {"n": 0}

        def query() -> int:
            counter["n"] += 1
            return counter["n"]

        with LiveQuery(query, tracker, ["t"]) as live:
            assert live.get(timeout=SNAPSHOT_TIMEOUT) == 1
            tracker.notify("t")
            assert live.get(timeout=SNAPSHOT_TIMEOUT) == 2

    def test_ignores_other_tables(self) -> None:
        """Invalidating an untracked table does not re-query."""
        tracker = InvalidationTracker()
        with LiveQuery(lambda: "x", tracker, ["t"]) as live:
            live.get(timeout=SNAPSHOT_TIMEOUT)
            tracker.notify("other")
            with pytest.raises(TimeoutError):
                live.get(timeout=0.2)

    def test_unexpected_exception_terminates(self) -> None:
        """Non-store exceptions also end the stream with SubscriptionError."""

        def query() -> None:
            raise RuntimeError("disk on fire")

        live = LiveQuery(query, InvalidationTracker(), ["t"])
        with pytest.raises(SubscriptionError) as exc_info:
            live.get(timeout=SNAPSHOT_TIMEOUT)
        assert "disk on fire" in exc_info.value.message
