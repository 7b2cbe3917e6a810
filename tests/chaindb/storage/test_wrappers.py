"""Tests for table views, hidden reserved keys and shared handles."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from chaindb.storage import (
    BufferedBatch,
    CachedProducer,
    SkipKeysProducer,
    SkipKeysStore,
    SQLiteProducer,
    SQLiteStore,
    Table,
)
from chaindb.storage.batch import ITEM_OVERHEAD

RESERVED = b"\x80meta"


@pytest.fixture
def store(tmp_path: Path) -> Generator[SQLiteStore, None, None]:
    """A raw sqlite database."""
    db = SQLiteStore(tmp_path / "db")
    yield db
    db.close()


class TestBufferedBatch:
    """Tests for the shared write buffer."""

    def test_applies_sorted_operations(self) -> None:
        """The backend receives every operation once, sorted by key."""
        applied: list[list[tuple[bytes, bytes | None]]] = []
        batch = BufferedBatch(applied.append)
        batch.put(b"b", b"2")
        batch.delete(b"c")
        batch.put(b"a", b"1")
        batch.put(b"b", b"3")
        assert len(batch) == 3

        batch.write()
        assert applied == [[(b"a", b"1"), (b"b", b"3"), (b"c", None)]]
        assert len(batch) == 0

    def test_size_estimate_tracks_overwrites(self) -> None:
        """Overwriting a key replaces its share of the estimate."""
        batch = BufferedBatch(lambda ops: None)
        batch.put(b"k", b"12345")
        batch.put(b"k", b"1")
        assert batch.value_size() == ITEM_OVERHEAD + 2

    def test_empty_write_skips_backend(self) -> None:
        """Nothing is applied when nothing is buffered."""
        applied: list[object] = []
        BufferedBatch(applied.append).write()
        assert applied == []


class TestTable:
    """Tests for prefix-delimited table views."""

    def test_keys_are_relative(self, store: SQLiteStore) -> None:
        """The prefix is added on write and stripped on iteration."""
        table = Table(store, b"G")
        table.put(b"k1", b"v1")
        batch = table.new_batch()
        batch.put(b"k2", b"v2")
        batch.write()

        assert store.get(b"Gk1") == b"v1"
        assert table.get(b"k1") == b"v1"
        assert table.has(b"k2")
        assert list(table.iterate()) == [(b"k1", b"v1"), (b"k2", b"v2")]

    def test_iteration_stays_inside(self, store: SQLiteStore) -> None:
        """Keys of neighbouring prefixes are not part of the table."""
        store.put(b"F", b"")
        store.put(b"Gx", b"in")
        store.put(b"H", b"")
        assert list(Table(store, b"G").iterate()) == [(b"x", b"in")]

    def test_drop_deletes_only_the_table(self, store: SQLiteStore) -> None:
        """Dropping a table leaves the database and its other keys."""
        store.put(b"Ga", b"")
        store.put(b"Gb", b"")
        store.put(b"H", b"keep")
        table = Table(store, b"G")
        table.drop()
        table.close()

        assert list(table.iterate()) == []
        assert store.get(b"H") == b"keep"

    def test_compact_within_prefix(self, store: SQLiteStore) -> None:
        """Compaction of a table keeps every key."""
        table = Table(store, b"G")
        table.put(b"a", b"")
        table.compact(None, None)
        table.compact(b"a", b"b")
        assert table.get(b"a") == b""


class TestSkipKeys:
    """Tests for hiding reserved keys from iteration."""

    def test_reserved_keys_hidden_from_iteration(self, store: SQLiteStore) -> None:
        """Keys before and after the reserved range are both visible."""
        for key in [b"\x00", b"\x80", RESERVED + b"\x0c", RESERVED + b"\x0d", b"\x81", b"\xff"]:
            store.put(key, b"")
        view = SkipKeysStore(store, RESERVED)
        assert [k for k, _ in view.iterate()] == [b"\x00", b"\x80", b"\x81", b"\xff"]

    def test_reserved_keys_still_addressable(self, store: SQLiteStore) -> None:
        """Point reads and writes reach the reserved keys."""
        view = SkipKeysStore(store, RESERVED)
        view.put(RESERVED + b"\x0d", b"tables")
        assert view.get(RESERVED + b"\x0d") == b"tables"

    def test_prefix_inside_reserved_range(self, store: SQLiteStore) -> None:
        """Iterating under the reserved prefix yields nothing."""
        store.put(RESERVED + b"\x0c", b"")
        view = SkipKeysStore(store, RESERVED)
        assert list(view.iterate(RESERVED)) == []

    def test_prefix_around_reserved_range(self, store: SQLiteStore) -> None:
        """A prefix covering the reserved range resumes after it."""
        store.put(b"\x80a", b"")
        store.put(RESERVED + b"\x0c", b"")
        store.put(b"\x80z", b"")
        view = SkipKeysStore(store, RESERVED)
        assert [k for k, _ in view.iterate(b"\x80")] == [b"\x80a", b"\x80z"]

    def test_empty_prefix_rejected(self, store: SQLiteStore) -> None:
        """Hiding the whole key space is a mistake."""
        with pytest.raises(ValueError):
            SkipKeysStore(store, b"")

    def test_producer_wraps_every_store(self, tmp_path: Path) -> None:
        """The producer hands out wrapped stores."""
        producer = SkipKeysProducer(SQLiteProducer(tmp_path), RESERVED)
        db = producer.open_db("main")
        try:
            db.put(RESERVED + b"\x0c", b"")
            assert list(db.iterate()) == []
            assert producer.names() == ["main"]
        finally:
            db.close()


class TestCachedProducer:
    """Tests for shared, reference-counted handles."""

    def test_handles_are_shared(self, tmp_path: Path) -> None:
        """Two opens of one name share the underlying store."""
        cached = CachedProducer(SQLiteProducer(tmp_path))
        a = cached.open_db("main")
        b = cached.open_db("main")
        assert a.underlying is b.underlying
        a.put(b"k", b"v")
        assert b.get(b"k") == b"v"
        cached.close()

    def test_closed_by_last_user(self, tmp_path: Path) -> None:
        """The handle closes once every user closed it."""
        cached = CachedProducer(SQLiteProducer(tmp_path))
        a = cached.open_db("main")
        b = cached.open_db("main")

        a.close()
        a.close()
        assert cached.open_names() == ["main"]

        b.close()
        assert cached.open_names() == []

    def test_drop_evicts(self, tmp_path: Path) -> None:
        """A dropped database is no longer cached nor listed."""
        cached = CachedProducer(SQLiteProducer(tmp_path))
        cached.open_db("main").drop()
        assert cached.open_names() == []
        assert cached.names() == []

    def test_close_releases_everything(self, tmp_path: Path) -> None:
        """Closing the producer closes outstanding handles."""
        cached = CachedProducer(SQLiteProducer(tmp_path))
        cached.open_db("a")
        cached.open_db("b")
        cached.close()
        assert cached.open_names() == []
