"""Tests for the rebuild journal."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaindb.config import DataDirLayout, MetadataKeys
from chaindb.migration import JournalDB, JournalTable, RebuildJournal, migrate
from chaindb.routing import DBLocator, RoutingConfig, TableRecord
from chaindb.types import StorageError, StrictBaseModel


@pytest.fixture
def journal() -> RebuildJournal:
    """Journal of a merge of two databases into one."""
    main = JournalDB(type="sqlite", name="main")
    return RebuildJournal(
        drop=[JournalDB(type="sqlite", name="gossip"), main],
        move=[main, JournalDB(type="lmdb", name="empty")],
        tables=[
            JournalTable(db=main, req="evm", table=""),
            JournalTable(db=main, req="gossip", table="G"),
        ],
    )


class TestRebuildJournal:
    """Tests for persisting and reading the journal."""

    def test_save_and_load(self, tmp_path: Path, journal: RebuildJournal) -> None:
        """The journal survives a write and read unchanged."""
        path = tmp_path / "tmp" / "rebuild-journal.json"
        journal.save(path)

        assert RebuildJournal.load(path) == journal
        assert not path.with_name(path.name + ".tmp").exists()

    def test_records_by_db(self, journal: RebuildJournal) -> None:
        """Moved databases without records get an empty list."""
        assert journal.records_by_db() == {
            DBLocator("sqlite", "main"): [TableRecord("evm", ""), TableRecord("gossip", "G")],
            DBLocator("lmdb", "empty"): [],
        }

    def test_locator_conversion(self) -> None:
        """Journal entries map back to database locators."""
        locator = DBLocator("lmdb", "epoch-3")
        assert JournalDB.of(locator).locator == locator

    @pytest.mark.parametrize("model", [JournalDB, JournalTable, RebuildJournal])
    def test_schema_describes_every_field(self, model: type[StrictBaseModel]) -> None:
        """Each field of the journal file is explained in its JSON schema."""
        properties = model.model_json_schema()["properties"]
        assert properties
        for name, prop in properties.items():
            assert prop.get("description"), name

    @pytest.mark.parametrize("content", ["", "{not json", '{"drop": []}'])
    def test_corrupt_journal(self, tmp_path: Path, content: str) -> None:
        """An unreadable journal is a storage error."""
        path = tmp_path / "rebuild-journal.json"
        path.write_text(content)
        with pytest.raises(StorageError, match="rebuild journal"):
            RebuildJournal.load(path)

    def test_missing_journal(self, tmp_path: Path) -> None:
        """Loading a journal that does not exist fails the same way."""
        with pytest.raises(StorageError):
            RebuildJournal.load(tmp_path / "absent.json")

    def test_corrupt_journal_stops_migration(
        self, layout: DataDirLayout, keys: MetadataKeys
    ) -> None:
        """Migration refuses to guess when the journal is unreadable."""
        layout.journal.parent.mkdir(parents=True)
        layout.journal.write_text("garbage")
        with pytest.raises(StorageError):
            migrate(layout, RoutingConfig(), keys)
        assert layout.journal.exists()
