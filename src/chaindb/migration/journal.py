"""
Journal of a rebuild in progress.

A rebuild copies a component into the staging area, then deletes the old
databases and moves the staged ones into place. Between the deletions and
the moves the staged copy is the only copy. The journal is written once all
copies succeeded, before the first deletion, and removed once the records
are rewritten; its presence means the remaining steps must be replayed.

Staging content without a journal is a copy that never completed. The old
databases are still intact then, so such content is discarded.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import ValidationError

from chaindb.routing import DBLocator, TableRecord
from chaindb.types import StorageError, StrictBaseModel


class JournalDB(StrictBaseModel):
    """A physical database named in the journal."""

    type: str
    """Backend type tag, e.g. `sqlite`."""

    name: str
    """Database name within the backend."""

    @classmethod
    def of(cls, locator: DBLocator) -> JournalDB:
        """Journal form of a database locator."""
        return cls(type=locator.type, name=locator.name)

    @property
    def locator(self) -> DBLocator:
        """The database locator this entry names."""
        return DBLocator(self.type, self.name)


class JournalTable(StrictBaseModel):
    """A table record to write once the staged databases are in place."""

    db: JournalDB
    """Database whose table list receives the record."""

    req: str
    """Logical request name."""

    table: str
    """Table prefix of the request in that database."""

    @property
    def record(self) -> TableRecord:
        """The record as written to the table list."""
        return TableRecord(req=self.req, table=self.table)


class RebuildJournal(StrictBaseModel):
    """Remaining steps of a rebuild whose copies are complete."""

    drop: list[JournalDB]
    """Old live databases to delete."""

    move: list[JournalDB]
    """Staged databases to move into the live tree."""

    tables: list[JournalTable]
    """Table records of the rebuilt databases."""

    def records_by_db(self) -> dict[DBLocator, list[TableRecord]]:
        """Table records grouped by their database, including empty lists."""
        grouped: dict[DBLocator, list[TableRecord]] = {db.locator: [] for db in self.move}
        for entry in self.tables:
            grouped.setdefault(entry.db.locator, []).append(entry.record)
        return grouped

    def save(self, path: Path) -> None:
        """
        Persist the journal atomically.

        The content is written to a sibling file, synced, then renamed over
        the final name.
        """
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w") as f:
                f.write(self.model_dump_json(by_alias=True, indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"cannot write rebuild journal {path}: {e}") from e

    @classmethod
    def load(cls, path: Path) -> RebuildJournal:
        """
        Read a journal written by `save`.

        Raises:
            StorageError: If the file cannot be read or parsed.
        """
        try:
            return cls.model_validate_json(path.read_text())
        except (OSError, ValidationError) as e:
            raise StorageError(f"cannot read rebuild journal {path}: {e}") from e
