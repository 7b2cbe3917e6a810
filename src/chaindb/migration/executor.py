"""
Migration execution.

Applies a migration plan component by component. Each component is migrated
with the cheapest strategy its own entries allow:

- Rename: the whole component is one database changing its name. A single
  directory rename, no data copied.
- Move tables: no two table uses overlap, so keys are moved in place from
  the old table to the new one.
- Rebuild: tables overlap. Every table is copied into fresh databases in
  the staging area, the old databases are deleted and the staged ones are
  moved into the live tree.

After the components, databases only ever referenced by old routes are
deleted, and every live database is marked clean with one fresh flush id.

Nothing here retries. A failed run leaves a state from which planning again
yields the remaining work, so recovery is simply running the migration again.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from chaindb.config import DEFAULT_METADATA_KEYS, DataDirLayout, MetadataKeys
from chaindb.routing import DBLocator, RoutingConfig, TableRecord, write_tables_list
from chaindb.storage import (
    IDEAL_BATCH_SIZE,
    CachedProducer,
    DirectoryProducer,
    KVStore,
    SkipKeysStore,
    supported_dbs,
    write_clean_markers,
)
from chaindb.types import StorageError, uint64_to_bytes

from .journal import JournalDB, JournalTable, RebuildJournal
from .planner import Component, MigrationEntry, MigrationPlan, plan_migration

logger = logging.getLogger(__name__)


class Strategy(Enum):
    """How a component is migrated."""

    RENAME = "rename"
    MOVE_TABLES = "move-tables"
    REBUILD = "rebuild"


@dataclass(frozen=True, slots=True)
class ComponentReport:
    """Outcome of migrating one component."""

    strategy: Strategy
    """Strategy used."""

    reqs: tuple[str, ...]
    """Requests of the component, residents included."""

    keys_copied: int
    """Number of key/value pairs written to a new location."""


@dataclass(slots=True)
class MigrationReport:
    """Outcome of a migration run."""

    components: list[ComponentReport] = field(default_factory=list)
    """One report per migrated component."""

    dropped: list[DBLocator] = field(default_factory=list)
    """Databases deleted because no request uses them any more."""

    flush_id: bytes | None = None
    """Flush id written to every database, None when nothing was migrated."""

    resumed: bool = False
    """True if an interrupted rebuild was completed first."""


# -----------------------------------------------------------------------------
# Strategy Selection
# -----------------------------------------------------------------------------


def is_renamable(component: Component) -> bool:
    """
    True if the component is one database changing name and nothing else.

    Requires exactly two databases, one backend type, one old name, one new
    name and no table change.
    """
    entries = list(component.all_entries().values())
    if len(component.db_locators()) != 2:
        return False
    first = entries[0]
    typ, old_name, new_name = first.new.type, first.old.name, first.new.name
    return all(
        e.old.type == typ
        and e.new.type == typ
        and e.old.name == old_name
        and e.new.name == new_name
        and e.old.table == e.new.table
        for e in entries
    )


def has_overlap(component: Component) -> bool:
    """
    True if two table uses inside one database overlap.

    Every old and new table of every entry is a use. Two uses overlap when
    one table is a prefix of the other (equal tables included); an entry
    whose table does not move counts as a single use.
    """
    uses: dict[DBLocator, set[tuple[str, str]]] = defaultdict(set)
    for e in component.all_entries().values():
        for locator in {e.old.table_locator, e.new.table_locator}:
            uses[locator.db].add((locator.table, e.req))

    for tables in uses.values():
        ordered = sorted(tables)
        for (t0, _), (t1, _) in zip(ordered, ordered[1:], strict=False):
            if t1.startswith(t0):
                return True
    return False


def choose_strategy(component: Component) -> Strategy:
    """Cheapest strategy the component's entries allow."""
    if is_renamable(component):
        return Strategy.RENAME
    if not has_overlap(component):
        return Strategy.MOVE_TABLES
    return Strategy.REBUILD


# -----------------------------------------------------------------------------
# Key Copy
# -----------------------------------------------------------------------------


def copy_table(
    src: KVStore,
    src_prefix: bytes,
    dst: KVStore,
    dst_prefix: bytes,
    *,
    move: bool = False,
) -> int:
    """
    Copy every key of a table into another table.

    Keys are written in batches committed once they exceed
    `IDEAL_BATCH_SIZE`. With `move`, source keys are deleted; when source
    and destination are the same store, put and delete share one batch,
    otherwise the destination batch is committed before the source batch.

    Args:
        src: Source store. Reserved keys must already be hidden.
        src_prefix: Table prefix in the source.
        dst: Destination store.
        dst_prefix: Table prefix in the destination.
        move: Delete source keys once copied.

    Returns:
        Number of keys copied.
    """
    same_store = src is dst
    dst_batch = dst.new_batch()
    src_batch = dst_batch if same_store else src.new_batch()
    cut = len(src_prefix)
    copied = 0

    def commit() -> None:
        dst_batch.write()
        if not same_store:
            src_batch.write()

    for key, value in src.iterate(src_prefix):
        dst_batch.put(dst_prefix + key[cut:], value)
        if move:
            src_batch.delete(key)
        copied += 1
        size = dst_batch.value_size()
        if not same_store:
            size += src_batch.value_size()
        if size > IDEAL_BATCH_SIZE:
            commit()
    commit()
    return copied


# -----------------------------------------------------------------------------
# Executor
# -----------------------------------------------------------------------------


class MigrationExecutor:
    """
    Applies migration plans to a data directory.

    Args:
        live: Producers of the live tree, one per backend type.
        staging: Producers of the staging tree, one per backend type.
        keys: Reserved metadata keys.
        journal_path: Location of the rebuild journal.
        clock: Source of nanosecond timestamps for the flush id.
    """

    def __init__(
        self,
        live: Mapping[str, DirectoryProducer],
        staging: Mapping[str, DirectoryProducer],
        keys: MetadataKeys,
        journal_path: Path,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self._live = dict(live)
        self._staging = dict(staging)
        self._keys = keys
        self._journal_path = journal_path
        self._clock = clock

    # -------------------------------------------------------------------------
    # Whole Plan
    # -------------------------------------------------------------------------

    def execute(self, plan: MigrationPlan) -> MigrationReport:
        """
        Migrate every component, then drop unused databases and mark the rest clean.

        Raises:
            StorageError: If any database operation fails. The run stops at
                the first failure.
        """
        report = MigrationReport()
        if plan.is_empty:
            return report

        for component in plan.components:
            report.components.append(self.migrate_component(component))
        report.dropped = self.drop_unused(plan)
        report.flush_id = self.mark_clean()
        return report

    def migrate_component(self, component: Component) -> ComponentReport:
        """Migrate one component with the cheapest sufficient strategy."""
        strategy = choose_strategy(component)
        logger.info(
            "Migrating DB component, strategy=%s reqs=%s",
            strategy.value,
            ",".join(sorted(component.entries)),
        )
        if strategy is Strategy.RENAME:
            self._rename(component)
            copied = 0
        elif strategy is Strategy.MOVE_TABLES:
            copied = self._move_tables(component)
        else:
            copied = self._rebuild(component)
        return ComponentReport(
            strategy=strategy,
            reqs=tuple(sorted(component.all_entries())),
            keys_copied=copied,
        )

    def drop_unused(self, plan: MigrationPlan) -> list[DBLocator]:
        """Delete databases referenced by old routes but by no new route."""
        used = {e.new.db_locator for e in plan.layout.values()}
        previous = {
            e.old.db_locator for component in plan.components for e in component.entries.values()
        }
        dropped = []
        for locator in sorted(previous - used):
            path = self._live_path(locator)
            if not path.exists():
                continue
            logger.info("Dropping unused DB, db_type=%s db_name=%s", locator.type, locator.name)
            _remove_tree(path)
            dropped.append(locator)
        return dropped

    def mark_clean(self) -> bytes:
        """
        Write one fresh clean flush id into every live database.

        The same id goes to every backend, so the synced pools accept the
        set as one consistent flush on the next start.
        """
        flush_id = uint64_to_bytes(self._clock())
        for _typ, producer in sorted(self._live.items()):
            write_clean_markers(producer, self._keys.flush_id_key, flush_id)
        return flush_id

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    def _rename(self, component: Component) -> None:
        e = next(iter(component.entries.values()))
        old_path = self._live_path(e.old.db_locator)
        new_path = self._live_path(e.new.db_locator)
        logger.info("Renaming DB, old=%s new=%s", old_path, new_path)
        try:
            new_path.parent.mkdir(parents=True, exist_ok=True)
            os.rename(old_path, new_path)
        except OSError as err:
            raise StorageError(f"cannot rename {old_path} to {new_path}: {err}") from err

    def _move_tables(self, component: Component) -> int:
        entries = component.all_entries()
        live = _cached(self._live)
        copied = 0
        try:
            for e in entries.values():
                if not e.changed:
                    continue
                logger.info(
                    "Moving DB table, req=%s old=%s/%r new=%s/%r",
                    e.req,
                    e.old.db_locator,
                    e.old.table,
                    e.new.db_locator,
                    e.new.table,
                )
                src = self._open(live, e.old.db_locator)
                if e.old.db_locator == e.new.db_locator:
                    dst = src
                else:
                    dst = self._open(live, e.new.db_locator)
                copied += copy_table(src, e.old.table_prefix, dst, e.new.table_prefix, move=True)

            records = _records_by_db(entries, component.db_locators())
            # Destinations first: a crash in between leaves the request listed
            # twice, which planning resolves, rather than not at all.
            gaining = {e.new.db_locator for e in entries.values()}
            for locator in sorted(records, key=lambda loc: (loc not in gaining, loc)):
                db = self._open(live, locator)
                write_tables_list(db, self._keys.tables_key, records[locator])
        finally:
            for producer in live.values():
                producer.close()
        return copied

    def _rebuild(self, component: Component) -> int:
        entries = component.all_entries()
        new_locators = sorted({e.new.db_locator for e in entries.values()})
        old_locators = sorted({e.old.db_locator for e in entries.values()})

        for locator in new_locators:
            staged = self._staged_path(locator)
            if staged.exists():
                logger.warning("Discarding stale staged DB %s", staged)
                _remove_tree(staged)

        live = _cached(self._live)
        staging = _cached(self._staging)
        copied = 0
        try:
            for e in entries.values():
                logger.info(
                    "Copying DB table, req=%s old=%s/%r new=tmp/%s/%r",
                    e.req,
                    e.old.db_locator,
                    e.old.table,
                    e.new.db_locator,
                    e.new.table,
                )
                src = self._open(live, e.old.db_locator)
                dst = staging[e.new.type].open_db(e.new.name)
                copied += copy_table(src, e.old.table_prefix, dst, e.new.table_prefix)
        finally:
            for producer in (*live.values(), *staging.values()):
                producer.close()

        records = _records_by_db(entries, new_locators)
        journal = RebuildJournal(
            drop=[JournalDB.of(loc) for loc in old_locators],
            move=[JournalDB.of(loc) for loc in new_locators],
            tables=[
                JournalTable(db=JournalDB.of(loc), req=r.req, table=r.table)
                for loc, recs in sorted(records.items())
                for r in recs
            ],
        )
        journal.save(self._journal_path)
        self.finish_rebuild(journal)
        return copied

    def finish_rebuild(self, journal: RebuildJournal) -> None:
        """
        Replay the steps of a rebuild following its copies.

        Every step tolerates having already been done, so an interrupted
        replay can itself be replayed.
        """
        for db in journal.drop:
            path = self._live_path(db.locator)
            if path.exists():
                logger.info("Dropping old DB, db_type=%s db_name=%s", db.type, db.name)
                _remove_tree(path)

        for db in journal.move:
            staged = self._staged_path(db.locator)
            target = self._live_path(db.locator)
            if not staged.exists():
                continue
            logger.info("Moving tmp DB to clean dir, old=%s new=%s", staged, target)
            try:
                if target.exists():
                    shutil.rmtree(target)
                target.parent.mkdir(parents=True, exist_ok=True)
                os.rename(staged, target)
            except OSError as err:
                raise StorageError(f"cannot move {staged} to {target}: {err}") from err

        for locator, records in sorted(journal.records_by_db().items()):
            db_handle = self._live[locator.type].open_db(locator.name)
            try:
                write_tables_list(db_handle, self._keys.tables_key, records)
            finally:
                db_handle.close()

        try:
            self._journal_path.unlink(missing_ok=True)
        except OSError as err:
            raise StorageError(
                f"cannot remove rebuild journal {self._journal_path}: {err}"
            ) from err

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def recover_staging(self) -> bool:
        """
        Bring the staging area back to empty before planning.

        A journal is replayed to completion. Staged databases without a
        journal are leftovers of copies that never completed and are deleted.

        Returns:
            True if an interrupted rebuild was completed.
        """
        resumed = False
        if self._journal_path.exists():
            logger.warning("Resuming interrupted DB rebuild from %s", self._journal_path)
            self.finish_rebuild(RebuildJournal.load(self._journal_path))
            resumed = True

        for _typ, producer in sorted(self._staging.items()):
            for name in producer.names():
                logger.warning("Discarding stale staged DB %s", producer.path_of(name))
                _remove_tree(producer.path_of(name))
        return resumed

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _open(self, producers: Mapping[str, CachedProducer], locator: DBLocator) -> KVStore:
        return SkipKeysStore(producers[locator.type].open_db(locator.name), self._keys.prefix)

    def _live_path(self, locator: DBLocator) -> Path:
        return self._live[locator.type].path_of(locator.name)

    def _staged_path(self, locator: DBLocator) -> Path:
        return self._staging[locator.type].path_of(locator.name)


def _cached(producers: Mapping[str, DirectoryProducer]) -> dict[str, CachedProducer]:
    return {typ: CachedProducer(producer) for typ, producer in producers.items()}


def _records_by_db(
    entries: Mapping[str, MigrationEntry], locators: set[DBLocator] | list[DBLocator]
) -> dict[DBLocator, list[TableRecord]]:
    """Table lists of `locators` after migration, derived from the entries alone."""
    records: dict[DBLocator, list[TableRecord]] = {loc: [] for loc in locators}
    for e in entries.values():
        if e.new.db_locator in records:
            records[e.new.db_locator].append(TableRecord(req=e.req, table=e.new.table))
    return records


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except OSError as err:
        raise StorageError(f"cannot remove {path}: {err}") from err


def migrate(
    layout: DataDirLayout,
    routing: RoutingConfig,
    keys: MetadataKeys = DEFAULT_METADATA_KEYS,
    clock: Callable[[], int] = time.time_ns,
) -> MigrationReport:
    """
    Migrate a data directory to the layout of `routing`.

    Resumes an interrupted rebuild first, then plans and executes. Safe to
    run again after any failure.

    Raises:
        ConfigurationError: Before any write, for routing or layout errors.
        StorageError: On I/O failure; re-running recovers.
    """
    live = supported_dbs(layout.chaindata)
    staging = supported_dbs(layout.staging)
    executor = MigrationExecutor(live, staging, keys, layout.journal, clock=clock)

    resumed = executor.recover_staging()
    plan = plan_migration(live, routing, keys)
    report = executor.execute(plan)
    report.resumed = resumed
    if resumed and report.flush_id is None:
        report.flush_id = executor.mark_clean()

    if not plan.is_empty:
        logger.info("DB migration is complete")
    return report
