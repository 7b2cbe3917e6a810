"""
Node database set assembly.

Opens the full set of physical databases a node runs on, in the order that
keeps the set trustworthy:

1. Refuse to start while a migration has staged data.
2. Drop everything if a previous run was torn (missing or dirty markers).
3. Open every existing database through synced pools, which requires all of
   them to carry the same clean flush id.
4. On an empty start, write the genesis and flush.
5. Check that the layout on disk matches the routing config, and that the
   stored genesis is the one supplied.

A failure during the first launch leaves nothing behind: every database is
dropped again, so the next attempt starts empty too.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping

from chaindb.config import DEFAULT_METADATA_KEYS, DataDirLayout, MetadataKeys
from chaindb.routing import MultiProducer, RoutedTable, RoutingConfig
from chaindb.storage import (
    CLEAN_MARKER,
    DBProducer,
    DirectoryProducer,
    SyncedPool,
    supported_dbs,
)
from chaindb.types import (
    GenesisMismatchError,
    IncompatibleLayoutError,
    MissingGenesisError,
    StorageError,
    uint64_to_bytes,
)

from .genesis import GenesisConfig

logger = logging.getLogger(__name__)

GENESIS_REQ = "genesis"
"""Logical request holding the genesis id."""

GENESIS_ID_KEY = b"id"
"""Key of the genesis id inside its request."""


# -----------------------------------------------------------------------------
# Start-up Checks
# -----------------------------------------------------------------------------


def is_interrupted(producers: Mapping[str, DBProducer], keys: MetadataKeys) -> bool:
    """True if some database lacks its flush marker or is marked dirty."""
    for _typ, producer in sorted(producers.items()):
        for name in producer.names():
            db = producer.open_db(name)
            try:
                mark = db.get(keys.flush_id_key)
            finally:
                db.close()
            if mark is None or mark[0] != CLEAN_MARKER:
                logger.warning("Database %s was not flushed cleanly", name)
                return True
    return False


def is_empty(producers: Mapping[str, DBProducer]) -> bool:
    """True if no backend holds any database."""
    return all(not producer.names() for producer in producers.values())


def drop_all_dbs(producer: DBProducer) -> None:
    """Irreversibly delete every database of a producer."""
    for name in producer.names():
        db = producer.open_db(name)
        db.close()
        db.drop()
        logger.info("Dropped database %s", name)


def drop_all_if_interrupted(producers: Mapping[str, DBProducer], keys: MetadataKeys) -> bool:
    """
    Drop the whole set after a torn write.

    Returns:
        True if the node starts from an empty data directory.
    """
    if is_interrupted(producers, keys):
        logger.warning("Torn write detected, dropping all databases")
        for _typ, producer in sorted(producers.items()):
            drop_all_dbs(producer)
        return True
    return is_empty(producers)


def check_staging(layout: DataDirLayout) -> None:
    """
    Refuse to start while a migration left staged databases.

    Raises:
        IncompatibleLayoutError: If the journal or any staged database exists.
    """
    staged = [
        producer.path_of(name)
        for _typ, producer in sorted(supported_dbs(layout.staging).items())
        for name in producer.names()
    ]
    if layout.journal.exists() or staged:
        raise IncompatibleLayoutError(
            f"unfinished DB migration in {layout.staging}. Try to use 'migrate' to recover"
        )


# -----------------------------------------------------------------------------
# Node DB Set
# -----------------------------------------------------------------------------


class NodeDBs:
    """
    The databases of a running node.

    Writes are buffered by the synced pools and reach the disk on `flush`,
    which runs each flush phase across every backend before the next one.
    """

    def __init__(
        self,
        pools: Mapping[str, SyncedPool],
        multi: MultiProducer,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self._pools = dict(pools)
        self._multi = multi
        self._clock = clock

    @property
    def multi(self) -> MultiProducer:
        """Routed producer serving logical requests."""
        return self._multi

    def open_db(self, req: str) -> RoutedTable:
        """Open the table of a logical request."""
        return self._multi.open_db(req)

    def genesis_id(self) -> bytes | None:
        """Stored genesis id, None if never written."""
        return self.open_db(GENESIS_REQ).get(GENESIS_ID_KEY)

    def not_flushed_size_est(self) -> int:
        """Approximate bytes buffered across every backend."""
        return sum(pool.not_flushed_size_est() for pool in self._pools.values())

    def flush(self) -> bytes:
        """
        Persist every buffered write under a fresh flush id.

        A crash in the middle leaves at least one dirty marker, which the
        next start detects.

        Returns:
            The flush id written.
        """
        flush_id = uint64_to_bytes(self._clock())
        pools = [pool for _typ, pool in sorted(self._pools.items())]
        for pool in pools:
            pool.mark_dirty()
        for pool in pools:
            pool.flush_data()
        for pool in pools:
            pool.mark_clean(flush_id)
        return flush_id

    def close(self) -> None:
        """Close every database. Unflushed writes are lost."""
        self._multi.close()
        for pool in self._pools.values():
            pool.close()


def apply_genesis(dbs: NodeDBs, genesis: GenesisConfig) -> None:
    """Write the genesis content and id, then flush."""
    logger.info("Applying genesis state, pairs=%d", genesis.num_pairs())
    for req, pairs in sorted(genesis.data.items()):
        table = dbs.open_db(req)
        for key, value in sorted(pairs.items()):
            table.put(key, value)
    dbs.open_db(GENESIS_REQ).put(GENESIS_ID_KEY, genesis.genesis_id)
    dbs.flush()


def _open_pools(
    producers: Mapping[str, DBProducer], keys: MetadataKeys
) -> dict[str, SyncedPool]:
    pools: dict[str, SyncedPool] = {}
    flush_id: bytes | None = None
    try:
        for typ, producer in sorted(producers.items()):
            pool = SyncedPool(producer, keys.flush_id_key)
            pools[typ] = pool
            flush_id = pool.initialize(producer.names(), flush_id)
    except Exception:
        for pool in pools.values():
            pool.close()
        raise
    return pools


def _make_node_dbs(
    producers: Mapping[str, DirectoryProducer],
    routing: RoutingConfig,
    genesis: GenesisConfig | None,
    keys: MetadataKeys,
    first_launch: bool,
    clock: Callable[[], int],
) -> NodeDBs:
    if first_launch and genesis is None:
        raise MissingGenesisError("missing genesis for an empty datadir")

    pools = _open_pools(producers, keys)
    try:
        multi = MultiProducer(pools, routing, keys)
    except Exception:
        for pool in pools.values():
            pool.close()
        raise

    dbs = NodeDBs(pools, multi, clock)
    try:
        multi.verify()
        if first_launch and genesis is not None:
            apply_genesis(dbs, genesis)

        stored = dbs.genesis_id()
        if stored is None:
            raise StorageError("malformed chainstore: genesis id is not written")
        if genesis is not None and stored != genesis.genesis_id:
            raise GenesisMismatchError(stored, genesis.genesis_id)
    except Exception:
        dbs.close()
        raise
    return dbs


def open_node_dbs(
    layout: DataDirLayout,
    routing: RoutingConfig,
    genesis: GenesisConfig | None = None,
    keys: MetadataKeys = DEFAULT_METADATA_KEYS,
    clock: Callable[[], int] = time.time_ns,
) -> NodeDBs:
    """
    Open the database set of a node.

    Args:
        layout: Data directory of the node.
        routing: Routing config placing every request.
        genesis: Genesis to apply on an empty start, and to compare with
            the stored one otherwise.
        keys: Reserved metadata keys.
        clock: Source of nanosecond timestamps for flush ids.

    Raises:
        IncompatibleLayoutError: If a migration is pending or the layout on
            disk does not match routing.
        MissingGenesisError: If the data directory is empty and no genesis
            is given.
        GenesisMismatchError: If the stored genesis differs from `genesis`.
        TornWriteError: If the databases were flushed with different ids.
    """
    check_staging(layout)
    producers = supported_dbs(layout.chaindata)
    first_launch = drop_all_if_interrupted(producers, keys)

    try:
        dbs = _make_node_dbs(producers, routing, genesis, keys, first_launch, clock)
    except Exception:
        if first_launch:
            for _typ, producer in sorted(producers.items()):
                drop_all_dbs(producer)
        raise

    genesis_id = dbs.genesis_id() or b""
    if first_launch:
        logger.info("Applied genesis state, genesis=0x%s", genesis_id.hex())
    else:
        logger.info("Genesis is already written, genesis=0x%s", genesis_id.hex())
    return dbs
