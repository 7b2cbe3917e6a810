"""
Storage module for physical key-value databases.

Provides the key-value contract, the sqlite and lmdb backends selected by
type tag, and the wrappers layered over them (tables, cached handles,
flushable buffers, hidden reserved keys).
"""

from .batch import IDEAL_BATCH_SIZE, BufferedBatch
from .cached import CachedProducer, CachedStore
from .flushable import (
    CLEAN_MARKER,
    DIRTY_MARKER,
    Flushable,
    SyncedPool,
    clean_flush_id,
    write_clean_markers,
)
from .kv import Batch, DBProducer, DirectoryProducer, KVStore, prefix_upper_bound
from .lmdbstore import LMDBProducer, LMDBStore
from .registry import SUPPORTED_BACKENDS, supported_dbs
from .skipkeys import SkipKeysProducer, SkipKeysStore
from .sqlite import SQLiteProducer, SQLiteStore
from .table import Table

__all__ = [
    "IDEAL_BATCH_SIZE",
    "SUPPORTED_BACKENDS",
    "CLEAN_MARKER",
    "DIRTY_MARKER",
    "Batch",
    "BufferedBatch",
    "CachedProducer",
    "CachedStore",
    "DBProducer",
    "DirectoryProducer",
    "Flushable",
    "KVStore",
    "LMDBProducer",
    "LMDBStore",
    "SQLiteProducer",
    "SQLiteStore",
    "SkipKeysProducer",
    "SkipKeysStore",
    "SyncedPool",
    "Table",
    "clean_flush_id",
    "prefix_upper_bound",
    "supported_dbs",
    "write_clean_markers",
]
