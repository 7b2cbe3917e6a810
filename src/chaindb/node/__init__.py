"""
Node module assembling the database set a node runs on.

Provides the genesis config and the start-up sequence that detects torn
writes, applies the genesis on an empty start and verifies the layout.
"""

from .assembly import (
    GENESIS_ID_KEY,
    GENESIS_REQ,
    NodeDBs,
    apply_genesis,
    check_staging,
    drop_all_dbs,
    drop_all_if_interrupted,
    is_empty,
    is_interrupted,
    open_node_dbs,
)
from .genesis import GenesisConfig

__all__ = [
    "GENESIS_ID_KEY",
    "GENESIS_REQ",
    "GenesisConfig",
    "NodeDBs",
    "apply_genesis",
    "check_staging",
    "drop_all_dbs",
    "drop_all_if_interrupted",
    "is_empty",
    "is_interrupted",
    "open_node_dbs",
]
