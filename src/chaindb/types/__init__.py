"""Reusable type definitions for the chain database layer."""

from .base import StrictBaseModel
from .bigendian import bytes_to_uint64, uint64_to_bytes
from .exceptions import (
    ChainDBError,
    ConfigurationError,
    ContradictoryLayoutError,
    GenesisMismatchError,
    IncompatibleLayoutError,
    MissingGenesisError,
    RoutingConfigError,
    StorageError,
    TableListDecodeError,
    TornWriteError,
)

__all__ = [
    # Core types
    "StrictBaseModel",
    "bytes_to_uint64",
    "uint64_to_bytes",
    # Exceptions
    "ChainDBError",
    "ConfigurationError",
    "ContradictoryLayoutError",
    "GenesisMismatchError",
    "IncompatibleLayoutError",
    "MissingGenesisError",
    "RoutingConfigError",
    "StorageError",
    "TableListDecodeError",
    "TornWriteError",
]
