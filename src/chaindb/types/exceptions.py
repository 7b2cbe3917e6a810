"""
Exception hierarchy for the chain database layer.

Every error raised by the routing, migration and storage code derives from
`ChainDBError`. Internal components only raise; the command-line layer is the
single place that decides to log and terminate.

Categories
----------
- Configuration errors are detected before anything is written.
- Storage errors may leave a migration half-way; re-running it recovers.
- Torn writes mean the whole DB set can no longer be trusted.
"""

from __future__ import annotations


class ChainDBError(Exception):
    """
    Base exception for all chain database errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class ConfigurationError(ChainDBError):
    """Base class for errors in user-supplied configuration."""


class RoutingConfigError(ConfigurationError):
    """Raised when the routing table is malformed or cannot route a request."""


class ContradictoryLayoutError(ConfigurationError):
    """
    Raised when the desired layout places two tables ambiguously.

    Two logical requests routed to the same physical DB must not use table
    prefixes where one is a prefix of the other: iterating one table would
    then yield keys of the other.

    Attributes:
        db_type: Backend type of the shared physical DB.
        db_name: Name of the shared physical DB.
        req0: First request of the conflicting pair.
        req1: Second request of the conflicting pair.
        table0: Table prefix of the first request.
        table1: Table prefix of the second request.
    """

    def __init__(
        self,
        db_type: str,
        db_name: str,
        *,
        req0: str,
        req1: str,
        table0: str,
        table1: str,
    ) -> None:
        self.db_type = db_type
        self.db_name = db_name
        self.req0 = req0
        self.req1 = req1
        self.table0 = table0
        self.table1 = table1

        super().__init__(
            f"New DB layout is contradictory: {req0!r} (table {table0!r}) and "
            f"{req1!r} (table {table1!r}) overlap in {db_type}/{db_name}"
        )


class IncompatibleLayoutError(ChainDBError):
    """Raised when the on-disk layout does not match the routing config."""


class StorageError(ChainDBError):
    """
    Raised when a physical database operation fails.

    Wraps backend specific failures (sqlite, lmdb, filesystem) so callers
    handle a single type.
    """


class TableListDecodeError(StorageError):
    """Raised when a persisted table list cannot be decoded."""


class TornWriteError(ChainDBError):
    """
    Raised when the flush markers of a DB set disagree.

    Either a DB is marked dirty, lacks a marker, or carries a flush id that
    differs from its siblings. The set is then treated as lost.
    """


class MissingGenesisError(ConfigurationError):
    """Raised when an empty data directory is opened without a genesis."""


class GenesisMismatchError(ChainDBError):
    """
    Raised when the stored genesis differs from the supplied one.

    Attributes:
        stored: Genesis id found in the database.
        new: Genesis id supplied by the caller.
    """

    def __init__(self, stored: bytes, new: bytes) -> None:
        self.stored = stored
        self.new = new
        super().__init__(
            f"database contains incompatible genesis (have 0x{stored.hex()}, new 0x{new.hex()})"
        )
