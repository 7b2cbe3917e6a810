"""
Routed access to logical requests.

The multi-producer is what application code opens databases through. It
resolves a request to its route, opens the physical database of the route's
backend and hands back a table view. The first time a request is opened its
placement is recorded in the database's table list, so the on-disk layout
can always be reconstructed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from chaindb.config import MetadataKeys
from chaindb.storage import DBProducer, KVStore, SkipKeysStore, Table
from chaindb.types import IncompatibleLayoutError, RoutingConfigError

from .config import RoutingConfig
from .route import DBLocator, Route
from .tables import TableRecord, read_tables_list, write_tables_list

logger = logging.getLogger(__name__)


class RoutedTable(Table):
    """Table of one logical request, aware of its route."""

    def __init__(self, db: KVStore, req: str, route: Route, owner: MultiProducer) -> None:
        super().__init__(db, route.table_prefix)
        self._req = req
        self._route = route
        self._owner = owner

    @property
    def req(self) -> str:
        """Logical request served by the table."""
        return self._req

    @property
    def route(self) -> Route:
        """Placement of the table."""
        return self._route

    def drop(self) -> None:
        """
        Drop the request's data.

        Routes flagged `no_drop` keep their data; otherwise every key of the
        table is deleted and the request is removed from the table list.
        """
        if self._route.no_drop:
            logger.debug("Keeping data of %s on drop, route is no_drop", self._req)
            return
        super().drop()
        self._owner._unregister(self._req, self._route)


class MultiProducer:
    """
    Opens logical requests on the physical databases chosen by routing.

    Physical databases are opened once and shared by every request routed
    to them.
    """

    def __init__(
        self,
        producers: Mapping[str, DBProducer],
        routing: RoutingConfig,
        keys: MetadataKeys,
    ) -> None:
        """
        Args:
            producers: One producer per backend type tag.
            routing: Routing config resolving requests.
            keys: Reserved metadata keys.

        Raises:
            RoutingConfigError: If a route names a backend without producer.
        """
        missing = routing.backend_types() - set(producers)
        if missing:
            raise RoutingConfigError(f"unsupported DB types in routing config: {sorted(missing)}")
        self._producers = dict(producers)
        self._routing = routing
        self._keys = keys
        self._open: dict[DBLocator, KVStore] = {}

    def route_of(self, req: str) -> Route:
        """Route of a logical request."""
        return self._routing.route_of(req)

    def open_db(self, req: str) -> RoutedTable:
        """
        Open the table of a logical request.

        Raises:
            IncompatibleLayoutError: If the request is already recorded in
                its database under a different table.
        """
        route = self.route_of(req)
        db = self._physical(route.db_locator)

        records = read_tables_list(db, self._keys.tables_key)
        recorded = next((r for r in records if r.req == req), None)
        if recorded is None:
            write_tables_list(db, self._keys.tables_key, [*records, TableRecord(req, route.table)])
        elif recorded.table != route.table:
            raise IncompatibleLayoutError(
                f"request {req!r} is stored in table {recorded.table!r} of "
                f"{route.db_locator}, routing expects {route.table!r}. "
                "Try to use 'migrate' to recover"
            )

        return RoutedTable(SkipKeysStore(db, self._keys.prefix), req, route, self)

    def _physical(self, locator: DBLocator) -> KVStore:
        if locator not in self._open:
            producer = self._producers.get(locator.type)
            if producer is None:
                raise RoutingConfigError(f"unsupported DB type {locator.type!r}")
            self._open[locator] = producer.open_db(locator.name)
        return self._open[locator]

    def _unregister(self, req: str, route: Route) -> None:
        db = self._physical(route.db_locator)
        records = read_tables_list(db, self._keys.tables_key)
        write_tables_list(db, self._keys.tables_key, [r for r in records if r.req != req])

    # -------------------------------------------------------------------------
    # Layout Inspection
    # -------------------------------------------------------------------------

    def table_records(self) -> dict[DBLocator, list[TableRecord]]:
        """Table lists of every existing physical database."""
        layout: dict[DBLocator, list[TableRecord]] = {}
        for typ, producer in sorted(self._producers.items()):
            for name in producer.names():
                locator = DBLocator(typ, name)
                layout[locator] = read_tables_list(self._physical(locator), self._keys.tables_key)
        return layout

    def names(self) -> list[str]:
        """Every logical request recorded on disk."""
        return sorted(r.req for records in self.table_records().values() for r in records)

    def verify(self) -> None:
        """
        Check that every recorded request sits where routing places it.

        Raises:
            IncompatibleLayoutError: On the first misplaced or duplicated
                request.
        """
        seen: dict[str, DBLocator] = {}
        for locator, records in self.table_records().items():
            for record in records:
                if record.req in seen:
                    raise IncompatibleLayoutError(
                        f"request {record.req!r} is recorded in both {seen[record.req]} and "
                        f"{locator}. Try to use 'migrate' to recover"
                    )
                seen[record.req] = locator
                route = self.route_of(record.req)
                if route.db_locator != locator or route.table != record.table:
                    raise IncompatibleLayoutError(
                        f"incompatible chainstore DB layout: request {record.req!r} is in "
                        f"{locator} table {record.table!r}, routing expects "
                        f"{route.db_locator} table {route.table!r}. "
                        "Try to use 'migrate' to recover"
                    )

    def close(self) -> None:
        """Close every physical database opened by the producer."""
        for db in self._open.values():
            db.close()
        self._open.clear()
