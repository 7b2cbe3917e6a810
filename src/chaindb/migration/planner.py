"""
Migration planning.

Compares the layout recorded on disk (the table lists of every physical
database) with the layout requested by the routing config, and splits the
difference into independent components.

Planning Steps
--------------
1. Read every table record and resolve its new route.
2. Keep only the requests whose placement changes.
3. Group the changed requests into components: two requests are connected
   when they share a physical database through their old or new route.
4. Attach the unchanged requests living in those databases as residents.
5. Reject new layouts where two tables of one database overlap, residents
   included.

Every physical database touched by a change belongs to exactly one
component, so components can be migrated one by one without interfering.

Planning never writes. Every configuration error surfaces here, before the
executor touches any data.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from chaindb.config import MetadataKeys
from chaindb.routing import DBLocator, Route, RoutingConfig, read_tables_list
from chaindb.storage import DBProducer
from chaindb.types import ContradictoryLayoutError, IncompatibleLayoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MigrationEntry:
    """Old and new placement of one logical request."""

    req: str
    """Logical request name."""

    old: Route
    """Placement recorded on disk."""

    new: Route
    """Placement requested by the routing config."""

    @property
    def changed(self) -> bool:
        """
        True if the request has to move.

        The `no_drop` flag is not persisted on disk, so it never counts as
        a change.
        """
        return not self.old.same_place(self.new)


@dataclass(slots=True)
class Component:
    """
    Changed requests connected through shared physical databases.

    Residents are unchanged requests stored in one of the component's
    databases. They do not connect anything, but every strategy must carry
    them along so that co-located data survives.
    """

    entries: dict[str, MigrationEntry]
    """Changed requests, by name."""

    residents: dict[str, MigrationEntry] = field(default_factory=dict)
    """Unchanged requests sharing a database with the component."""

    def all_entries(self) -> dict[str, MigrationEntry]:
        """Changed requests and residents together."""
        return {**self.residents, **self.entries}

    def db_locators(self) -> set[DBLocator]:
        """Every physical database referenced by an old or new route."""
        return {
            locator
            for e in self.all_entries().values()
            for locator in (e.old.db_locator, e.new.db_locator)
        }


@dataclass(frozen=True, slots=True)
class MigrationPlan:
    """Result of planning: the full layout and its independent components."""

    layout: dict[str, MigrationEntry]
    """Every request recorded on disk, changed or not."""

    components: list[Component]
    """Independent units of migration."""

    @property
    def changed(self) -> dict[str, MigrationEntry]:
        """Requests whose placement changes."""
        return {req: e for req, e in self.layout.items() if e.changed}

    @property
    def is_empty(self) -> bool:
        """True if no migration is needed."""
        return not self.components


# -----------------------------------------------------------------------------
# Layout
# -----------------------------------------------------------------------------


def read_layout(
    producers: Mapping[str, DBProducer],
    routing: RoutingConfig,
    keys: MetadataKeys,
) -> dict[str, MigrationEntry]:
    """
    Build one migration entry per request recorded on disk.

    Args:
        producers: Live producers, one per backend type.
        routing: Routing config giving the new placements.
        keys: Reserved metadata keys.

    Returns:
        Entries keyed by request name.

    Raises:
        IncompatibleLayoutError: If a request is recorded in several
            databases in a way no interrupted migration could produce.
        RoutingConfigError: If a recorded request cannot be routed.
    """
    found: dict[str, list[Route]] = defaultdict(list)
    for typ, producer in sorted(producers.items()):
        for name in producer.names():
            db = producer.open_db(name)
            try:
                records = read_tables_list(db, keys.tables_key)
            finally:
                db.close()
            for record in records:
                found[record.req].append(Route(type=typ, name=name, table=record.table))

    layout: dict[str, MigrationEntry] = {}
    for req, olds in sorted(found.items()):
        new = routing.route_of(req)
        layout[req] = MigrationEntry(req=req, old=_resolve_old(req, olds, new), new=new)
    return layout


def _resolve_old(req: str, olds: list[Route], new: Route) -> Route:
    """
    Pick the authoritative old placement of a request.

    A move writes the destination's table list before cleaning the source's,
    so an interrupted move leaves the request listed twice: once at its new
    place, once at the place it still has to be moved from. The latter is
    the one to migrate from; its data was deleted only for keys already
    copied.
    """
    if len(olds) == 1:
        return olds[0]
    pending = [r for r in olds if not r.same_place(new)]
    if len(pending) != 1:
        places = ", ".join(f"{r.db_locator} table {r.table!r}" for r in olds)
        raise IncompatibleLayoutError(f"request {req!r} is recorded in several DBs: {places}")
    logger.warning(
        "Request %s is recorded twice, resuming its move from %s", req, pending[0].db_locator
    )
    return pending[0]


# -----------------------------------------------------------------------------
# Checks
# -----------------------------------------------------------------------------


def check_contradictions(entries: Iterable[MigrationEntry]) -> None:
    """
    Reject new layouts with overlapping tables.

    Two distinct requests whose new routes share a database must not have
    tables where one is a prefix of the other. Sorting tables makes every
    prefix land right before its extensions, so comparing neighbours is
    enough; the outcome does not depend on the input order.

    Raises:
        ContradictoryLayoutError: For the first overlapping pair, in sorted
            order.
    """
    by_db: dict[DBLocator, list[MigrationEntry]] = defaultdict(list)
    for e in entries:
        by_db[e.new.db_locator].append(e)

    for locator, group in sorted(by_db.items()):
        ordered = sorted(group, key=lambda e: (e.new.table, e.req))
        for e0, e1 in zip(ordered, ordered[1:], strict=False):
            if e1.new.table.startswith(e0.new.table):
                raise ContradictoryLayoutError(
                    locator.type,
                    locator.name,
                    req0=e0.req,
                    req1=e1.req,
                    table0=e0.new.table,
                    table1=e1.new.table,
                )


# -----------------------------------------------------------------------------
# Partition
# -----------------------------------------------------------------------------


def partition(entries: Mapping[str, MigrationEntry]) -> list[Component]:
    """
    Split entries into connected components.

    Adjacency is built explicitly from shared database locators (old or new
    route), then each component is collected by depth-first traversal from
    its smallest request name. The result depends only on the adjacency
    relation, never on the iteration order of the input.
    """
    by_db: dict[DBLocator, set[str]] = defaultdict(set)
    for req, e in entries.items():
        by_db[e.old.db_locator].add(req)
        by_db[e.new.db_locator].add(req)

    remaining = set(entries)
    components: list[Component] = []
    for seed in sorted(entries):
        if seed not in remaining:
            continue

        members: dict[str, MigrationEntry] = {}
        stack = [seed]
        while stack:
            req = stack.pop()
            if req in members:
                continue
            e = entries[req]
            members[req] = e
            remaining.discard(req)
            for locator in (e.old.db_locator, e.new.db_locator):
                stack.extend(sorted(by_db[locator] - members.keys()))

        components.append(Component(entries=dict(sorted(members.items()))))
    return components


def attach_residents(components: list[Component], layout: Mapping[str, MigrationEntry]) -> None:
    """
    Attach to each component the unchanged requests living in its databases.

    Residents never connect components. A resident keeps its route, so it
    sits in the contradiction check at its current table.
    """
    unchanged = [e for e in layout.values() if not e.changed]
    for component in components:
        locators = component.db_locators()
        component.residents = {
            e.req: e for e in sorted(unchanged, key=lambda e: e.req) if e.old.db_locator in locators
        }


def plan_migration(
    producers: Mapping[str, DBProducer],
    routing: RoutingConfig,
    keys: MetadataKeys,
) -> MigrationPlan:
    """
    Compute the migration from the on-disk layout to the routing config.

    Raises:
        ContradictoryLayoutError: If the new layout has overlapping tables.
        IncompatibleLayoutError: If the on-disk layout is ambiguous.
    """
    layout = read_layout(producers, routing, keys)
    changed = {req: e for req, e in layout.items() if e.changed}
    if not changed:
        logger.info("No DB migration is needed")
        return MigrationPlan(layout=layout, components=[])

    components = partition(changed)
    attach_residents(components, layout)
    for component in components:
        check_contradictions(component.all_entries().values())

    logger.info(
        "Planned DB migration, requests=%d components=%d", len(changed), len(components)
    )
    return MigrationPlan(layout=layout, components=components)
