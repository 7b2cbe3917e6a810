"""
Physical placement of logical requests.

A route names the backend, the physical database and the table prefix that
hold one logical request. Locators are the projections of a route used to
compare placements: two routes with equal DB locators share a physical
database, two routes with equal table locators would share a table.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import Field

from chaindb.types import StrictBaseModel


@dataclass(frozen=True, slots=True, order=True)
class DBLocator:
    """Identifies one physical database."""

    type: str
    """Backend type tag."""

    name: str
    """Database name within the backend."""

    def __str__(self) -> str:
        return f"{self.type}/{self.name}"


@dataclass(frozen=True, slots=True, order=True)
class TableLocator:
    """Identifies one table inside one physical database."""

    type: str
    """Backend type tag."""

    name: str
    """Database name within the backend."""

    table: str
    """Table prefix inside the database."""

    @property
    def db(self) -> DBLocator:
        """The database holding the table."""
        return DBLocator(self.type, self.name)


class Route(StrictBaseModel):
    """Where a logical request's data physically lives."""

    type: str = Field(min_length=1)
    """Backend type tag, e.g. "sqlite" or "lmdb"."""

    name: str = ""
    """
    Physical database name.

    Empty in a routing config means "the request name itself".
    """

    table: str = ""
    """Key prefix of the request's table inside the database."""

    no_drop: bool = False
    """
    Keep the data when the request is dropped.

    Used for data that must outlive its owner, such as per-epoch history.
    """

    @property
    def db_locator(self) -> DBLocator:
        """The physical database of this route."""
        return DBLocator(self.type, self.name)

    @property
    def table_locator(self) -> TableLocator:
        """The table of this route."""
        return TableLocator(self.type, self.name, self.table)

    @property
    def table_prefix(self) -> bytes:
        """Table prefix as raw key bytes."""
        return self.table.encode()

    def same_place(self, other: Route) -> bool:
        """True if both routes address the same table, ignoring `no_drop`."""
        return self.table_locator == other.table_locator
