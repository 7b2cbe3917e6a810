"""
Routing configuration loader.

Maps logical request patterns to routes. Loaded from YAML:

    "":
      type: sqlite
    gossip:
      type: sqlite
      name: main
      table: G
    lachesis-%d:
      type: lmdb
      name: epoch-%d
      noDrop: true

Resolution of a request tries, in order:

1. the exact literal pattern,
2. the `%d` patterns, in sorted order, the first full match winning,
3. the catch-all empty pattern.

A `%d` inside the matched route's name or table receives the matched number.
An empty route name resolves to the request name itself.
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError, field_validator

from chaindb.types import RoutingConfigError, StrictBaseModel

from .route import Route

PLACEHOLDER = "%d"
"""The only placeholder a pattern may contain."""

DEFAULT_PATTERN = ""
"""Pattern of the catch-all route."""


def _default_table() -> dict[str, Route]:
    return {DEFAULT_PATTERN: Route(type="sqlite")}


@lru_cache(maxsize=None)
def _compile(pattern: str) -> re.Pattern[str]:
    """Compile a `%d` pattern into an anchored regular expression."""
    return re.compile(r"(\d+)".join(re.escape(part) for part in pattern.split(PLACEHOLDER)))


class RoutingConfig(StrictBaseModel):
    """Static mapping from request patterns to routes."""

    table: dict[str, Route] = Field(default_factory=_default_table)
    """Routes keyed by request pattern."""

    @field_validator("table")
    @classmethod
    def check_patterns(cls, table: dict[str, Route]) -> dict[str, Route]:
        """Patterns may hold at most one `%d` and no other `%` directive."""
        for pattern, route in table.items():
            if pattern.count(PLACEHOLDER) > 1:
                raise ValueError(f"pattern {pattern!r} has more than one {PLACEHOLDER}")
            if pattern.replace(PLACEHOLDER, "").count("%"):
                raise ValueError(f"pattern {pattern!r} has an unsupported % directive")
            for value in (route.name, route.table):
                if PLACEHOLDER in value and PLACEHOLDER not in pattern:
                    raise ValueError(
                        f"route of literal pattern {pattern!r} uses {PLACEHOLDER} in {value!r}"
                    )
        return table

    @classmethod
    def from_yaml(cls, path: Path) -> RoutingConfig:
        """
        Load a routing config from a YAML mapping of pattern to route.

        Raises:
            RoutingConfigError: If the file cannot be read or is invalid.
        """
        try:
            with path.open() as f:
                data: Any = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise RoutingConfigError(f"cannot load routing config {path}: {e}") from e
        if data is None:
            return cls()
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: Any) -> RoutingConfig:
        """
        Build a routing config from plain data (pattern -> route fields).

        Raises:
            RoutingConfigError: If the data does not describe valid routes.
        """
        if not isinstance(data, dict):
            raise RoutingConfigError("routing config must be a mapping of pattern to route")
        try:
            table = {str(p): Route.model_validate(r) for p, r in data.items()}
            return cls(table=table)
        except ValidationError as e:
            raise RoutingConfigError(f"invalid routing config: {e}") from e

    def route_of(self, req: str) -> Route:
        """
        Resolve the route of a logical request.

        Raises:
            RoutingConfigError: If no pattern matches and there is no default.
        """
        route = self._match(req)
        if not route.name:
            route = route.copy(name=req)
        return route

    def _match(self, req: str) -> Route:
        if req in self.table:
            return self.table[req]

        for pattern in sorted(p for p in self.table if PLACEHOLDER in p):
            match = _compile(pattern).fullmatch(req)
            if match is None:
                continue
            number = str(int(match.group(1)))
            route = self.table[pattern]
            return route.copy(
                name=route.name.replace(PLACEHOLDER, number),
                table=route.table.replace(PLACEHOLDER, number),
            )

        if DEFAULT_PATTERN in self.table:
            return self.table[DEFAULT_PATTERN]
        raise RoutingConfigError(f"no route for request {req!r}")

    def backend_types(self) -> set[str]:
        """Every backend type tag referenced by a route."""
        return {route.type for route in self.table.values()}
