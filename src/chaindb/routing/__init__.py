"""
Routing module mapping logical requests to physical placements.

Provides routes and locators, the routing config, the table-list metadata
persisted in every physical database, and the routed multi-producer.
"""

from .config import RoutingConfig
from .multidb import MultiProducer, RoutedTable
from .route import DBLocator, Route, TableLocator
from .tables import TableRecord, read_tables_list, write_tables_list

__all__ = [
    "DBLocator",
    "MultiProducer",
    "Route",
    "RoutedTable",
    "RoutingConfig",
    "TableLocator",
    "TableRecord",
    "read_tables_list",
    "write_tables_list",
]
