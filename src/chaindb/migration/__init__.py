"""
Migration module moving stored requests to the placement routing asks for.

Planning diffs the on-disk table lists against the routing config and splits
the changes into independent components; execution migrates each component
with the cheapest safe strategy and marks every database clean.
"""

from .executor import (
    ComponentReport,
    MigrationExecutor,
    MigrationReport,
    Strategy,
    choose_strategy,
    copy_table,
    has_overlap,
    is_renamable,
    migrate,
)
from .journal import JournalDB, JournalTable, RebuildJournal
from .planner import (
    Component,
    MigrationEntry,
    MigrationPlan,
    attach_residents,
    check_contradictions,
    partition,
    plan_migration,
    read_layout,
)

__all__ = [
    "Component",
    "ComponentReport",
    "JournalDB",
    "JournalTable",
    "MigrationEntry",
    "MigrationExecutor",
    "MigrationPlan",
    "MigrationReport",
    "RebuildJournal",
    "Strategy",
    "attach_residents",
    "check_contradictions",
    "choose_strategy",
    "copy_table",
    "has_overlap",
    "is_renamable",
    "migrate",
    "partition",
    "plan_migration",
    "read_layout",
]
