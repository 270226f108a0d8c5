"""SQLiTune schema layer.

Discovery of the live schema, foreign key validation and repair,
column-validated queries and schema change detection.
"""

from .constraints import (
    ConstraintIssues,
    ConstraintValidator,
    FixOptions,
    FixResult,
    IntegrityReport,
    MissingIndexIssue,
    OrphanIssue,
    create_index_ddl,
    index_name_for,
)
from .discovery import SchemaDiscovery, extract_check_constraints
from .repository import Repository, RowValidator, affinity_rule, not_null_rule
from .watcher import SchemaWatcher

__all__ = [
    "ConstraintIssues",
    "ConstraintValidator",
    "FixOptions",
    "FixResult",
    "IntegrityReport",
    "MissingIndexIssue",
    "OrphanIssue",
    "create_index_ddl",
    "index_name_for",
    "SchemaDiscovery",
    "extract_check_constraints",
    "Repository",
    "RowValidator",
    "affinity_rule",
    "not_null_rule",
    "SchemaWatcher",
]
