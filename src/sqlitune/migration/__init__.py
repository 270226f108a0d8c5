"""Migration subsystem for SQLiTune.

Timestamped migration scripts are applied in order, each inside one
transaction, tracked in a ``migrations`` table and guarded by a slot-based
resource manager.
"""

from .core import MIGRATION_FILE_PATTERN, MigrationCore
from .manager import MigrationManager
from .models import (
    MIGRATION_TRANSITIONS,
    BatchResult,
    ChecksumDrift,
    ManagerStatus,
    MigrationFile,
    MigrationRecord,
    MigrationRunResult,
    MigrationState,
    MigrationStateMachine,
    MigrationStatus,
    ResourceMetrics,
)
from .resources import BatchOutcome, ResourceManager

__all__ = [
    "MIGRATION_FILE_PATTERN",
    "MIGRATION_TRANSITIONS",
    "BatchOutcome",
    "BatchResult",
    "ChecksumDrift",
    "ManagerStatus",
    "MigrationCore",
    "MigrationFile",
    "MigrationManager",
    "MigrationRecord",
    "MigrationRunResult",
    "MigrationState",
    "MigrationStateMachine",
    "MigrationStatus",
    "ResourceManager",
    "ResourceMetrics",
]
