"""Data models for the migration subsystem.

Classes:
    MigrationFile: A migration script found on disk
    MigrationRecord: A row of the tracking table
    MigrationState: Lifecycle state of a migration file
    MigrationStateMachine: Per-file state tracking with a transition table
    ChecksumDrift: An applied migration whose file changed or vanished
    BatchResult: Outcome of one ``execute_all_migrations`` run
    MigrationStatus: File and tracking table counts
    MigrationRunResult: Outcome reported by the migration manager
    ManagerStatus: Migration status plus resource usage
    ResourceMetrics: Snapshot of the resource manager counters
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from ..core.exceptions import ErrorCodes, MigrationError


@dataclass(frozen=True)
class MigrationFile:
    """A migration script named ``<14-digit timestamp>_<description>.sql``."""

    name: str
    timestamp: str
    description: str
    content: str
    path: Path

    @property
    def filename(self) -> str:
        return f"{self.name}.sql"


@dataclass(frozen=True)
class MigrationRecord:
    """A migration recorded as applied in the tracking table."""

    id: str
    name: str
    applied_at: datetime
    checksum: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "applied_at": self.applied_at.isoformat(),
            "checksum": self.checksum,
        }


class MigrationState(str, Enum):
    """Lifecycle of a migration file within one core instance."""

    DISCOVERED = "discovered"
    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"


# Legal moves; APPLYING -> APPLYING is a retry, FAILED -> PENDING a later run
MIGRATION_TRANSITIONS: Mapping[MigrationState, FrozenSet[MigrationState]] = {
    MigrationState.DISCOVERED: frozenset({MigrationState.PENDING, MigrationState.APPLIED}),
    MigrationState.PENDING: frozenset({MigrationState.APPLYING, MigrationState.APPLIED}),
    MigrationState.APPLYING: frozenset(
        {MigrationState.APPLYING, MigrationState.APPLIED, MigrationState.FAILED}
    ),
    MigrationState.FAILED: frozenset({MigrationState.PENDING}),
    MigrationState.APPLIED: frozenset(),
}


class MigrationStateMachine:
    """Tracks the state of each migration by name."""

    def __init__(self) -> None:
        self._states: Dict[str, MigrationState] = {}

    def get(self, name: str) -> Optional[MigrationState]:
        return self._states.get(name)

    def discover(self, name: str) -> MigrationState:
        """Register a file the first time it is seen."""
        return self._states.setdefault(name, MigrationState.DISCOVERED)

    def transition(self, name: str, target: MigrationState) -> None:
        """Move ``name`` to ``target``.

        Raises:
            MigrationError: If the move is not in the transition table
        """
        current = self.discover(name)
        if target not in MIGRATION_TRANSITIONS[current]:
            raise MigrationError(
                f"Illegal migration state transition for '{name}': "
                f"{current.value} -> {target.value}",
                code=ErrorCodes.MIGRATION_STATE_INVALID,
                operation="transition",
                context={"migration": name, "from": current.value, "to": target.value},
            )
        self._states[name] = target

    def snapshot(self) -> Dict[str, str]:
        return {name: state.value for name, state in self._states.items()}

    def reset(self) -> None:
        self._states.clear()


@dataclass(frozen=True)
class ChecksumDrift:
    """Applied migration whose file no longer matches the recorded checksum."""

    name: str
    recorded_checksum: str
    current_checksum: Optional[str]

    @property
    def missing_file(self) -> bool:
        return self.current_checksum is None

    def describe(self) -> str:
        if self.missing_file:
            return f"Migration '{self.name}' is applied but its file is missing"
        return (
            f"Migration '{self.name}' changed after it was applied "
            f"(recorded {self.recorded_checksum[:12]}, now {self.current_checksum[:12]})"
        )


@dataclass
class BatchResult:
    executed: int = 0
    failed: int = 0
    applied: List[MigrationRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    drift: List[ChecksumDrift] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class MigrationStatus:
    total_files: int
    applied: int
    pending: int
    last_applied: Optional[str]
    pending_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MigrationRunResult:
    """What ``MigrationManager.migrate`` reports; it never raises."""

    success: bool
    executed: int = 0
    failed: int = 0
    duration_ms: float = 0.0
    errors: List[str] = field(default_factory=list)
    drift: List[ChecksumDrift] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "executed": self.executed,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "errors": list(self.errors),
            "drift": [item.describe() for item in self.drift],
        }


@dataclass
class ManagerStatus:
    total_files: int
    applied: int
    pending: int
    last_applied: Optional[str]
    resource_utilization: float
    active_operations: List[str] = field(default_factory=list)
    drift: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ResourceMetrics:
    """Counters of the resource manager at one point in time."""

    active: int
    max_concurrent: int
    total: int
    failures: int
    rejected: int
    timed_out: int

    @property
    def utilization(self) -> float:
        """Share of slots in use, as a percentage."""
        if self.max_concurrent == 0:
            return 0.0
        return self.active / self.max_concurrent * 100

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["utilization"] = self.utilization
        return data
