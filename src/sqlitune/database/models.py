"""Database models for SQLiTune.

Query results and the immutable schema records produced by discovery.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union, overload

from ..core.exceptions import DiscoveryError, ErrorCodes, TableNotFoundError


@dataclass
class QueryResult:
    """Result of a single statement."""
    rows: List[Dict[str, Any]]
    row_count: int
    columns: List[str]
    execution_time: float
    last_row_id: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """First column of the first row, or None."""
        if not self.rows or not self.columns:
            return None
        return self.rows[0][self.columns[0]]


@dataclass(frozen=True)
class ColumnMetadata:
    """Column as reported by ``PRAGMA table_info``.

    ``nullable`` mirrors the engine's ``notnull`` flag exactly, so an
    ``INTEGER PRIMARY KEY`` column declared without NOT NULL reports
    ``nullable=True`` even though its rowid can never be NULL.
    """
    name: str
    declared_type: str
    nullable: bool
    is_primary_key: bool = False
    primary_key_position: int = 0
    is_auto_increment: bool = False
    auto_increment_kind: Optional[str] = None
    default_value: Optional[str] = None
    position: int = 0

    @property
    def type_affinity(self) -> str:
        """SQLite column affinity derived from the declared type."""
        declared = self.declared_type.upper()
        if "INT" in declared:
            return "INTEGER"
        if any(token in declared for token in ("CHAR", "CLOB", "TEXT")):
            return "TEXT"
        if not declared or "BLOB" in declared:
            return "BLOB"
        if any(token in declared for token in ("REAL", "FLOA", "DOUB")):
            return "REAL"
        return "NUMERIC"

    @property
    def has_default(self) -> bool:
        return self.default_value is not None


@dataclass(frozen=True)
class ForeignKeyMetadata:
    """One column of a foreign key constraint (``PRAGMA foreign_key_list``)."""
    id: int
    seq: int
    column: str
    referenced_table: str
    referenced_column: str
    on_update: str = "NO ACTION"
    on_delete: str = "NO ACTION"
    match: str = "NONE"


@dataclass(frozen=True)
class IndexMetadata:
    """Index as reported by ``PRAGMA index_list`` and ``PRAGMA index_info``.

    ``origin`` is ``c`` for CREATE INDEX, ``u`` for a UNIQUE constraint and
    ``pk`` for a PRIMARY KEY constraint.
    """
    name: str
    table: str
    columns: Tuple[str, ...]
    unique: bool = False
    origin: str = "c"
    partial: bool = False

    @property
    def leading_column(self) -> Optional[str]:
        return self.columns[0] if self.columns else None


@dataclass(frozen=True)
class TableSchema:
    """Discovered table with its columns, keys and indexes."""
    name: str
    columns: Tuple[ColumnMetadata, ...] = ()
    primary_key: Tuple[str, ...] = ()
    foreign_keys: Tuple[ForeignKeyMetadata, ...] = ()
    indexes: Tuple[IndexMetadata, ...] = ()
    without_rowid: bool = False
    sql: Optional[str] = None
    check_constraints: Tuple[str, ...] = ()
    row_count: Optional[int] = None
    is_view: bool = False

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def get_column(self, name: str) -> Optional[ColumnMetadata]:
        """Look up a column; SQLite identifiers compare case-insensitively."""
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None

    @property
    def rowid_alias(self) -> Optional[str]:
        """Name of the INTEGER PRIMARY KEY column aliasing the rowid, if any."""
        for column in self.columns:
            if column.auto_increment_kind is not None:
                return column.name
        return None

    @property
    def unique_constraints(self) -> List[Tuple[str, ...]]:
        """Column sets guaranteed unique: the primary key and unique indexes."""
        constraints: List[Tuple[str, ...]] = []
        if self.primary_key:
            constraints.append(self.primary_key)
        for index in self.indexes:
            if index.unique and not index.partial and index.columns not in constraints:
                constraints.append(index.columns)
        return constraints

    def is_covered_by_index(self, columns: Sequence) -> bool:
        """Whether an existing index already serves lookups on ``columns``.

        True when ``columns`` equals or is a prefix of an index's leading
        columns, of the primary key, or starts with the rowid alias.
        """
        wanted = tuple(column.lower() for column in columns)
        if not wanted:
            return True

        alias = self.rowid_alias
        if alias is not None and wanted[0] == alias.lower():
            return True

        candidates = [tuple(c.lower() for c in index.columns) for index in self.indexes if not index.partial]
        if self.primary_key:
            candidates.append(tuple(c.lower() for c in self.primary_key))

        return any(candidate[:len(wanted)] == wanted for candidate in candidates)


@dataclass(frozen=True)
class SchemaSnapshot(Sequence):
    """Immutable result of one discovery run.

    Behaves as a sequence of :class:`TableSchema` ordered by table name.
    ``warnings`` holds the facet failures recovered during that run.
    """
    tables: Tuple[TableSchema, ...] = ()
    discovered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    warnings: Tuple[DiscoveryError, ...] = ()

    @classmethod
    def empty(cls, warnings: Tuple[DiscoveryError, ...] = ()) -> "SchemaSnapshot":
        return cls(tables=(), warnings=tuple(warnings))

    @overload
    def __getitem__(self, index: int) -> TableSchema: ...

    @overload
    def __getitem__(self, index: slice) -> Tuple[TableSchema, ...]: ...

    def __getitem__(self, index: Union[int, slice]) -> Union[TableSchema, Tuple[TableSchema, ...]]:
        return self.tables[index]

    def __len__(self) -> int:
        return len(self.tables)

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(self.tables)

    @property
    def table_names(self) -> List[str]:
        return [table.name for table in self.tables]

    def find_table(self, name: str) -> Optional[TableSchema]:
        lowered = name.lower()
        for table in self.tables:
            if table.name.lower() == lowered:
                return table
        return None

    def require_table(self, name: str) -> TableSchema:
        """Return the named table.

        Raises:
            TableNotFoundError: Listing the available tables
        """
        table = self.find_table(name)
        if table is None:
            raise TableNotFoundError(
                f"Table '{name}' does not exist",
                code=ErrorCodes.TABLE_NOT_FOUND,
                table=name,
                operation="require_table",
                available_options=self.table_names,
                suggestion="Run discovery again if the table was created recently",
            )
        return table

    def to_dict(self) -> Dict[str, Any]:
        return {
            "discovered_at": self.discovered_at.isoformat(),
            "tables": self.table_names,
            "warnings": [str(warning) for warning in self.warnings],
        }
