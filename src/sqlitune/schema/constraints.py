"""Foreign key constraint validation and repair.

The validator is split into a read-only ``plan()`` step and an explicit
``apply_fixes()`` step. ``apply_fixes`` is a dry run unless told otherwise,
and orphaned rows are only ever deleted when the caller opts in; a preview
of the affected row keys is built and logged before any delete runs.

Example:
    >>> validator = ConstraintValidator(connector, discovery)
    >>> issues = await validator.plan()
    >>> preview = await validator.apply_fixes(issues)  # dry run
    >>> preview.planned_statements
    ['CREATE INDEX IF NOT EXISTS "idx_orders_customer_id" ON "orders" ("customer_id")']
    >>> await validator.apply_fixes(
    ...     issues, FixOptions(create_missing_indexes=True, dry_run=False)
    ... )
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import groupby
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config.models import ConstraintConfig
from ..core.exceptions import ApplicationError, ErrorCodes, QueryError, SQLiTuneException
from ..core.utils import StringUtils
from ..database.connector import SQLiteConnector
from ..database.models import ForeignKeyMetadata, SchemaSnapshot, TableSchema
from ..logging import get_logger, get_performance_logger
from .discovery import SchemaDiscovery

_ROWID_NAMES = frozenset({"rowid", "_rowid_", "oid"})


def _ref(alias: str, column: str) -> str:
    if column.lower() in _ROWID_NAMES:
        return f"{alias}.{column}"
    return f"{alias}.{StringUtils.quote_identifier(column)}"


def index_name_for(table: str, columns: Sequence[str]) -> str:
    """Deterministic index name ``idx_<table>_<col1>_<col2>``."""
    return StringUtils.sanitize_sql_identifier(f"idx_{table}_{'_'.join(columns)}")


def create_index_ddl(table: str, columns: Sequence[str], name: Optional[str] = None) -> str:
    """``CREATE INDEX IF NOT EXISTS`` statement for the given columns."""
    index_name = name or index_name_for(table, columns)
    column_list = ", ".join(StringUtils.quote_identifier(column) for column in columns)
    return (
        f"CREATE INDEX IF NOT EXISTS {StringUtils.quote_identifier(index_name)} "
        f"ON {StringUtils.quote_identifier(table)} ({column_list})"
    )


@dataclass(frozen=True)
class OrphanIssue:
    """Rows whose non-null foreign key value has no matching parent row."""
    table: str
    columns: Tuple[str, ...]
    referenced_table: str
    referenced_columns: Tuple[str, ...]
    constraint_id: int
    orphan_count: int
    preview: Tuple[Any, ...] = ()
    key_columns: Tuple[str, ...] = ("rowid",)

    @property
    def column(self) -> str:
        return ", ".join(self.columns)

    @property
    def key(self) -> str:
        return f"{self.table}.{'_'.join(self.columns)}"

    @property
    def description(self) -> str:
        return (
            f"{self.orphan_count} row(s) in {self.table}({self.column}) reference missing "
            f"{self.referenced_table}({', '.join(self.referenced_columns)})"
        )


@dataclass(frozen=True)
class MissingIndexIssue:
    """Foreign key columns without an index leading with them."""
    table: str
    columns: Tuple[str, ...]
    referenced_table: str
    index_name: str
    ddl: str

    @property
    def column(self) -> str:
        return ", ".join(self.columns)


@dataclass
class ConstraintIssues:
    """Result of :meth:`ConstraintValidator.plan`."""
    orphans: List[OrphanIssue] = field(default_factory=list)
    missing_indexes: List[MissingIndexIssue] = field(default_factory=list)
    foreign_keys_enabled: bool = False
    errors: List[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_issues(self) -> int:
        return len(self.orphans) + len(self.missing_indexes) + (0 if self.foreign_keys_enabled else 1)

    @property
    def has_issues(self) -> bool:
        return bool(self.orphans or self.missing_indexes or not self.foreign_keys_enabled)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orphans": [
                {
                    "table": o.table,
                    "columns": list(o.columns),
                    "referenced_table": o.referenced_table,
                    "orphan_count": o.orphan_count,
                    "preview": list(o.preview),
                }
                for o in self.orphans
            ],
            "missing_indexes": [
                {"table": m.table, "columns": list(m.columns), "ddl": m.ddl}
                for m in self.missing_indexes
            ],
            "foreign_keys_enabled": self.foreign_keys_enabled,
            "errors": list(self.errors),
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class FixOptions:
    """What ``apply_fixes`` may change. Nothing is changed by default."""
    create_missing_indexes: bool = False
    enable_foreign_key_enforcement: bool = False
    cleanup_orphaned_records: bool = False
    dry_run: bool = True


@dataclass
class FixResult:
    """Outcome of :meth:`ConstraintValidator.apply_fixes`."""
    dry_run: bool
    planned_statements: List[str] = field(default_factory=list)
    executed_statements: List[str] = field(default_factory=list)
    indexes_created: int = 0
    orphans_deleted: int = 0
    foreign_keys_enabled: bool = False
    previews: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def applied(self) -> bool:
        return bool(self.executed_statements)


@dataclass
class IntegrityReport:
    """Result of ``PRAGMA integrity_check`` and ``PRAGMA foreign_key_check``."""
    integrity_messages: List[str] = field(default_factory=list)
    foreign_key_violations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.integrity_messages == ["ok"] and not self.foreign_key_violations


class ConstraintValidator:
    """Detects orphaned rows and unindexed foreign keys, and fixes them on request."""

    def __init__(
        self,
        connector: SQLiteConnector,
        discovery: SchemaDiscovery,
        config: Optional[ConstraintConfig] = None,
    ) -> None:
        self.connector = connector
        self.discovery = discovery
        self.config = config or ConstraintConfig()
        self.logger = get_logger("schema.constraints")
        self.perf_logger = get_performance_logger("schema.constraints")

    @staticmethod
    def _group_foreign_keys(table: TableSchema) -> List[List[ForeignKeyMetadata]]:
        ordered = sorted(table.foreign_keys, key=lambda fk: (fk.id, fk.seq))
        return [list(group) for _, group in groupby(ordered, key=lambda fk: fk.id)]

    @staticmethod
    def _key_columns(table: TableSchema) -> Tuple[str, ...]:
        if table.without_rowid:
            return table.primary_key or table.column_names[:1]
        return ("rowid",)

    @staticmethod
    def _orphan_condition(
        table: str,
        columns: Sequence[str],
        referenced_table: str,
        referenced_columns: Sequence[str],
    ) -> str:
        child = StringUtils.quote_identifier(table)
        not_null = " AND ".join(f"{_ref(child, column)} IS NOT NULL" for column in columns)
        matches = " AND ".join(
            f"{_ref('p', parent_column)} = {_ref(child, column)}"
            for column, parent_column in zip(columns, referenced_columns)
        )
        return (
            f"{not_null} AND NOT EXISTS (SELECT 1 FROM "
            f"{StringUtils.quote_identifier(referenced_table)} AS p WHERE {matches})"
        )

    def _orphan_issue_condition(self, issue: OrphanIssue) -> str:
        return self._orphan_condition(
            issue.table, issue.columns, issue.referenced_table, issue.referenced_columns
        )

    def _preview_sql(self, table: str, key_columns: Sequence[str], condition: str) -> str:
        child = StringUtils.quote_identifier(table)
        keys = ", ".join(_ref(child, column) for column in key_columns)
        return f"SELECT {keys} FROM {child} WHERE {condition} ORDER BY 1 LIMIT ?"

    @staticmethod
    def _preview_values(rows: List[Dict[str, Any]]) -> Tuple[Any, ...]:
        values = []
        for row in rows:
            row_values = tuple(row.values())
            values.append(row_values[0] if len(row_values) == 1 else row_values)
        return tuple(values)

    async def plan(self, schema: Optional[SchemaSnapshot] = None) -> ConstraintIssues:
        """Inspect every foreign key. Read-only."""
        snapshot = schema if schema is not None else await self.discovery.get_schema()
        issues = ConstraintIssues(
            foreign_keys_enabled=bool(await self.connector.pragma_value("foreign_keys"))
        )

        with self.perf_logger.measure("plan", tables=len(snapshot)):
            for table in snapshot:
                for group in self._group_foreign_keys(table):
                    await self._check_foreign_key(snapshot, table, group, issues)

        self.logger.info(
            "Constraint check completed",
            orphans=len(issues.orphans),
            missing_indexes=len(issues.missing_indexes),
            foreign_keys_enabled=issues.foreign_keys_enabled,
            errors=len(issues.errors),
        )
        return issues

    async def _check_foreign_key(
        self,
        snapshot: SchemaSnapshot,
        table: TableSchema,
        group: List[ForeignKeyMetadata],
        issues: ConstraintIssues,
    ) -> None:
        columns = tuple(fk.column for fk in group)
        referenced_columns = tuple(fk.referenced_column for fk in group)
        referenced_table_name = group[0].referenced_table
        label = f"{table.name}({', '.join(columns)})"

        if not table.is_covered_by_index(columns):
            index_name = index_name_for(table.name, columns)
            issues.missing_indexes.append(MissingIndexIssue(
                table=table.name,
                columns=columns,
                referenced_table=referenced_table_name,
                index_name=index_name,
                ddl=create_index_ddl(table.name, columns, index_name),
            ))

        referenced_table = snapshot.find_table(referenced_table_name)
        if referenced_table is None:
            issues.errors.append(f"{label} references missing table {referenced_table_name}")
            return

        unknown = [
            column for column in referenced_columns
            if column.lower() not in _ROWID_NAMES and not referenced_table.has_column(column)
        ]
        if unknown:
            issues.errors.append(
                f"{label} references missing column(s) {', '.join(unknown)} of {referenced_table.name}"
            )
            return

        condition = self._orphan_condition(
            table.name, columns, referenced_table.name, referenced_columns
        )
        key_columns = self._key_columns(table)

        try:
            orphan_count = await self.connector.fetch_value(
                f"SELECT COUNT(*) FROM {StringUtils.quote_identifier(table.name)} WHERE {condition}"
            )
            if not orphan_count:
                return
            preview_rows = await self.connector.fetch_all(
                self._preview_sql(table.name, key_columns, condition),
                (self.config.preview_limit,),
            )
        except QueryError as e:
            issues.errors.append(f"{label} could not be checked: {e.message}")
            self.logger.warning("Foreign key check failed", table=table.name, columns=list(columns), error=str(e))
            return

        issues.orphans.append(OrphanIssue(
            table=table.name,
            columns=columns,
            referenced_table=referenced_table.name,
            referenced_columns=referenced_columns,
            constraint_id=group[0].id,
            orphan_count=orphan_count,
            preview=self._preview_values(preview_rows),
            key_columns=key_columns,
        ))

    async def preview_orphans(self, issue: OrphanIssue) -> List[Any]:
        """Current keys of the rows a cleanup of ``issue`` would delete."""
        rows = await self.connector.fetch_all(
            self._preview_sql(issue.table, issue.key_columns, self._orphan_issue_condition(issue)),
            (self.config.preview_limit,),
        )
        return list(self._preview_values(rows))

    def _delete_sql(self, issue: OrphanIssue) -> str:
        return (
            f"DELETE FROM {StringUtils.quote_identifier(issue.table)} "
            f"WHERE {self._orphan_issue_condition(issue)}"
        )

    async def apply_fixes(
        self,
        issues: ConstraintIssues,
        options: Optional[FixOptions] = None,
    ) -> FixResult:
        """Apply the fixes selected in ``options``.

        Index creation and orphan deletes run in one transaction; enabling
        foreign key enforcement runs after it, outside any transaction.

        Raises:
            ApplicationError: If the transaction fails; nothing is applied
        """
        options = options or FixOptions()
        result = FixResult(dry_run=options.dry_run)

        index_statements: List[str] = []
        if options.create_missing_indexes:
            index_statements = [issue.ddl for issue in issues.missing_indexes]

        delete_statements: List[str] = []
        if options.cleanup_orphaned_records:
            for issue in issues.orphans:
                preview = await self.preview_orphans(issue)
                result.previews[issue.key] = preview
                self.logger.info(
                    "Orphaned rows selected for cleanup",
                    table=issue.table,
                    columns=list(issue.columns),
                    orphan_count=issue.orphan_count,
                    preview=preview,
                    dry_run=options.dry_run,
                )
                delete_statements.append(self._delete_sql(issue))

        enable_foreign_keys = (
            options.enable_foreign_key_enforcement and not issues.foreign_keys_enabled
        )

        result.planned_statements = index_statements + delete_statements
        if enable_foreign_keys:
            result.planned_statements.append("PRAGMA foreign_keys = ON")

        if options.dry_run:
            self.logger.info(
                "Dry run, no changes applied",
                planned_statements=len(result.planned_statements),
            )
            return result

        if index_statements or delete_statements:
            try:
                with self.perf_logger.measure("apply_fixes"):
                    async with self.connector.transaction() as tx:
                        for statement in index_statements:
                            await tx.execute(statement)
                        for statement in delete_statements:
                            deleted = await tx.execute(statement)
                            result.orphans_deleted += max(deleted.row_count, 0)
            except SQLiTuneException as e:
                raise ApplicationError(
                    f"Constraint fixes rolled back: {e.message}",
                    code=ErrorCodes.FIX_APPLICATION_FAILED,
                    operation="apply_fixes",
                    cause=e,
                ) from e

            result.indexes_created = len(index_statements)
            result.executed_statements.extend(index_statements + delete_statements)

        if enable_foreign_keys:
            await self.connector.set_pragma("foreign_keys", "ON")
            result.foreign_keys_enabled = True
            result.executed_statements.append("PRAGMA foreign_keys = ON")

        if result.applied:
            self.discovery.invalidate()

        self.logger.info(
            "Constraint fixes applied",
            indexes_created=result.indexes_created,
            orphans_deleted=result.orphans_deleted,
            foreign_keys_enabled=result.foreign_keys_enabled,
        )
        return result

    async def check_integrity(self) -> IntegrityReport:
        """Run ``PRAGMA integrity_check`` and ``PRAGMA foreign_key_check``."""
        integrity = await self.connector.pragma("integrity_check")
        violations = await self.connector.pragma("foreign_key_check")

        report = IntegrityReport(
            integrity_messages=[str(row[integrity.columns[0]]) for row in integrity.rows],
            foreign_key_violations=violations.rows,
        )
        if not report.ok:
            self.logger.warning(
                "Integrity check reported problems",
                messages=report.integrity_messages[:10],
                foreign_key_violations=len(report.foreign_key_violations),
            )
        return report
