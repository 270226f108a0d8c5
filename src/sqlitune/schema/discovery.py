"""Schema discovery for SQLite databases.

Builds an immutable :class:`SchemaSnapshot` from the live database using
PRAGMA statements, with no hand-written mapping. Each per-table facet
(columns, foreign keys, indexes, row count) degrades independently: a failed
introspection query is logged, recorded in the snapshot warnings and yields
an empty facet, so one odd table never hides the rest of the schema.

Example:
    >>> discovery = SchemaDiscovery(connector, DiscoveryConfig(cache_ttl=10))
    >>> snapshot = await discovery.get_schema()
    >>> users = snapshot.require_table("users")
    >>> [(c.name, c.nullable) for c in users.columns]
    [('id', True), ('email', False)]
"""

import asyncio
import re
from typing import Any, Dict, List, Optional, Tuple

from ..config.models import DiscoveryConfig
from ..core.cache import TTLCache
from ..core.exceptions import (
    DatabaseConnectionError,
    DiscoveryError,
    ErrorCodes,
    QueryError,
    TableNotFoundError,
)
from ..core.utils import StringUtils
from ..database.connector import SQLiteConnector
from ..database.models import (
    ColumnMetadata,
    ForeignKeyMetadata,
    IndexMetadata,
    SchemaSnapshot,
    TableSchema,
)
from ..logging import get_logger, get_performance_logger

_SNAPSHOT_KEY = "snapshot"

_AUTOINCREMENT_PATTERN = re.compile(r"\bAUTOINCREMENT\b", re.IGNORECASE)
_WITHOUT_ROWID_PATTERN = re.compile(r"\)[^)]*\bWITHOUT\s+ROWID\b[^)]*$", re.IGNORECASE)
_CHECK_PATTERN = re.compile(r"\bCHECK\s*\(", re.IGNORECASE)
_LITERAL_OR_COMMENT_PATTERN = re.compile(
    r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|`[^`]*`|\[[^\]]*\]|--[^\n]*|/\*.*?(?:\*/|$)",
    re.DOTALL,
)

# Errors a single introspection query can raise
_INTROSPECTION_ERRORS = (DatabaseConnectionError, QueryError)


def _strip_literals(sql: str) -> str:
    """Blank out strings, quoted identifiers and comments so keyword searches see only code."""
    return _LITERAL_OR_COMMENT_PATTERN.sub(" ", sql)


def extract_check_constraints(sql: Optional[str]) -> Tuple[str, ...]:
    """Return the expressions of every CHECK constraint in a CREATE statement."""
    if not sql:
        return ()

    expressions: List[str] = []
    for match in _CHECK_PATTERN.finditer(sql):
        depth = 1
        start = match.end()
        position = start
        quote: Optional[str] = None
        while position < len(sql) and depth:
            char = sql[position]
            if quote:
                if char == quote:
                    quote = None
            elif char in ("'", '"'):
                quote = char
            elif char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
            position += 1
        if depth == 0:
            expressions.append(sql[start:position - 1].strip())

    return tuple(expressions)


class SchemaDiscovery:
    """Discovers and caches the live schema.

    Args:
        connector: Open SQLite connector
        config: Discovery configuration
        tracking_table: Migration tracking table, never reported as user schema
    """

    def __init__(
        self,
        connector: SQLiteConnector,
        config: Optional[DiscoveryConfig] = None,
        *,
        tracking_table: str = "migrations",
    ) -> None:
        self.connector = connector
        self.config = config or DiscoveryConfig()
        self.tracking_table = tracking_table
        self.logger = get_logger("schema.discovery")
        self.perf_logger = get_performance_logger("schema.discovery")

        self._cache: TTLCache[SchemaSnapshot] = TTLCache(ttl=self.config.cache_ttl, max_size=1)
        self._lock = asyncio.Lock()

    @property
    def excluded_tables(self) -> set:
        return {name.lower() for name in [self.tracking_table, *self.config.exclude_tables]}

    async def get_schema(self) -> SchemaSnapshot:
        """Return the cached snapshot when fresh, discovering otherwise."""
        return await self.discover()

    async def discover(self, *, force: bool = False) -> SchemaSnapshot:
        """Discover the schema.

        Never raises for introspection problems: a connection-level failure
        returns an empty snapshot whose warnings explain why.

        Args:
            force: Ignore the cached snapshot
        """
        if not force:
            cached = self._cache.get(_SNAPSHOT_KEY)
            if cached is not None:
                self.logger.debug("Schema snapshot cache hit", tables=len(cached))
                return cached

        async with self._lock:
            if not force:
                cached = self._cache.get(_SNAPSHOT_KEY)
                if cached is not None:
                    return cached

            with self.perf_logger.measure("discover"):
                snapshot, complete = await self._discover()

            if complete:
                self._cache.set(_SNAPSHOT_KEY, snapshot)

            self.logger.info(
                "Schema discovered",
                tables=len(snapshot),
                warnings=len(snapshot.warnings),
            )
            return snapshot

    def invalidate(self) -> None:
        """Drop the cached snapshot so the next read re-discovers."""
        self._cache.clear()
        self.logger.debug("Schema snapshot invalidated")

    async def get_table(self, name: str) -> TableSchema:
        """Return one table from the current snapshot.

        Raises:
            TableNotFoundError: If the table is not part of the schema
        """
        return (await self.get_schema()).require_table(name)

    async def table_exists(self, name: str) -> bool:
        try:
            await self.get_table(name)
        except TableNotFoundError:
            return False
        return True

    def _facet_failed(
        self,
        warnings: List[DiscoveryError],
        table: str,
        facet: str,
        error: Exception,
    ) -> None:
        discovery_error = DiscoveryError(
            f"Could not read {facet} of table '{table}': {error}",
            code=ErrorCodes.INTROSPECTION_FAILED,
            table=table,
            operation=facet,
            cause=error,
        )
        warnings.append(discovery_error)
        self.logger.warning(
            "Schema facet unavailable",
            table=table,
            facet=facet,
            error=str(error),
        )

    async def _discover(self) -> Tuple[SchemaSnapshot, bool]:
        warnings: List[DiscoveryError] = []

        types = ("table", "view") if self.config.include_views else ("table",)
        placeholders = ", ".join("?" for _ in types)
        listing_sql = (
            "SELECT name, type, sql FROM sqlite_master "
            f"WHERE type IN ({placeholders}) AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' "
            "ORDER BY name"
        )

        try:
            rows = await self.connector.fetch_all(listing_sql, types)
        except _INTROSPECTION_ERRORS as e:
            error = DiscoveryError(
                f"Could not list tables: {e}",
                code=ErrorCodes.INTROSPECTION_FAILED,
                operation="list_tables",
                cause=e,
            )
            self.logger.warning("Schema discovery unavailable", error=str(e))
            return SchemaSnapshot.empty(warnings=(error,)), False

        excluded = self.excluded_tables
        primary_keys: Dict[str, Tuple[str, ...]] = {}
        tables: List[TableSchema] = []

        for row in rows:
            if row["name"].lower() in excluded:
                continue
            table = await self._discover_table(
                row["name"], row["type"] == "view", row["sql"], warnings, primary_keys
            )
            tables.append(table)

        snapshot = SchemaSnapshot(
            tables=tuple(sorted(tables, key=lambda t: t.name)),
            warnings=tuple(warnings),
        )
        return snapshot, True

    async def _discover_table(
        self,
        name: str,
        is_view: bool,
        sql: Optional[str],
        warnings: List[DiscoveryError],
        primary_keys: Dict[str, Tuple[str, ...]],
    ) -> TableSchema:
        without_rowid = bool(sql and _WITHOUT_ROWID_PATTERN.search(_strip_literals(sql)))

        try:
            columns = await self._read_columns(name, sql, without_rowid)
        except _INTROSPECTION_ERRORS as e:
            self._facet_failed(warnings, name, "columns", e)
            columns = ()

        primary_key = tuple(
            column.name
            for column in sorted(
                (c for c in columns if c.is_primary_key),
                key=lambda c: c.primary_key_position,
            )
        )
        primary_keys[name.lower()] = primary_key

        foreign_keys: Tuple[ForeignKeyMetadata, ...] = ()
        indexes: Tuple[IndexMetadata, ...] = ()
        if not is_view:
            try:
                foreign_keys = await self._read_foreign_keys(name, primary_keys)
            except _INTROSPECTION_ERRORS as e:
                self._facet_failed(warnings, name, "foreign_keys", e)

            try:
                indexes = await self._read_indexes(name)
            except _INTROSPECTION_ERRORS as e:
                self._facet_failed(warnings, name, "indexes", e)

        row_count: Optional[int] = None
        if self.config.count_rows:
            try:
                row_count = await self.connector.fetch_value(
                    f"SELECT COUNT(*) FROM {StringUtils.quote_identifier(name)}"
                )
            except _INTROSPECTION_ERRORS as e:
                self._facet_failed(warnings, name, "row_count", e)

        return TableSchema(
            name=name,
            columns=columns,
            primary_key=primary_key,
            foreign_keys=foreign_keys,
            indexes=indexes,
            without_rowid=without_rowid,
            sql=sql,
            check_constraints=extract_check_constraints(sql),
            row_count=row_count,
            is_view=is_view,
        )

    async def _read_columns(
        self,
        table: str,
        sql: Optional[str],
        without_rowid: bool,
    ) -> Tuple[ColumnMetadata, ...]:
        result = await self.connector.pragma("table_info", table)

        pk_rows = [row for row in result.rows if row["pk"]]
        alias: Optional[str] = None
        alias_kind: Optional[str] = None
        if len(pk_rows) == 1 and not without_rowid:
            pk_row = pk_rows[0]
            if sql and _AUTOINCREMENT_PATTERN.search(_strip_literals(sql)):
                alias, alias_kind = pk_row["name"], "autoincrement"
            elif (pk_row["type"] or "").strip().upper() == "INTEGER":
                alias, alias_kind = pk_row["name"], "rowid"

        return tuple(
            ColumnMetadata(
                name=row["name"],
                declared_type=row["type"] or "",
                nullable=not row["notnull"],
                is_primary_key=bool(row["pk"]),
                primary_key_position=row["pk"],
                is_auto_increment=row["name"] == alias,
                auto_increment_kind=alias_kind if row["name"] == alias else None,
                default_value=row["dflt_value"],
                position=row["cid"],
            )
            for row in result.rows
        )

    async def _primary_key_of(
        self,
        table: str,
        primary_keys: Dict[str, Tuple[str, ...]],
    ) -> Tuple[str, ...]:
        key = table.lower()
        if key not in primary_keys:
            result = await self.connector.pragma("table_info", table)
            primary_keys[key] = tuple(
                row["name"] for row in sorted(
                    (r for r in result.rows if r["pk"]), key=lambda r: r["pk"]
                )
            )
        return primary_keys[key]

    async def _read_foreign_keys(
        self,
        table: str,
        primary_keys: Dict[str, Tuple[str, ...]],
    ) -> Tuple[ForeignKeyMetadata, ...]:
        result = await self.connector.pragma("foreign_key_list", table)

        foreign_keys: List[ForeignKeyMetadata] = []
        for row in sorted(result.rows, key=lambda r: (r["id"], r["seq"])):
            referenced_column = row["to"]
            if referenced_column is None:
                # REFERENCES parent without a column list targets the parent's key
                parent_key = await self._primary_key_of(row["table"], primary_keys)
                seq = row["seq"]
                referenced_column = parent_key[seq] if seq < len(parent_key) else "rowid"

            foreign_keys.append(ForeignKeyMetadata(
                id=row["id"],
                seq=row["seq"],
                column=row["from"],
                referenced_table=row["table"],
                referenced_column=referenced_column,
                on_update=row["on_update"] or "NO ACTION",
                on_delete=row["on_delete"] or "NO ACTION",
                match=row["match"] or "NONE",
            ))

        return tuple(foreign_keys)

    async def _read_indexes(self, table: str) -> Tuple[IndexMetadata, ...]:
        result = await self.connector.pragma("index_list", table)

        indexes: List[IndexMetadata] = []
        for row in result.rows:
            info = await self.connector.pragma("index_info", row["name"])
            columns = tuple(
                self._index_column_name(info_row)
                for info_row in sorted(info.rows, key=lambda r: r["seqno"])
            )
            indexes.append(IndexMetadata(
                name=row["name"],
                table=table,
                columns=columns,
                unique=bool(row["unique"]),
                origin=row.get("origin", "c"),
                partial=bool(row.get("partial", 0)),
            ))

        return tuple(sorted(indexes, key=lambda index: index.name))

    @staticmethod
    def _index_column_name(info_row: Dict[str, Any]) -> str:
        if info_row["name"] is not None:
            return info_row["name"]
        return "rowid" if info_row["cid"] == -1 else "<expression>"
