"""SQLite database connector for SQLiTune.

A single aiosqlite connection opened in autocommit mode. Every statement
and every transaction takes the connector lock, so statements issued by
concurrent tasks never interleave inside another task's transaction.

Classes:
    SQLiteConnector: Connection owner and statement executor
    Transaction: Handle for statements inside ``SQLiteConnector.transaction``

Functions:
    split_sql_statements: Split a script into complete statements

Example:
    >>> connector = SQLiteConnector(DatabaseConfig(path="app.db"))
    >>> await connector.initialize()
    >>> async with connector.transaction() as tx:
    ...     await tx.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")
    ...     await tx.execute("INSERT INTO t (id) VALUES (?)", (1,))
"""

import asyncio
import re
import sqlite3
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import aiosqlite

from ..config.models import DatabaseConfig
from ..core.base import AsyncComponent
from ..core.exceptions import (
    DatabaseConnectionError,
    ErrorCodes,
    ValidationError,
    create_error_from_exception,
)
from ..core.utils import StringUtils, ValidationUtils
from ..logging import get_logger, get_performance_logger
from .models import QueryResult

Params = Optional[Union[Sequence[Any], Mapping[str, Any]]]

_COMMENT_PATTERN = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)

_TRANSACTION_MODES = frozenset({"DEFERRED", "IMMEDIATE", "EXCLUSIVE"})


def _has_sql(statement: str) -> bool:
    return bool(_COMMENT_PATTERN.sub("", statement).strip().strip(";").strip())


def split_sql_statements(script: str) -> List[str]:
    """Split a SQL script into individually executable statements.

    Statement boundaries are found with :func:`sqlite3.complete_statement`,
    so semicolons inside string literals, comments and trigger bodies do not
    split. Comment-only fragments are dropped.

    Example:
        >>> split_sql_statements("CREATE TABLE a (x TEXT); INSERT INTO a VALUES (';');")
        ['CREATE TABLE a (x TEXT);', "INSERT INTO a VALUES (';');"]
    """
    statements: List[str] = []
    buffer: List[str] = []

    for char in script:
        buffer.append(char)
        if char == ";":
            candidate = "".join(buffer)
            if sqlite3.complete_statement(candidate):
                if _has_sql(candidate):
                    statements.append(candidate.strip())
                buffer = []

    tail = "".join(buffer)
    if _has_sql(tail):
        statements.append(tail.strip())

    return statements


class Transaction:
    """Statement executor bound to an open transaction.

    Only valid inside the ``async with connector.transaction()`` block that
    produced it; it runs statements without re-taking the connector lock.
    """

    def __init__(self, connector: "SQLiteConnector") -> None:
        self._connector = connector
        self.statements_executed = 0

    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        result = await self._connector._execute(sql, params)
        self.statements_executed += 1
        return result

    async def execute_many(self, sql: str, param_list: Iterable[Params]) -> int:
        total = 0
        for params in param_list:
            result = await self.execute(sql, params)
            total += result.row_count
        return total


class SQLiteConnector(AsyncComponent[DatabaseConfig]):
    """SQLite connector over a single aiosqlite connection."""

    component_name = "SQLiteConnector"
    version = "1.0.0"
    platform = "sqlite"

    def __init__(self, config: DatabaseConfig) -> None:
        super().__init__(config)
        self.logger = get_logger(f"database.connector.{config.id}")
        self.perf_logger = get_performance_logger("database.connector", auto_log=False)

        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._sqlite_version: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.is_initialized and self._connection is not None

    @property
    def database_path(self) -> str:
        return str(self.config.path)

    @property
    def sqlite_version(self) -> Optional[str]:
        return self._sqlite_version

    async def _async_initialize(self) -> None:
        """Open the connection and apply connection-level PRAGMA settings."""
        target = self.database_path

        if not self.config.is_memory:
            database_path = Path(target)
            if not database_path.exists():
                if not self.config.create_if_missing:
                    raise DatabaseConnectionError(
                        f"SQLite database file not found: {database_path}",
                        code=ErrorCodes.DATABASE_NOT_FOUND,
                        context={"database_path": target},
                        suggestion="Set create_if_missing to create the file",
                    )
                database_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._connection = await aiosqlite.connect(
                target,
                timeout=self.config.timeout,
                isolation_level=None,
            )
            await self._apply_connection_pragmas()

            async with self._connection.execute("SELECT sqlite_version()") as cursor:
                row = await cursor.fetchone()
                self._sqlite_version = row[0] if row else "unknown"
        except sqlite3.Error as e:
            await self._close_connection()
            raise DatabaseConnectionError(
                f"SQLite database error: {e}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context={"database_path": target},
                cause=e,
            ) from e

        self.logger.info(
            "SQLite connector initialized",
            database_path=target,
            sqlite_version=self._sqlite_version,
        )

    async def _apply_connection_pragmas(self) -> None:
        assert self._connection is not None
        settings: Dict[str, Any] = {
            "foreign_keys": "ON" if self.config.foreign_keys else "OFF",
            "synchronous": "NORMAL",
            "cache_size": -2000,
        }
        settings.update(self.config.pragmas)

        for name, value in settings.items():
            await self._connection.execute(f"PRAGMA {name} = {value}")

    async def _close_connection(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def _async_cleanup(self) -> None:
        await self._close_connection()
        self.logger.info("SQLite connection closed", database_path=self.database_path)

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise DatabaseConnectionError(
                "SQLite connector not connected",
                code=ErrorCodes.CONNECTION_NOT_OPEN,
                context={"database_path": self.database_path},
                suggestion="Call initialize() before issuing statements",
            )
        return self._connection

    def _connection_lost(self, error: ValueError, sql: str) -> DatabaseConnectionError:
        return DatabaseConnectionError(
            f"SQLite connection lost: {error}",
            code=ErrorCodes.CONNECTION_LOST,
            context={"database_path": self.database_path, "sql": sql[:500]},
            cause=error,
            suggestion="Clean up the connector and initialize it again",
        )

    async def _execute(self, sql: str, params: Params = None) -> QueryResult:
        """Run one statement without taking the lock."""
        connection = self._require_connection()
        start_time = time.perf_counter()

        try:
            async with connection.execute(sql, params or ()) as cursor:
                if cursor.description:
                    columns = [desc[0] for desc in cursor.description]
                    fetched = await cursor.fetchall()
                    rows = [dict(zip(columns, row)) for row in fetched]
                    row_count = len(rows)
                else:
                    columns, rows = [], []
                    row_count = cursor.rowcount
                last_row_id = cursor.lastrowid
        except sqlite3.Error as e:
            execution_time = time.perf_counter() - start_time
            self.perf_logger.record_timing("execute_query", execution_time, success=False, error=str(e))
            raise create_error_from_exception(
                e,
                message=f"SQLite query failed: {e}",
                code=ErrorCodes.QUERY_EXECUTION_FAILED,
                context={"sql": sql[:500]},
            ) from e
        except ValueError as e:
            # aiosqlite reports a closed worker connection as ValueError
            self.perf_logger.record_timing(
                "execute_query", time.perf_counter() - start_time, success=False, error=str(e)
            )
            raise self._connection_lost(e, sql) from e

        execution_time = time.perf_counter() - start_time
        self.perf_logger.record_timing("execute_query", execution_time)
        return QueryResult(
            rows=rows,
            row_count=row_count,
            columns=columns,
            execution_time=execution_time,
            last_row_id=last_row_id,
        )

    async def execute_query(self, sql: str, params: Params = None) -> QueryResult:
        """Execute one statement.

        Raises:
            DatabaseConnectionError: If the connector is not open
            QueryError: If SQLite rejects the statement
        """
        self._require_connection()
        async with self._lock:
            return await self._execute(sql, params)

    async def execute_many(self, sql: str, param_list: Iterable[Params]) -> int:
        """Execute one statement per parameter set inside a single transaction."""
        async with self.transaction() as tx:
            return await tx.execute_many(sql, param_list)

    async def execute_script(self, script: str) -> int:
        """Execute every statement of a script atomically.

        Returns:
            Number of statements executed
        """
        statements = split_sql_statements(script)
        async with self.transaction() as tx:
            for statement in statements:
                await tx.execute(statement)
        return len(statements)

    async def fetch_all(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        return (await self.execute_query(sql, params)).rows

    async def fetch_one(self, sql: str, params: Params = None) -> Optional[Dict[str, Any]]:
        return (await self.execute_query(sql, params)).first()

    async def fetch_value(self, sql: str, params: Params = None) -> Any:
        return (await self.execute_query(sql, params)).scalar()

    def _pragma_sql(self, name: str, argument: Optional[str] = None) -> str:
        if not ValidationUtils.validate_identifier(name):
            raise ValidationError(
                f"Invalid pragma name: {name}",
                code=ErrorCodes.INVALID_IDENTIFIER,
            )
        if argument is None:
            return f"PRAGMA {name}"
        return f"PRAGMA {name}({StringUtils.quote_identifier(argument)})"

    async def pragma(self, name: str, argument: Optional[str] = None) -> QueryResult:
        """Run a PRAGMA statement, quoting ``argument`` as an identifier.

        Example:
            >>> result = await connector.pragma("table_info", "users")
            >>> [row["name"] for row in result.rows]
            ['id', 'email']
        """
        return await self.execute_query(self._pragma_sql(name, argument))

    async def pragma_value(self, name: str) -> Any:
        """Read a single-valued PRAGMA such as ``page_size``."""
        return (await self.pragma(name)).scalar()

    async def set_pragma(self, name: str, value: Union[int, str]) -> None:
        """Assign a PRAGMA; only integers and bare words are accepted."""
        if isinstance(value, str) and not re.match(r"^-?[A-Za-z0-9_]+$", value):
            raise ValidationError(f"Invalid value for pragma {name}: {value!r}")
        await self.execute_query(f"{self._pragma_sql(name)} = {value}")

    @asynccontextmanager
    async def transaction(self, *, mode: str = "IMMEDIATE") -> AsyncGenerator[Transaction, None]:
        """Run statements atomically.

        The block commits on normal exit and rolls back on any exception,
        including cancellation. A rollback failure is logged and the original
        exception propagates.

        Example:
            >>> async with connector.transaction() as tx:
            ...     await tx.execute("DELETE FROM sessions WHERE expired = 1")
        """
        mode = mode.upper()
        if mode not in _TRANSACTION_MODES:
            raise ValidationError(f"Invalid transaction mode: {mode}")

        self._require_connection()
        async with self._lock:
            await self._execute(f"BEGIN {mode}")
            try:
                yield Transaction(self)
                await self._execute("COMMIT")
            except BaseException:
                await self._rollback()
                raise

    async def _rollback(self) -> None:
        connection = self._connection
        if connection is None:
            return
        try:
            if not connection.in_transaction:
                return
            await connection.execute("ROLLBACK")
        except (sqlite3.Error, ValueError) as e:
            self.logger.warning(
                "Transaction rollback failed",
                database_path=self.database_path,
                error=str(e),
            )

    def get_connection_info(self) -> Dict[str, Any]:
        return {
            "platform": self.platform,
            "database_path": self.database_path,
            "connected": self.is_connected,
            "sqlite_version": self._sqlite_version,
        }
