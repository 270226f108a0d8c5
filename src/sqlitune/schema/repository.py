"""Column-validated queries against a discovered table.

Instead of generating one ``find_by_<column>`` method per column, a
:class:`Repository` exposes a single ``find_by(column, value)`` that checks
the column against the discovered schema first. Row values are checked by a
:class:`RowValidator` built from a declarative rule table.

Example:
    >>> users = Repository(connector, snapshot.require_table("users"))
    >>> await users.find_by("email", "ada@example.com")
    [{'id': 1, 'email': 'ada@example.com'}]
    >>> await users.find_by("emial", "ada@example.com")
    Traceback (most recent call last):
    ColumnNotFoundError: COLUMN_NOT_FOUND: Column 'emial' does not exist on table 'users'
"""

import difflib
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..core.exceptions import ColumnNotFoundError, ErrorCodes, ValidationError
from ..core.utils import StringUtils
from ..database.connector import SQLiteConnector
from ..database.models import ColumnMetadata, TableSchema
from ..logging import get_logger

# A rule returns an error message, or None when the value is acceptable
Rule = Callable[[ColumnMetadata, Any], Optional[str]]

_AFFINITY_TYPES: Dict[str, tuple] = {
    "INTEGER": (int,),
    "REAL": (int, float),
    "NUMERIC": (int, float, Decimal, str),
    "TEXT": (str,),
}


def affinity_rule(column: ColumnMetadata, value: Any) -> Optional[str]:
    """Value must suit the column's declared type affinity."""
    if value is None:
        return None
    accepted = _AFFINITY_TYPES.get(column.type_affinity)
    if accepted is None or isinstance(value, accepted):
        return None
    return f"expected {column.type_affinity} value, got {type(value).__name__}"


def not_null_rule(column: ColumnMetadata, value: Any) -> Optional[str]:
    """NOT NULL columns reject an explicit None."""
    if value is None and not column.nullable and column.auto_increment_kind is None:
        return "may not be NULL"
    return None


def _closest(name: str, options: Sequence[str]) -> Optional[str]:
    lowered = {option.lower(): option for option in options}
    matches = difflib.get_close_matches(name.lower(), list(lowered), n=1, cutoff=0.6)
    return lowered[matches[0]] if matches else None


def column_not_found(table: TableSchema, column: str, operation: str) -> ColumnNotFoundError:
    """Build the error for an unknown column, with a close-match suggestion."""
    available = list(table.column_names)
    closest = _closest(column, available)
    return ColumnNotFoundError(
        f"Column '{column}' does not exist on table '{table.name}'",
        code=ErrorCodes.COLUMN_NOT_FOUND,
        table=table.name,
        operation=operation,
        available_options=available,
        suggestion=f"Did you mean '{closest}'?" if closest else None,
    )


class RowValidator:
    """Validates row dictionaries against a table's rule table.

    The rule table maps each column name to the rules applied to its value.
    It is built once from the table schema; extra rules are appended per
    column.

    Args:
        table: Discovered table schema
        extra_rules: Additional rules keyed by column name
    """

    DEFAULT_RULES: Sequence[Rule] = (not_null_rule, affinity_rule)

    def __init__(
        self,
        table: TableSchema,
        extra_rules: Optional[Mapping[str, Sequence[Rule]]] = None,
    ) -> None:
        self.table = table
        self.rules: Dict[str, List[Rule]] = {
            column.name: list(self.DEFAULT_RULES) for column in table.columns
        }

        for name, rules in (extra_rules or {}).items():
            column = table.get_column(name)
            if column is None:
                raise column_not_found(table, name, "register_rule")
            self.rules[column.name].extend(rules)

    @property
    def required_columns(self) -> List[str]:
        """NOT NULL columns without a default that are not rowid aliases."""
        return [
            column.name
            for column in self.table.columns
            if not column.nullable and not column.has_default and column.auto_increment_kind is None
        ]

    def validate(self, row: Mapping[str, Any], *, partial: bool = False) -> Dict[str, Any]:
        """Validate a row and return it keyed by the canonical column names.

        Args:
            row: Column values
            partial: Skip the required-column check (updates)

        Raises:
            ColumnNotFoundError: For a column the table does not have
            ValidationError: Listing every rule violation
        """
        canonical: Dict[str, Any] = {}
        for name, value in row.items():
            column = self.table.get_column(name)
            if column is None:
                raise column_not_found(self.table, name, "validate")
            canonical[column.name] = value

        errors: List[str] = []
        if not partial:
            for name in self.required_columns:
                if name not in canonical:
                    errors.append(f"{name}: is required")

        for name, value in canonical.items():
            column = self.table.get_column(name)
            for rule in self.rules[name]:
                message = rule(column, value)
                if message:
                    errors.append(f"{name}: {message}")

        if errors:
            raise ValidationError(
                f"Row rejected for table '{self.table.name}': {'; '.join(errors)}",
                code=ErrorCodes.ROW_VALIDATION_FAILED,
                table=self.table.name,
                operation="validate",
                context={"errors": errors},
            )

        return canonical


class Repository:
    """Generic finder and inserter for one table."""

    def __init__(
        self,
        connector: SQLiteConnector,
        table: TableSchema,
        *,
        validator: Optional[RowValidator] = None,
    ) -> None:
        self.connector = connector
        self.table = table
        self.validator = validator or RowValidator(table)
        self.logger = get_logger("schema.repository")
        self._quoted_table = StringUtils.quote_identifier(table.name)

    def _resolve_column(self, column: str, operation: str) -> ColumnMetadata:
        metadata = self.table.get_column(column)
        if metadata is None:
            error = column_not_found(self.table, column, operation)
            self.logger.debug("Unknown column rejected", table=self.table.name, column=column)
            raise error
        return metadata

    def _where(self, column: str, value: Any, operation: str) -> tuple:
        metadata = self._resolve_column(column, operation)
        quoted = StringUtils.quote_identifier(metadata.name)
        if value is None:
            return f"{quoted} IS NULL", ()
        return f"{quoted} = ?", (value,)

    async def find_by(
        self,
        column: str,
        value: Any,
        *,
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        """Rows whose ``column`` equals ``value`` (``IS NULL`` for None).

        Raises:
            ColumnNotFoundError: If ``column`` or ``order_by`` is unknown
        """
        where, params = self._where(column, value, "find_by")
        sql = f"SELECT * FROM {self._quoted_table} WHERE {where}"

        if order_by is not None:
            order_column = self._resolve_column(order_by, "find_by")
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {StringUtils.quote_identifier(order_column.name)} {direction}"

        if limit is not None:
            if limit < 1:
                raise ValidationError(f"limit must be positive, got {limit}")
            sql += " LIMIT ?"
            params = params + (limit,)

        return await self.connector.fetch_all(sql, params)

    async def find_one_by(self, column: str, value: Any) -> Optional[Dict[str, Any]]:
        rows = await self.find_by(column, value, limit=1)
        return rows[0] if rows else None

    async def count_by(self, column: str, value: Any) -> int:
        where, params = self._where(column, value, "count_by")
        return await self.connector.fetch_value(
            f"SELECT COUNT(*) FROM {self._quoted_table} WHERE {where}", params
        )

    async def insert(self, row: Mapping[str, Any]) -> Optional[int]:
        """Validate and insert a row.

        Returns:
            rowid of the inserted row

        Raises:
            ColumnNotFoundError: For unknown columns
            ValidationError: If a rule rejects a value
        """
        values = self.validator.validate(row)
        if not values:
            result = await self.connector.execute_query(
                f"INSERT INTO {self._quoted_table} DEFAULT VALUES"
            )
            return result.last_row_id

        columns = ", ".join(StringUtils.quote_identifier(name) for name in values)
        placeholders = ", ".join("?" for _ in values)
        result = await self.connector.execute_query(
            f"INSERT INTO {self._quoted_table} ({columns}) VALUES ({placeholders})",
            tuple(values.values()),
        )
        return result.last_row_id
