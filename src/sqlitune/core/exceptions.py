"""SQLiTune exception hierarchy.

This module defines the exception hierarchy for SQLiTune operations,
providing structured error handling with error codes and enough context
(table, operation, suggested fix, valid alternatives) to act on an error
without further lookups.

Classes:
    SQLiTuneException: Base exception for all SQLiTune operations
    ConfigurationError: Configuration related errors
    ConnectionError: Database connection errors
    AnalysisError: Schema discovery and query errors
    MigrationError: Migration errors
    OptimizationError: Index and constraint fix errors
    TimeoutError: Operations that exceeded their budget
    ResourceError: Concurrency slot errors
    ChecksumDriftWarning: Warning category for tampered migration files

Example:
    >>> try:
    ...     await repository.find_by("emial", "a@example.com")
    ... except ColumnNotFoundError as e:
    ...     logger.error("Lookup failed", error_code=e.code, **e.to_dict())
"""

import asyncio
import sqlite3
from typing import Any, Dict, List, Optional, Sequence


class SQLiTuneException(Exception):
    """Base exception for all SQLiTune operations.

    Carries an error code, free-form context and the actionable fields
    shared by every error in the system: the table and operation involved,
    a suggested fix, and the list of valid alternatives when the error was
    caused by an unknown name.

    Attributes:
        code: Unique error code for categorization
        context: Additional context information about the error
        cause: Original exception that caused this error (if any)
        table: Table the failing operation targeted
        operation: Operation that failed
        suggestion: Suggested fix
        available_options: Valid alternatives for the rejected input

    Example:
        >>> raise SQLiTuneException(
        ...     "Operation failed",
        ...     code="OPERATION_FAILED",
        ...     table="users",
        ...     operation="discover",
        ... )
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        suggestion: Optional[str] = None,
        available_options: Optional[Sequence[str]] = None,
    ) -> None:
        """Initialize SQLiTune exception.

        Args:
            message: Human-readable error description
            code: Unique error code for categorization (defaults to class name)
            context: Additional context information
            cause: Original exception that caused this error
            table: Table involved in the failure
            operation: Operation that failed
            suggestion: Suggested fix for the caller
            available_options: Valid alternatives for the rejected input
        """
        super().__init__(message)
        self.code: str = code or self.__class__.__name__
        self.context: Dict[str, Any] = context or {}
        self.cause: Optional[BaseException] = cause
        self.table: Optional[str] = table
        self.operation: Optional[str] = operation
        self.suggestion: Optional[str] = suggestion
        self.available_options: List[str] = list(available_options or [])

    @property
    def message(self) -> str:
        """Return the bare error message without the code prefix."""
        return super().__str__()

    def __str__(self) -> str:
        """Return formatted error message with code."""
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation of the exception."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"table={self.table!r}, "
            f"operation={self.operation!r}, "
            f"context={self.context!r}, "
            f"cause={self.cause!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "table": self.table,
            "operation": self.operation,
            "suggestion": self.suggestion,
            "available_options": list(self.available_options),
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(SQLiTuneException):
    """Configuration related errors.

    Raised when configuration is invalid, missing, or cannot be processed.
    """
    pass


class ValidationError(ConfigurationError):
    """Data validation errors.

    Raised when input data fails validation rules, including row values
    checked against a table's rule table and malformed identifiers.
    """
    pass


class ConnectionError(SQLiTuneException):
    """Database connection related errors."""
    pass


class DatabaseConnectionError(ConnectionError):
    """Database connection establishment errors.

    Raised when the database file cannot be opened or the connector is
    used before it was initialized.
    """
    pass


class AnalysisError(SQLiTuneException):
    """Schema and query analysis related errors."""
    pass


class DiscoveryError(AnalysisError):
    """Introspection query failure.

    Never propagated out of schema discovery: the failing facet degrades to
    an empty result and the error is recorded in the snapshot warnings.
    """
    pass


class QueryError(AnalysisError):
    """SQL statement execution errors."""
    pass


class TableNotFoundError(AnalysisError):
    """Raised when a table name is not part of the discovered schema."""
    pass


class ColumnNotFoundError(AnalysisError):
    """Raised when a column name is not part of a table's columns."""
    pass


class MigrationError(SQLiTuneException):
    """Migration related errors.

    Base class for migration file, tracking and state machine errors.
    """
    pass


class MigrationExecutionError(MigrationError):
    """Migration DDL or transaction failure.

    Aborts the current migration and halts the remaining batch. Migrations
    committed earlier in the same run stay applied.
    """
    pass


class OptimizationError(SQLiTuneException):
    """Index and constraint optimization errors."""
    pass


class RecommendationError(OptimizationError):
    """Raised when index recommendations cannot be produced."""
    pass


class ApplicationError(OptimizationError):
    """Raised when constraint fixes cannot be applied to the database."""
    pass


class TimeoutError(SQLiTuneException):
    """Operation timeout errors.

    Raised when operations exceed configured timeout limits.
    """
    pass


class MigrationTimeoutError(TimeoutError):
    """A migration attempt or the whole migration exceeded its budget."""
    pass


class SlotTimeoutError(TimeoutError):
    """A resource slot was force-released by its timer."""
    pass


class ResourceError(SQLiTuneException):
    """Concurrency slot related errors."""
    pass


class ResourceExhaustionError(ResourceError):
    """Concurrency ceiling reached.

    Raised immediately at acquisition time; there is no queueing, so the
    caller is expected to retry later.
    """
    pass


class ChecksumDriftWarning(UserWarning):
    """On-disk migration content no longer matches its recorded checksum.

    Emitted with :func:`warnings.warn`, never raised.
    """
    pass


class ErrorCodes:
    """Common error codes for SQLiTune exceptions."""

    # Configuration errors
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_VALIDATION_FAILED = "CONFIG_VALIDATION_FAILED"
    ROW_VALIDATION_FAILED = "ROW_VALIDATION_FAILED"
    INVALID_IDENTIFIER = "INVALID_IDENTIFIER"

    # Connection errors
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    CONNECTION_NOT_OPEN = "CONNECTION_NOT_OPEN"
    CONNECTION_LOST = "CONNECTION_LOST"
    DATABASE_NOT_FOUND = "DATABASE_NOT_FOUND"

    # Analysis errors
    INTROSPECTION_FAILED = "INTROSPECTION_FAILED"
    QUERY_EXECUTION_FAILED = "QUERY_EXECUTION_FAILED"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    COLUMN_NOT_FOUND = "COLUMN_NOT_FOUND"

    # Migration errors
    MIGRATION_FAILED = "MIGRATION_FAILED"
    MIGRATION_INVALID = "MIGRATION_INVALID"
    MIGRATION_TIMEOUT = "MIGRATION_TIMEOUT"
    MIGRATION_STATE_INVALID = "MIGRATION_STATE_INVALID"

    # Optimization errors
    RECOMMENDATION_GENERATION_FAILED = "RECOMMENDATION_GENERATION_FAILED"
    FIX_APPLICATION_FAILED = "FIX_APPLICATION_FAILED"

    # Resource errors
    SLOT_EXHAUSTED = "SLOT_EXHAUSTED"
    SLOT_TIMEOUT = "SLOT_TIMEOUT"
    DUPLICATE_OPERATION = "DUPLICATE_OPERATION"
    OPERATION_TIMEOUT = "OPERATION_TIMEOUT"


def create_error_from_exception(
    exc: BaseException,
    message: Optional[str] = None,
    code: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
    **details: Any,
) -> SQLiTuneException:
    """Create SQLiTune exception from a generic exception.

    Converts sqlite3 and builtin exceptions into the SQLiTune hierarchy
    with the original exception kept as the cause.

    Args:
        exc: Original exception to convert
        message: Override message (uses original if not provided)
        code: Error code to assign
        context: Additional context information
        **details: Actionable fields (table, operation, suggestion,
            available_options)

    Returns:
        Appropriate SQLiTune exception type

    Example:
        >>> try:
        ...     await connection.execute("SELECT * FROM missing")
        ... except sqlite3.OperationalError as e:
        ...     raise create_error_from_exception(
        ...         e,
        ...         code=ErrorCodes.QUERY_EXECUTION_FAILED,
        ...         table="missing",
        ...     )
    """
    error_message = message or str(exc)
    error_context = context or {}

    # Most specific classes first
    exception_mapping = [
        (sqlite3.IntegrityError, QueryError),
        (sqlite3.OperationalError, QueryError),
        (sqlite3.DatabaseError, QueryError),
        (asyncio.TimeoutError, TimeoutError),
        (FileNotFoundError, ConfigurationError),
        (ValueError, ValidationError),
        (TypeError, ValidationError),
    ]

    exception_class = SQLiTuneException
    for source_type, target_type in exception_mapping:
        if isinstance(exc, source_type):
            exception_class = target_type
            break

    return exception_class(
        error_message,
        code=code,
        context=error_context,
        cause=exc,
        **details,
    )
