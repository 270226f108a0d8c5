"""SQLiTune core infrastructure.

This package provides the foundational pieces shared by every SQLiTune
component: base classes, the exception hierarchy, a TTL cache and utilities.

Modules:
    base: Base classes for components
    cache: Time-to-live cache
    exceptions: Exception hierarchy
    utils: Utility functions

Example:
    >>> from sqlitune.core import AsyncComponent, TTLCache
    >>> from sqlitune.core.exceptions import ValidationError
    >>> from sqlitune.core.utils import measure_time
"""

from .base import AsyncComponent, BaseComponent
from .cache import TTLCache
from .exceptions import (
    AnalysisError,
    ApplicationError,
    ChecksumDriftWarning,
    ColumnNotFoundError,
    ConfigurationError,
    ConnectionError,
    DatabaseConnectionError,
    DiscoveryError,
    ErrorCodes,
    MigrationError,
    MigrationExecutionError,
    MigrationTimeoutError,
    OptimizationError,
    QueryError,
    RecommendationError,
    ResourceError,
    ResourceExhaustionError,
    SlotTimeoutError,
    SQLiTuneException,
    TableNotFoundError,
    TimeoutError,
    ValidationError,
    create_error_from_exception,
)
from .utils import (
    FormatUtils,
    StringUtils,
    TimerContext,
    ValidationUtils,
    measure_time,
)

__all__ = [
    # Base classes
    "BaseComponent",
    "AsyncComponent",
    "TTLCache",

    # Exceptions
    "SQLiTuneException",
    "ConfigurationError",
    "ValidationError",
    "ConnectionError",
    "DatabaseConnectionError",
    "AnalysisError",
    "DiscoveryError",
    "QueryError",
    "TableNotFoundError",
    "ColumnNotFoundError",
    "MigrationError",
    "MigrationExecutionError",
    "OptimizationError",
    "RecommendationError",
    "ApplicationError",
    "TimeoutError",
    "MigrationTimeoutError",
    "SlotTimeoutError",
    "ResourceError",
    "ResourceExhaustionError",
    "ChecksumDriftWarning",
    "ErrorCodes",
    "create_error_from_exception",

    # Utilities
    "ValidationUtils",
    "StringUtils",
    "FormatUtils",
    "TimerContext",
    "measure_time",
]
