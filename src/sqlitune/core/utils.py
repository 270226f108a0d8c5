"""Utility functions for SQLiTune operations.

This module provides common helpers used throughout SQLiTune including
identifier validation and quoting, hashing, formatting and timing.

Example:
    >>> with measure_time() as timer:
    ...     await manager.migrate()
    >>> print(f"Migration took {timer.duration_ms:.2f}ms")
"""

import hashlib
import re
import time
from contextlib import contextmanager
from typing import Any, Generator, Optional, Union


class ValidationUtils:
    """Utility class for validation operations."""

    IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
    SQL_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

    # Basic SQL keyword set rejected as bare identifiers
    RESERVED_WORDS = frozenset({
        "select", "insert", "update", "delete", "from", "where", "join",
        "inner", "outer", "left", "right", "on", "group", "order", "by",
        "having", "union", "all", "distinct", "as", "and", "or", "not",
        "in", "exists", "null", "true", "false", "table", "index", "view",
        "primary", "foreign", "key", "constraint", "create", "alter",
        "drop", "pragma", "trigger", "values", "set",
    })

    @classmethod
    def validate_identifier(cls, identifier: str, *, allow_empty: bool = False) -> bool:
        """Validate identifier string.

        Args:
            identifier: String to validate as identifier
            allow_empty: Whether to allow empty strings

        Returns:
            True if identifier is valid

        Example:
            >>> ValidationUtils.validate_identifier("my_var_123")
            True
            >>> ValidationUtils.validate_identifier("123_invalid")
            False
        """
        if not identifier:
            return allow_empty

        return bool(cls.IDENTIFIER_PATTERN.match(identifier))

    @classmethod
    def validate_sql_identifier(cls, identifier: str) -> bool:
        """Validate a bare SQL identifier (pattern and reserved words).

        Args:
            identifier: String to validate as SQL identifier

        Returns:
            True if SQL identifier is valid
        """
        if not identifier:
            return False

        if not cls.SQL_IDENTIFIER_PATTERN.match(identifier):
            return False

        return identifier.lower() not in cls.RESERVED_WORDS


class StringUtils:
    """Utility class for string operations."""

    @staticmethod
    def quote_identifier(identifier: str) -> str:
        """Quote an identifier for safe interpolation into SQLite statements.

        Example:
            >>> StringUtils.quote_identifier('odd"name')
            '"odd""name"'
        """
        return '"' + identifier.replace('"', '""') + '"'

    @staticmethod
    def sanitize_sql_identifier(identifier: str) -> str:
        """Sanitize string for use as SQL identifier.

        Example:
            >>> StringUtils.sanitize_sql_identifier("my-table name!")
            'my_table_name'
        """
        if not identifier:
            return ""

        sanitized = re.sub(r"[^a-zA-Z0-9_]", "_", identifier)
        sanitized = re.sub(r"_{2,}", "_", sanitized)
        sanitized = sanitized.strip("_")

        if sanitized and sanitized[0].isdigit():
            sanitized = f"_{sanitized}"

        return sanitized or "identifier"

    @staticmethod
    def compute_hash(text: str, *, algorithm: str = "sha256") -> str:
        """Compute hex digest of a string.

        Example:
            >>> len(StringUtils.compute_hash("hello world"))
            64
        """
        hasher = hashlib.new(algorithm)
        hasher.update(text.encode("utf-8"))
        return hasher.hexdigest()


class FormatUtils:
    """Utility class for formatting operations."""

    @staticmethod
    def format_duration(seconds: Union[int, float], *, precision: str = "auto") -> str:
        """Format duration into human-readable string.

        Args:
            seconds: Duration in seconds
            precision: Precision level ('auto', 'seconds', 'milliseconds', 'microseconds')

        Returns:
            Formatted duration string

        Example:
            >>> FormatUtils.format_duration(3661)
            '1h 1m 1s'
            >>> FormatUtils.format_duration(0.001)
            '1.00ms'
        """
        if seconds == 0:
            return "0s"

        abs_seconds = abs(seconds)
        sign = "-" if seconds < 0 else ""

        if precision == "auto":
            if abs_seconds >= 1:
                precision = "seconds"
            elif abs_seconds >= 0.001:
                precision = "milliseconds"
            else:
                precision = "microseconds"

        if precision == "microseconds":
            return f"{sign}{abs_seconds * 1_000_000:.2f}μs"
        if precision == "milliseconds":
            return f"{sign}{abs_seconds * 1000:.2f}ms"

        hours = int(abs_seconds // 3600)
        minutes = int((abs_seconds % 3600) // 60)
        secs = abs_seconds % 60

        parts = []
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if secs > 0 or not parts:
            if secs == int(secs):
                parts.append(f"{int(secs)}s")
            else:
                parts.append(f"{secs:.2f}s")

        return sign + " ".join(parts)

    @staticmethod
    def format_percentage(value: float, *, decimal_places: int = 1) -> str:
        """Format percentage value.

        Example:
            >>> FormatUtils.format_percentage(85.7)
            '85.7%'
        """
        return f"{value:.{decimal_places}f}%"


class TimerContext:
    """Context manager for measuring execution time."""

    def __init__(self) -> None:
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        """Duration in seconds, measured up to now while still running."""
        if self.start_time is None:
            return None

        end_time = self.end_time or time.perf_counter()
        return end_time - self.start_time

    @property
    def duration_ms(self) -> Optional[float]:
        """Duration in milliseconds."""
        duration = self.duration
        return duration * 1000 if duration is not None else None

    def __enter__(self) -> "TimerContext":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()


@contextmanager
def measure_time() -> Generator[TimerContext, None, None]:
    """Context manager for measuring execution time.

    Example:
        >>> with measure_time() as timer:
        ...     time.sleep(0.1)
        >>> print(f"Duration: {timer.duration:.3f}s")
    """
    timer = TimerContext()
    with timer:
        yield timer
