"""Structured logging implementation for SQLiTune.

This module provides structured logging with context management and
correlation IDs. Context is stored in :mod:`contextvars`, so values bound in
one asyncio task never leak into a concurrently running task.

Classes:
    StructuredLogger: Main structured logging interface
    LogContext: Task-local context for log correlation
    ContextFilter: Filter for adding context to stdlib log records

Example:
    >>> logger = StructuredLogger("migration.core")
    >>> with logger.context(migration="20240101000000_init", attempt=1):
    ...     logger.info("Applying migration", statements=4)
    ...     logger.warning("Attempt failed, retrying", delay=1.0)
"""

import contextvars
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, Optional

import structlog

from ..core.exceptions import ValidationError


class LogContext:
    """Task-local context for log correlation and metadata.

    Each instance owns its own context variable, so two loggers never share
    values, while two asyncio tasks using the same logger each see their own
    copy.

    Example:
        >>> context = LogContext()
        >>> context.set("operation_id", "migrate-1")
        >>> context.get_all()
        {'operation_id': 'migrate-1'}
    """

    def __init__(self) -> None:
        self._var: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
            f"sqlitune_log_context_{id(self)}"
        )

    def _current(self) -> Dict[str, Any]:
        return self._var.get({})

    def set(self, key: str, value: Any) -> None:
        """Set context value."""
        updated = dict(self._current())
        updated[key] = value
        self._var.set(updated)

    def get(self, key: str, default: Any = None) -> Any:
        """Get context value."""
        return self._current().get(key, default)

    def get_all(self) -> Dict[str, Any]:
        """Get a copy of all context values."""
        return dict(self._current())

    def clear(self) -> None:
        """Clear all context values."""
        self._var.set({})

    def update(self, context: Dict[str, Any]) -> None:
        """Update context with multiple values."""
        updated = dict(self._current())
        updated.update(context)
        self._var.set(updated)

    def replace(self, context: Dict[str, Any]) -> None:
        """Replace the whole context."""
        self._var.set(dict(context))


class ContextFilter(logging.Filter):
    """Logging filter that copies context values onto stdlib log records."""

    def __init__(self, context: LogContext) -> None:
        super().__init__()
        self._context = context

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context information to log record; always lets it through."""
        for key, value in self._context.get_all().items():
            if not hasattr(record, key):
                setattr(record, key, value)

        if not hasattr(record, "correlation_id"):
            record.correlation_id = self._context.get("correlation_id", "unknown")

        if not hasattr(record, "component"):
            record.component = record.name

        if not hasattr(record, "timestamp_iso"):
            record.timestamp_iso = datetime.fromtimestamp(record.created).isoformat()

        return True


class StructuredLogger:
    """Structured logger with context management and correlation.

    Attributes:
        name: Logger name, ``<area>.<component>`` by convention

    Example:
        >>> logger = StructuredLogger("schema.discovery")
        >>> logger.set_level("DEBUG")
        >>> logger.debug("Snapshot cache hit", tables=12)
    """

    def __init__(
        self,
        name: str,
        *,
        level: str = "INFO",
        enable_correlation: bool = True,
        auto_correlation: bool = True,
    ) -> None:
        """Initialize structured logger.

        Args:
            name: Logger name
            level: Initial log level
            enable_correlation: Whether to attach correlation IDs
            auto_correlation: Whether to generate a correlation ID on demand
        """
        self.name = name
        self._enable_correlation = enable_correlation
        self._auto_correlation = auto_correlation

        self._logger = structlog.get_logger(name)
        self._context = LogContext()

        self._stdlib_logger = logging.getLogger(name)
        self._stdlib_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._stdlib_logger.addFilter(ContextFilter(self._context))

    def _ensure_correlation_id(self) -> str:
        correlation_id = self._context.get("correlation_id")
        if not correlation_id:
            correlation_id = uuid.uuid4().hex
            self._context.set("correlation_id", correlation_id)
        return correlation_id

    def _prepare_event_dict(self, **kwargs: Any) -> Dict[str, Any]:
        event_dict: Dict[str, Any] = {"component": self.name}
        event_dict.update(self._context.get_all())

        if self._enable_correlation:
            if self._auto_correlation:
                event_dict["correlation_id"] = self._ensure_correlation_id()
            elif self._context.get("correlation_id"):
                event_dict["correlation_id"] = self._context.get("correlation_id")

        event_dict.update(kwargs)
        return event_dict

    @contextmanager
    def context(self, **context_data: Any) -> Generator[None, None, None]:
        """Add context data for the duration of a block.

        Example:
            >>> with logger.context(table="users"):
            ...     logger.warning("Facet failed", facet="indexes")
        """
        previous = self._context.get_all()
        self._context.update(context_data)
        try:
            yield
        finally:
            self._context.replace(previous)

    def bind(self, **context_data: Any) -> "StructuredLogger":
        """Create new logger instance with bound context.

        Example:
            >>> db_logger = logger.bind(database_id="main")
            >>> db_logger.info("Connected")
        """
        bound_logger = StructuredLogger(
            self.name,
            level=self.get_level(),
            enable_correlation=self._enable_correlation,
            auto_correlation=False,
        )
        current_context = self._context.get_all()
        current_context.update(context_data)
        bound_logger._context.update(current_context)
        return bound_logger

    def set_level(self, level: str) -> None:
        """Set logging level.

        Raises:
            ValidationError: If the level name is unknown
        """
        log_level = getattr(logging, level.upper(), None) if level else None
        if not isinstance(log_level, int):
            raise ValidationError(f"Unknown log level: {level}", code="UNKNOWN_LOG_LEVEL")

        self._stdlib_logger.setLevel(log_level)

    def get_level(self) -> str:
        """Get current effective logging level name."""
        return logging.getLevelName(self._stdlib_logger.getEffectiveLevel())

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        self._logger.debug(message, **self._prepare_event_dict(**kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        self._logger.info(message, **self._prepare_event_dict(**kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        self._logger.warning(message, **self._prepare_event_dict(**kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        self._logger.error(message, **self._prepare_event_dict(**kwargs))

    def critical(self, message: str, **kwargs: Any) -> None:
        """Log critical message."""
        self._logger.critical(message, **self._prepare_event_dict(**kwargs))

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log error message with the active exception's traceback."""
        self._logger.error(message, exc_info=True, **self._prepare_event_dict(**kwargs))

    def log(self, level: str, message: str, **kwargs: Any) -> None:
        """Log at a level given by name.

        Raises:
            ValidationError: If the level name is unknown
        """
        name = (level or "").lower()
        if name not in {"debug", "info", "warning", "error", "critical"}:
            raise ValidationError(f"Unknown log level: {level}", code="UNKNOWN_LOG_LEVEL")
        getattr(self, name)(message, **kwargs)

    def log_operation_start(self, operation: str, **context: Any) -> Dict[str, Any]:
        """Log operation start and return the context for completion logging."""
        operation_context = {
            "operation_id": uuid.uuid4().hex,
            "operation": operation,
            "start_time": time.perf_counter(),
            **context,
        }
        self.info("Operation started", **operation_context)
        return operation_context

    def log_operation_success(self, operation_context: Dict[str, Any], **results: Any) -> None:
        """Log successful operation completion."""
        duration_ms = (time.perf_counter() - operation_context["start_time"]) * 1000
        self.info(
            "Operation completed successfully",
            duration_ms=duration_ms,
            **operation_context,
            **results,
        )

    def log_operation_failure(
        self,
        operation_context: Dict[str, Any],
        error: BaseException,
        **error_context: Any,
    ) -> None:
        """Log operation failure."""
        duration_ms = (time.perf_counter() - operation_context["start_time"]) * 1000
        self.error(
            "Operation failed",
            duration_ms=duration_ms,
            error=str(error),
            error_type=type(error).__name__,
            **operation_context,
            **error_context,
        )

    def set_correlation_id(self, correlation_id: str) -> None:
        """Set correlation ID for the current context."""
        if self._enable_correlation:
            self._context.set("correlation_id", correlation_id)

    def get_correlation_id(self) -> Optional[str]:
        """Get current correlation ID."""
        if not self._enable_correlation:
            return None
        return self._context.get("correlation_id")

    def clear_context(self) -> None:
        """Clear all context data."""
        self._context.clear()

    def get_context(self) -> Dict[str, Any]:
        """Get current context data."""
        return self._context.get_all()

    def __repr__(self) -> str:
        return (
            f"StructuredLogger("
            f"name={self.name!r}, "
            f"level={self.get_level()!r}, "
            f"correlation={self._enable_correlation})"
        )
