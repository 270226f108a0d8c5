"""SQLiTune structured logging framework.

This package provides structlog-backed structured logging with correlation
IDs and performance timing for every SQLiTune component.

Classes:
    StructuredLogger: Main structured logging interface
    PerformanceLogger: Performance monitoring and timing
    LoggerFactory: Logger creation and configuration

Example:
    >>> from sqlitune.logging import get_logger, get_performance_logger
    >>> logger = get_logger("schema.discovery")
    >>> logger.info("Discovery started", tables=12)
    >>>
    >>> perf_logger = get_performance_logger("schema.discovery")
    >>> with perf_logger.measure("discover"):
    ...     snapshot = await discovery.discover()
"""

from .factory import (
    LoggerConfig,
    LoggerFactory,
    configure_from_config,
    configure_logging,
    get_factory,
    get_logger,
    get_performance_logger,
    shutdown_logging,
)
from .formatters import JSONFormatter, TextFormatter, get_formatter
from .performance import PerformanceLogger, PerformanceMetrics, TimingContext, TimingMetrics
from .structured import ContextFilter, LogContext, StructuredLogger

__all__ = [
    # Factory and configuration
    "LoggerConfig",
    "LoggerFactory",
    "configure_from_config",
    "configure_logging",
    "get_factory",
    "get_logger",
    "get_performance_logger",
    "shutdown_logging",

    # Formatters
    "JSONFormatter",
    "TextFormatter",
    "get_formatter",

    # Performance logging
    "PerformanceLogger",
    "PerformanceMetrics",
    "TimingContext",
    "TimingMetrics",

    # Structured logging
    "ContextFilter",
    "LogContext",
    "StructuredLogger",
]
