"""Logger factory and configuration for SQLiTune.

This module provides centralized logger creation and configuration for the
SQLiTune logging system: structlog is wired into the standard library once,
and every component asks the factory for a named logger.

Classes:
    LoggerFactory: Main logger factory and configuration manager
    LoggerConfig: Configuration for logger instances

Functions:
    get_logger: Convenience function for getting loggers
    get_performance_logger: Convenience function for performance loggers
    configure_logging: Configure logging system globally

Example:
    >>> from sqlitune.logging import get_logger, configure_logging
    >>> configure_logging(level="INFO", format="json")
    >>> logger = get_logger("migration.manager")
    >>> logger.info("Migrations applied", executed=2)
"""

import logging
import logging.handlers
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..config.models import LoggingConfig
from ..core.exceptions import ValidationError
from .formatters import get_formatter
from .performance import PerformanceLogger
from .structured import StructuredLogger


@dataclass
class LoggerConfig:
    """Configuration for logger instances.

    Attributes:
        level: Log level
        format: Log format (json, text)
        console_output: Enable console output
        file_output: Enable file output
        file_path: Log file path
        max_file_size: Maximum file size before rotation
        backup_count: Number of backup files to keep
        structured: Render structlog events as JSON when true
        correlation_ids: Enable correlation ID tracking
    """
    level: str = "INFO"
    format: str = "json"
    console_output: bool = True
    file_output: bool = False
    file_path: Optional[str] = None
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5
    structured: bool = True
    correlation_ids: bool = True


class LoggerFactory:
    """Factory for creating and configuring SQLiTune loggers.

    Loggers are cached by name, so two components asking for
    ``"schema.discovery"`` share one logger.

    Example:
        >>> factory = LoggerFactory()
        >>> factory.configure_from_config(LoggingConfig(level="DEBUG"))
        >>> logger = factory.get_logger("schema.discovery")
        >>> perf_logger = factory.get_performance_logger("schema.discovery")
    """

    def __init__(self, config: Optional[LoggerConfig] = None) -> None:
        self.config = config or LoggerConfig()
        self.initialized = False
        self._loggers: Dict[str, StructuredLogger] = {}
        self._performance_loggers: Dict[str, PerformanceLogger] = {}
        self._handlers: List[logging.Handler] = []

    def configure_from_config(self, logging_config: LoggingConfig) -> None:
        """Configure factory from a LoggingConfig instance."""
        self.config = LoggerConfig(
            level=logging_config.level,
            format=logging_config.format,
            console_output=logging_config.console_output,
            file_output=logging_config.file_path is not None,
            file_path=str(logging_config.file_path) if logging_config.file_path else None,
            max_file_size=logging_config.max_file_size,
            backup_count=logging_config.backup_count,
            structured=logging_config.structured,
        )
        self._configure_logging_system()

    def configure_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """Configure factory from a dictionary; unknown keys are ignored."""
        valid_keys = {f.name for f in fields(LoggerConfig)}
        for key, value in config_dict.items():
            if key in valid_keys:
                setattr(self.config, key, value)
        self._configure_logging_system()

    def _level(self) -> int:
        level = getattr(logging, str(self.config.level).upper(), None)
        if not isinstance(level, int):
            raise ValidationError(f"Invalid log level: {self.config.level}")
        return level

    def _configure_logging_system(self) -> None:
        """(Re)configure stdlib logging and structlog from the current config."""
        self._configure_stdlib_logging()
        self._configure_structlog()

        level = self._level()
        for logger in self._loggers.values():
            logger.set_level(logging.getLevelName(level))

        self.initialized = True

    def _configure_stdlib_logging(self) -> None:
        root_logger = logging.getLogger()
        level = self._level()
        root_logger.setLevel(level)

        self._remove_own_handlers()

        if self.config.console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(level)
            console_handler.setFormatter(get_formatter(self.config.format))
            self._install_handler(console_handler)

        if self.config.file_output and self.config.file_path:
            file_path = Path(self.config.file_path)
            file_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                filename=str(file_path),
                maxBytes=self.config.max_file_size,
                backupCount=self.config.backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(get_formatter(self.config.format))
            self._install_handler(file_handler)

    def _install_handler(self, handler: logging.Handler) -> None:
        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def _remove_own_handlers(self) -> None:
        root_logger = logging.getLogger()
        for handler in self._handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers.clear()

    def _configure_structlog(self) -> None:
        processors: List[Any] = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]

        if self.config.structured and self.config.format.lower() == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer(colors=False))

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            context_class=dict,
            cache_logger_on_first_use=True,
        )

    def get_logger(
        self,
        name: str,
        *,
        level: Optional[str] = None,
        enable_correlation: Optional[bool] = None,
    ) -> StructuredLogger:
        """Get or create a structured logger.

        Args:
            name: Logger name, ``<area>.<component>`` by convention
            level: Override default log level
            enable_correlation: Override correlation ID setting
        """
        if not self.initialized:
            self._configure_logging_system()

        cache_key = f"{name}_{level}_{enable_correlation}"
        if cache_key in self._loggers:
            return self._loggers[cache_key]

        logger = StructuredLogger(
            name=name,
            level=level or self.config.level,
            enable_correlation=(
                enable_correlation if enable_correlation is not None else self.config.correlation_ids
            ),
        )
        self._loggers[cache_key] = logger
        return logger

    def get_performance_logger(
        self,
        name: str,
        *,
        auto_log: Optional[bool] = None,
        track_metrics: bool = True,
    ) -> PerformanceLogger:
        """Get or create a performance logger backed by ``perf.<name>``."""
        if not self.initialized:
            self._configure_logging_system()

        cache_key = f"{name}_{auto_log}_{track_metrics}"
        if cache_key in self._performance_loggers:
            return self._performance_loggers[cache_key]

        perf_logger = PerformanceLogger(
            name=name,
            auto_log=auto_log if auto_log is not None else True,
            track_metrics=track_metrics,
            logger=self.get_logger(f"perf.{name}"),
        )
        self._performance_loggers[cache_key] = perf_logger
        return perf_logger

    def set_level(self, level: str, logger_name: Optional[str] = None) -> None:
        """Set log level for a specific logger or for all loggers.

        Raises:
            ValidationError: If the level name is unknown
        """
        if not isinstance(getattr(logging, level.upper(), None), int):
            raise ValidationError(f"Invalid log level: {level}")

        if logger_name:
            for key, logger in self._loggers.items():
                if logger.name == logger_name:
                    logger.set_level(level)
            logging.getLogger(logger_name).setLevel(getattr(logging, level.upper()))
            return

        self.config.level = level.upper()
        for logger in self._loggers.values():
            logger.set_level(level)
        logging.getLogger().setLevel(getattr(logging, level.upper()))
        for handler in self._handlers:
            handler.setLevel(getattr(logging, level.upper()))

    def get_logger_info(self) -> Dict[str, Any]:
        """Get information about configured loggers and handlers."""
        return {
            "config": {
                "level": self.config.level,
                "format": self.config.format,
                "console_output": self.config.console_output,
                "file_output": self.config.file_output,
                "file_path": self.config.file_path,
                "structured": self.config.structured,
            },
            "initialized": self.initialized,
            "loggers": {
                "structured": sorted({logger.name for logger in self._loggers.values()}),
                "performance": sorted({p.name for p in self._performance_loggers.values()}),
            },
            "handlers": [
                {
                    "type": type(handler).__name__,
                    "level": handler.level,
                    "formatter": type(handler.formatter).__name__ if handler.formatter else None,
                }
                for handler in self._handlers
            ],
        }

    def shutdown(self) -> None:
        """Close the handlers this factory installed and drop cached loggers."""
        self._remove_own_handlers()
        self._loggers.clear()
        self._performance_loggers.clear()
        self.initialized = False

    def __repr__(self) -> str:
        return (
            f"LoggerFactory("
            f"level={self.config.level!r}, "
            f"format={self.config.format!r}, "
            f"initialized={self.initialized})"
        )


# Process-wide factory used by the module-level helpers
_global_factory = LoggerFactory()


def configure_logging(
    *,
    level: str = "INFO",
    format: str = "json",
    console_output: bool = True,
    file_output: bool = False,
    file_path: Optional[str] = None,
    structured: bool = True,
    **kwargs: Any,
) -> None:
    """Configure SQLiTune logging globally.

    Example:
        >>> configure_logging(level="DEBUG", format="text")
    """
    _global_factory.configure_from_dict({
        "level": level,
        "format": format,
        "console_output": console_output,
        "file_output": file_output,
        "file_path": file_path,
        "structured": structured,
        **kwargs,
    })


def configure_from_config(logging_config: LoggingConfig) -> None:
    """Configure SQLiTune logging globally from a LoggingConfig."""
    _global_factory.configure_from_config(logging_config)


def get_logger(
    name: str,
    *,
    level: Optional[str] = None,
    enable_correlation: Optional[bool] = None,
) -> StructuredLogger:
    """Get or create a structured logger using the global factory.

    Example:
        >>> logger = get_logger("schema.constraints")
        >>> logger.info("Fixes applied", indexes_created=2)
    """
    return _global_factory.get_logger(
        name=name,
        level=level,
        enable_correlation=enable_correlation,
    )


def get_performance_logger(
    name: str,
    *,
    auto_log: Optional[bool] = None,
    track_metrics: bool = True,
) -> PerformanceLogger:
    """Get or create a performance logger using the global factory.

    Example:
        >>> perf_logger = get_performance_logger("migration.core")
        >>> with perf_logger.measure("execute_migration"):
        ...     await core.execute_migration(migration_file)
    """
    return _global_factory.get_performance_logger(
        name=name,
        auto_log=auto_log,
        track_metrics=track_metrics,
    )


def get_factory() -> LoggerFactory:
    """Get the global logger factory instance."""
    return _global_factory


def shutdown_logging() -> None:
    """Shut down the global logging factory."""
    _global_factory.shutdown()
