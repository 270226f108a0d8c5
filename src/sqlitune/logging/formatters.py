"""Log formatters for the stdlib handlers behind SQLiTune loggers.

Classes:
    JSONFormatter: One JSON object per record
    TextFormatter: Human-readable single-line format

Example:
    >>> handler = logging.StreamHandler()
    >>> handler.setFormatter(get_formatter("text"))
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

# Attributes every LogRecord carries; anything else came from context or extra=
_STANDARD_RECORD_FIELDS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message", "exc_info",
    "exc_text", "stack_info", "taskName",
})


def _extra_fields(record: logging.LogRecord, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    excluded = set(exclude)
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_FIELDS and key not in excluded
    }


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured log output.

    Example output:
        {"message":"Migration applied","timestamp":"2024-01-01T10:30:45.123456",
         "level":"INFO","logger":"migration.core","correlation_id":"5f0c..."}
    """

    def __init__(
        self,
        *,
        include_logger_name: bool = True,
        include_location: bool = False,
        exclude_fields: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__()
        self.include_logger_name = include_logger_name
        self.include_location = include_location
        self.exclude_fields = set(exclude_fields or [])

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "message": record.getMessage(),
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
        }

        if self.include_logger_name:
            log_data["logger"] = record.name

        if self.include_location:
            log_data["module"] = record.module
            log_data["function"] = record.funcName
            log_data["line"] = record.lineno

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        log_data.update(_extra_fields(record, self.exclude_fields))

        for field_name in self.exclude_fields:
            log_data.pop(field_name, None)

        return json.dumps(log_data, default=str, separators=(",", ":"))


class TextFormatter(logging.Formatter):
    """Human-readable text formatter.

    Example output:
        2024-01-01 10:30:45.123 [WARNING] schema.discovery: Facet failed (table=users)
    """

    COLOR_CODES = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *, include_extras: bool = True, colors: bool = False) -> None:
        super().__init__()
        self.include_extras = include_extras
        self.colors = colors

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%Y-%m-%d %H:%M:%S.") + f"{dt.microsecond:06d}"[:3]

        level = record.levelname
        if self.colors and level in self.COLOR_CODES:
            level_text = f"{self.COLOR_CODES[level]}[{level}]{self.RESET}"
        else:
            level_text = f"[{level}]"

        line = f"{timestamp} {level_text} {record.name}: {record.getMessage()}"

        if self.include_extras:
            extras = _extra_fields(record, exclude=("timestamp_iso",))
            if extras:
                rendered = ", ".join(f"{key}={value}" for key, value in sorted(extras.items()))
                line = f"{line} ({rendered})"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"

        return line


def get_formatter(format_name: str, **kwargs: Any) -> logging.Formatter:
    """Get a formatter by name ("json" or "text").

    Raises:
        ValueError: If the format name is unknown
    """
    formatters = {
        "json": JSONFormatter,
        "text": TextFormatter,
    }

    formatter_class = formatters.get(format_name.lower())
    if formatter_class is None:
        raise ValueError(
            f"Unknown formatter: {format_name}. Available: {', '.join(sorted(formatters))}"
        )

    return formatter_class(**kwargs)
