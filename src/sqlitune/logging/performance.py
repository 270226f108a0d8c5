"""Performance logging for SQLiTune operations.

Timing of discovery runs, migration attempts, fix application and
recommendation passes. Each measured operation is aggregated into
:class:`PerformanceMetrics` so slow paths show up in the summary.

Classes:
    TimingMetrics: A single timing measurement
    PerformanceMetrics: Aggregated metrics for one operation name
    TimingContext: Context manager for operation timing
    PerformanceLogger: Main performance logging interface

Example:
    >>> perf_logger = PerformanceLogger("migration.core")
    >>> with perf_logger.measure("execute_migration", migration=name) as timer:
    ...     await core.execute_migration(migration_file)
    >>> timer.duration_ms
    12.7
"""

import statistics
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional, Union

from ..core.utils import FormatUtils
from .structured import StructuredLogger


@dataclass
class TimingMetrics:
    """Metrics for a single timing measurement."""

    operation: str
    start_time: float
    end_time: Optional[float] = None
    duration: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark timing as complete."""
        self.end_time = time.perf_counter()
        self.duration = self.end_time - self.start_time
        self.success = success
        self.error = error

    @property
    def duration_ms(self) -> Optional[float]:
        return self.duration * 1000 if self.duration is not None else None

    @property
    def is_complete(self) -> bool:
        return self.end_time is not None


@dataclass
class PerformanceMetrics:
    """Aggregated performance metrics for an operation.

    Percentiles are only computed once twenty samples are available.
    """

    operation: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_duration: float = 0.0
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    avg_duration: Optional[float] = None
    median_duration: Optional[float] = None
    p95_duration: Optional[float] = None
    errors: List[str] = field(default_factory=list)
    _durations: List[float] = field(default_factory=list, repr=False)

    def add_timing(self, timing: TimingMetrics) -> None:
        """Add a completed timing measurement; incomplete ones are ignored."""
        if not timing.is_complete or timing.duration is None:
            return

        self.total_calls += 1
        if timing.success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1
            if timing.error:
                self.errors.append(timing.error)

        duration = timing.duration
        self.total_duration += duration
        self._durations.append(duration)

        if self.min_duration is None or duration < self.min_duration:
            self.min_duration = duration
        if self.max_duration is None or duration > self.max_duration:
            self.max_duration = duration

        self.avg_duration = statistics.mean(self._durations)
        self.median_duration = statistics.median(self._durations)
        if len(self._durations) >= 20:
            ordered = sorted(self._durations)
            self.p95_duration = ordered[int(len(ordered) * 0.95)]

    @property
    def success_rate(self) -> float:
        """Success rate as a percentage (0-100)."""
        if self.total_calls == 0:
            return 0.0
        return (self.successful_calls / self.total_calls) * 100

    @property
    def error_rate(self) -> float:
        """Error rate as a percentage (0-100)."""
        if self.total_calls == 0:
            return 0.0
        return (self.failed_calls / self.total_calls) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "success_rate": self.success_rate,
            "error_rate": self.error_rate,
            "total_duration": self.total_duration,
            "min_duration": self.min_duration,
            "max_duration": self.max_duration,
            "avg_duration": self.avg_duration,
            "median_duration": self.median_duration,
            "p95_duration": self.p95_duration,
            "error_count": len(self.errors),
        }


class TimingContext:
    """Context manager for measuring operation timing.

    Completed operations are logged at debug level; failures at warning
    level with the error text. The exception itself is never suppressed.

    Example:
        >>> with TimingContext("discover", logger=logger) as timer:
        ...     snapshot = await discovery.discover()
        >>> print(f"Discovery took {timer.duration_ms:.2f}ms")
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        metadata: Optional[Dict[str, Any]] = None,
        auto_log: bool = True,
    ) -> None:
        self.operation = operation
        self.logger = logger
        self.metadata = metadata or {}
        self.auto_log = auto_log
        self._timing: Optional[TimingMetrics] = None

    @property
    def timing(self) -> Optional[TimingMetrics]:
        return self._timing

    @property
    def duration(self) -> Optional[float]:
        return self._timing.duration if self._timing else None

    @property
    def duration_ms(self) -> Optional[float]:
        return self._timing.duration_ms if self._timing else None

    def __enter__(self) -> "TimingContext":
        self._timing = TimingMetrics(
            operation=self.operation,
            start_time=time.perf_counter(),
            metadata=self.metadata,
        )
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._timing is None:
            return

        success = exc_type is None
        error = str(exc_val) if exc_val else None
        self._timing.complete(success=success, error=error)

        if self.logger and self.auto_log:
            if success:
                self.logger.debug(
                    "Operation timed",
                    operation=self.operation,
                    duration_ms=self._timing.duration_ms,
                    **self.metadata,
                )
            else:
                self.logger.warning(
                    "Timed operation failed",
                    operation=self.operation,
                    duration_ms=self._timing.duration_ms,
                    error=error,
                    error_type=exc_type.__name__,
                    **self.metadata,
                )


class PerformanceLogger:
    """Performance logger for timing and aggregating operations.

    Example:
        >>> perf_logger = PerformanceLogger("schema.discovery")
        >>> with perf_logger.measure("discover"):
        ...     snapshot = await discovery.discover(force=True)
        >>> perf_logger.get_metrics("discover").total_calls
        1
    """

    def __init__(
        self,
        name: str,
        *,
        auto_log: bool = True,
        track_metrics: bool = True,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.name = name
        self.auto_log = auto_log
        self.track_metrics = track_metrics
        self.logger = logger or StructuredLogger(f"perf.{name}")
        self._metrics: Dict[str, PerformanceMetrics] = defaultdict(
            lambda: PerformanceMetrics(operation="unknown")
        )

    @contextmanager
    def measure(self, operation: str, **metadata: Any) -> Generator[TimingContext, None, None]:
        """Measure a block of code; works around ``await`` expressions too.

        Example:
            >>> with perf_logger.measure("plan", table="orders") as timer:
            ...     issues = await validator.plan()
        """
        timing_context = TimingContext(
            operation=operation,
            logger=self.logger if self.auto_log else None,
            metadata=metadata,
            auto_log=self.auto_log,
        )

        try:
            with timing_context as ctx:
                yield ctx
        finally:
            if self.track_metrics and timing_context.timing:
                self._add_timing_to_metrics(timing_context.timing)

    def _add_timing_to_metrics(self, timing: TimingMetrics) -> None:
        if timing.operation not in self._metrics:
            self._metrics[timing.operation] = PerformanceMetrics(operation=timing.operation)
        self._metrics[timing.operation].add_timing(timing)

    def record_timing(
        self,
        operation: str,
        duration: float,
        success: bool = True,
        error: Optional[str] = None,
        **metadata: Any,
    ) -> TimingMetrics:
        """Record an externally measured duration in seconds."""
        now = time.perf_counter()
        timing = TimingMetrics(
            operation=operation,
            start_time=now - duration,
            end_time=now,
            duration=duration,
            metadata=metadata,
            success=success,
            error=error,
        )

        if self.auto_log:
            self.logger.log(
                "debug" if success else "warning",
                "Timing recorded",
                operation=operation,
                duration_ms=timing.duration_ms,
                success=success,
                error=error,
                **metadata,
            )

        if self.track_metrics:
            self._add_timing_to_metrics(timing)

        return timing

    def get_metrics(
        self, operation: Optional[str] = None
    ) -> Union[PerformanceMetrics, Dict[str, PerformanceMetrics]]:
        """Get metrics for one operation, or a dict of all of them."""
        if operation:
            return self._metrics.get(operation, PerformanceMetrics(operation=operation))
        return dict(self._metrics)

    def reset_metrics(self, operation: Optional[str] = None) -> None:
        """Reset performance metrics for one operation or all of them."""
        if operation:
            self._metrics.pop(operation, None)
        else:
            self._metrics.clear()

    def get_summary(self) -> Dict[str, Any]:
        """Get performance summary across all operations."""
        total_calls = sum(m.total_calls for m in self._metrics.values())
        total_successful = sum(m.successful_calls for m in self._metrics.values())
        total_duration = sum(m.total_duration for m in self._metrics.values())

        return {
            "total_operations": len(self._metrics),
            "total_calls": total_calls,
            "total_duration": total_duration,
            "overall_success_rate": (total_successful / total_calls * 100) if total_calls else 0.0,
            "operations": {name: metrics.to_dict() for name, metrics in self._metrics.items()},
        }

    def log_performance_summary(self) -> None:
        """Log the current summary at info level."""
        summary = self.get_summary()
        if not summary["total_calls"]:
            return

        slowest = max(self._metrics.values(), key=lambda m: m.total_duration)
        self.logger.info(
            "Performance summary",
            total_operations=summary["total_operations"],
            total_calls=summary["total_calls"],
            total_duration=FormatUtils.format_duration(summary["total_duration"]),
            success_rate=FormatUtils.format_percentage(summary["overall_success_rate"]),
            slowest_operation=slowest.operation,
        )

    def __repr__(self) -> str:
        return (
            f"PerformanceLogger("
            f"name={self.name!r}, "
            f"operations={len(self._metrics)}, "
            f"auto_log={self.auto_log})"
        )
