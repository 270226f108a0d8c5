"""Tests for structured logging module."""

import asyncio
import logging
from unittest.mock import patch

import pytest

from sqlitune.core.exceptions import ValidationError
from sqlitune.logging.structured import ContextFilter, LogContext, StructuredLogger


class TestLogContext:
    """Test cases for LogContext class."""

    def test_context_initialization(self):
        """Test LogContext starts empty."""
        assert LogContext().get_all() == {}

    def test_set_and_get_context_value(self):
        """Test setting and getting context values."""
        context = LogContext()

        context.set("table", "users")
        context.set("attempt", 2)

        assert context.get("table") == "users"
        assert context.get("attempt") == 2
        assert context.get("missing") is None
        assert context.get("missing", "default") == "default"

    def test_update_and_replace(self):
        """Test updating and replacing the whole context."""
        context = LogContext()
        context.set("existing", "value")

        context.update({"existing": "updated", "new": 1})
        assert context.get_all() == {"existing": "updated", "new": 1}

        context.replace({"only": True})
        assert context.get_all() == {"only": True}

    def test_clear_context(self):
        """Test clearing all context values."""
        context = LogContext()
        context.set("key", "value")

        context.clear()

        assert context.get_all() == {}

    def test_get_all_returns_copy(self):
        """Mutating the returned dict does not change the context."""
        context = LogContext()
        context.set("key", "value")

        snapshot = context.get_all()
        snapshot["key"] = "changed"

        assert context.get("key") == "value"

    async def test_task_isolation(self):
        """Values set in one asyncio task are invisible to another."""
        context = LogContext()
        results = {}

        async def worker(task_id: int) -> None:
            context.set("task_id", task_id)
            await asyncio.sleep(0.01)
            results[task_id] = context.get("task_id")

        await asyncio.gather(*(worker(i) for i in range(3)))

        assert results == {0: 0, 1: 1, 2: 2}
        assert context.get("task_id") is None

    def test_separate_instances_do_not_share(self):
        """Two LogContext instances keep separate values."""
        first, second = LogContext(), LogContext()
        first.set("key", "first")

        assert second.get("key") is None


class TestContextFilter:
    """Test cases for ContextFilter class."""

    def _record(self) -> logging.LogRecord:
        return logging.LogRecord(
            name="schema.discovery",
            level=logging.INFO,
            pathname="discovery.py",
            lineno=42,
            msg="Snapshot refreshed",
            args=(),
            exc_info=None,
        )

    def test_filter_adds_context_to_record(self):
        """Test that filter copies context values onto the record."""
        context = LogContext()
        context.set("table", "users")
        context.set("correlation_id", "abc")

        record = self._record()
        assert ContextFilter(context).filter(record) is True

        assert record.table == "users"
        assert record.correlation_id == "abc"
        assert record.component == "schema.discovery"
        assert record.timestamp_iso

    def test_filter_defaults_correlation_id(self):
        """Without a correlation id the record gets 'unknown'."""
        record = self._record()
        ContextFilter(LogContext()).filter(record)

        assert record.correlation_id == "unknown"


class TestStructuredLogger:
    """Test cases for StructuredLogger class."""

    def test_logger_initialization(self):
        """Test logger defaults."""
        logger = StructuredLogger("migration.core")

        assert logger.name == "migration.core"
        assert logger.get_level() == "INFO"

    def test_set_level(self):
        """Test changing the level."""
        logger = StructuredLogger("migration.core.level")

        logger.set_level("debug")

        assert logger.get_level() == "DEBUG"

    def test_set_invalid_level(self):
        """Unknown levels raise ValidationError."""
        logger = StructuredLogger("migration.core.invalid")

        with pytest.raises(ValidationError) as exc_info:
            logger.set_level("LOUD")

        assert exc_info.value.code == "UNKNOWN_LOG_LEVEL"

    def test_context_manager_restores_previous_context(self):
        """Context added for a block is removed afterwards."""
        logger = StructuredLogger("schema.constraints")
        logger.clear_context()

        with logger.context(table="orders"):
            assert logger.get_context()["table"] == "orders"

        assert "table" not in logger.get_context()

    def test_context_restored_after_exception(self):
        """Context is restored even when the block raises."""
        logger = StructuredLogger("schema.constraints.errors")
        logger.clear_context()

        with pytest.raises(RuntimeError):
            with logger.context(table="orders"):
                raise RuntimeError("boom")

        assert logger.get_context() == {}

    def test_bind_creates_new_logger(self):
        """Bound loggers carry the extra context; the original does not."""
        logger = StructuredLogger("database.connector")
        logger.clear_context()

        bound = logger.bind(database_id="main")

        assert bound is not logger
        assert bound.get_context()["database_id"] == "main"
        assert "database_id" not in logger.get_context()

    def test_correlation_id_generated_on_demand(self):
        """Logging assigns a correlation id when none is set."""
        logger = StructuredLogger("tuner.correlation")
        logger.clear_context()

        with patch.object(logger, "_logger") as inner:
            logger.info("Ready")

        _, kwargs = inner.info.call_args
        assert kwargs["correlation_id"] == logger.get_correlation_id()
        assert kwargs["component"] == "tuner.correlation"

    def test_explicit_correlation_id(self):
        """Test setting a correlation id."""
        logger = StructuredLogger("tuner.explicit")

        logger.set_correlation_id("migrate-42")

        assert logger.get_correlation_id() == "migrate-42"

    def test_correlation_disabled(self):
        """No correlation id is reported when disabled."""
        logger = StructuredLogger("tuner.nocorr", enable_correlation=False)

        logger.set_correlation_id("ignored")

        assert logger.get_correlation_id() is None

    def test_log_by_level_name(self):
        """log() dispatches to the named level method."""
        logger = StructuredLogger("performance.indexer")

        with patch.object(logger, "_logger") as inner:
            logger.log("warning", "Slow pattern", fingerprint="select ?")

        inner.warning.assert_called_once()
        args, kwargs = inner.warning.call_args
        assert args == ("Slow pattern",)
        assert kwargs["fingerprint"] == "select ?"

    def test_log_unknown_level(self):
        """log() rejects unknown level names."""
        logger = StructuredLogger("performance.indexer.bad")

        with pytest.raises(ValidationError):
            logger.log("verbose", "ignored")

    def test_operation_lifecycle_logging(self):
        """Operation start/success/failure helpers log with durations."""
        logger = StructuredLogger("migration.manager")

        with patch.object(logger, "_logger") as inner:
            context = logger.log_operation_start("migrate", pending=2)
            logger.log_operation_success(context, executed=2)
            logger.log_operation_failure(context, RuntimeError("disk full"))

        assert context["operation"] == "migrate"
        assert inner.info.call_count == 2
        _, kwargs = inner.error.call_args
        assert kwargs["error"] == "disk full"
        assert kwargs["error_type"] == "RuntimeError"
        assert kwargs["duration_ms"] >= 0
