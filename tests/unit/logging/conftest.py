"""Logging-specific test configuration and fixtures."""

import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

from sqlitune.config.models import LoggingConfig
from sqlitune.logging.factory import LoggerFactory


@pytest.fixture
def temp_log_file():
    """Create temporary log file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".log", delete=False) as temp_file:
        temp_path = Path(temp_file.name)

    yield temp_path

    temp_path.unlink(missing_ok=True)


@pytest.fixture
def sample_logging_config(temp_log_file):
    """Logging configuration writing JSON to a temporary file."""
    return LoggingConfig(
        level="INFO",
        format="json",
        file_path=temp_log_file,
        console_output=False,
        structured=True,
        max_file_size=1048576,  # 1MB
        backup_count=3,
    )


@pytest.fixture
def logger_factory():
    """Create clean logger factory for testing."""
    factory = LoggerFactory()
    yield factory
    factory.shutdown()


@pytest.fixture
def mock_structured_logger():
    """Mock StructuredLogger for performance logger tests."""
    logger = Mock()
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.log = Mock()
    return logger
