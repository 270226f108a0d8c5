"""Pytest configuration and shared fixtures.

This module provides pytest configuration and shared fixtures for all tests
in the SQLiTune test suite. Real SQLite files in temporary directories stand
in for the database.
"""

import sqlite3
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import MagicMock

import pytest
import structlog

from sqlitune.config.models import (
    DatabaseConfig,
    DiscoveryConfig,
    MigrationConfig,
    ResourceConfig,
    TunerConfig,
)
from sqlitune.database.connector import SQLiteConnector
from sqlitune.schema.discovery import SchemaDiscovery

# Configure test logging to suppress noise during tests
structlog.configure(
    processors=[structlog.testing.LogCapture()],
    logger_factory=structlog.testing.ReturnLoggerFactory(),
    cache_logger_on_first_use=True,
)

SAMPLE_SCHEMA = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL,
    name TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    body TEXT,
    published_at TEXT
);
"""


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def mock_logger():
    """Mock structured logger for testing."""
    logger = MagicMock()
    logger.bind.return_value = logger
    logger.info = MagicMock()
    logger.error = MagicMock()
    logger.warning = MagicMock()
    logger.debug = MagicMock()
    return logger


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    """Path of a SQLite file holding the sample schema."""
    path = temp_dir / "app.db"
    connection = sqlite3.connect(path)
    try:
        connection.executescript(SAMPLE_SCHEMA)
        connection.commit()
    finally:
        connection.close()
    return path


@pytest.fixture
def database_config(db_path: Path) -> DatabaseConfig:
    return DatabaseConfig(path=db_path)


@pytest.fixture
def migrations_dir(temp_dir: Path) -> Path:
    path = temp_dir / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def migration_config(migrations_dir: Path) -> MigrationConfig:
    """Migration settings with short delays so retry tests stay fast."""
    return MigrationConfig(
        directory=migrations_dir,
        migration_timeout=10.0,
        attempt_timeout=5.0,
        max_retries=3,
        retry_delay=0.01,
    )


@pytest.fixture
async def connector(database_config: DatabaseConfig) -> AsyncGenerator[SQLiteConnector, None]:
    """Open connector over the sample database."""
    connector = SQLiteConnector(database_config)
    await connector.initialize()
    yield connector
    await connector.cleanup()


@pytest.fixture
def discovery(connector: SQLiteConnector) -> SchemaDiscovery:
    return SchemaDiscovery(connector, DiscoveryConfig())


@pytest.fixture
def sample_config_data(db_path: Path, migrations_dir: Path) -> dict:
    """Sample configuration data for testing."""
    return {
        "database": {
            "id": "main",
            "path": str(db_path),
            "foreign_keys": True,
        },
        "migration": {
            "directory": str(migrations_dir),
            "retry_delay": 0.01,
        },
        "resources": {
            "max_concurrent_operations": 3,
            "slot_timeout": 30,
        },
        "indexer": {
            "min_frequency": 3,
            "slow_query_threshold_ms": 1000,
        },
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "console_output": True,
            "structured": True,
        },
    }


@pytest.fixture
def tuner_config(sample_config_data: dict) -> TunerConfig:
    return TunerConfig.from_dict(sample_config_data)


@pytest.fixture
def resource_config() -> ResourceConfig:
    return ResourceConfig(max_concurrent_operations=2, slot_timeout=30.0)


@pytest.fixture
def config_file(temp_dir: Path, sample_config_data: dict) -> Path:
    """Create temporary configuration file."""
    import yaml

    config_path = temp_dir / "sqlitune.yaml"
    with open(config_path, "w") as f:
        yaml.dump(sample_config_data, f)
    return config_path


@pytest.fixture
def write_migration(migrations_dir: Path):
    """Helper writing a migration file into the migrations directory."""
    def _write(filename: str, content: str) -> Path:
        path = migrations_dir / filename
        path.write_text(content, encoding="utf-8")
        return path

    return _write


# Pytest markers for different test categories
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (real SQLite files)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests that take > 1 second"
    )
    config.addinivalue_line(
        "markers", "database: marks tests opening a SQLite database"
    )


# Auto-mark tests based on their location
def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    tests_root = Path(config.rootdir) / "tests"
    for item in items:
        try:
            test_path = Path(item.fspath).relative_to(tests_root)
        except ValueError:
            continue

        if test_path.parts[0] == "unit":
            item.add_marker(pytest.mark.unit)
        elif test_path.parts[0] == "integration":
            item.add_marker(pytest.mark.integration)

        if "database_config" in getattr(item, "fixturenames", ()):
            item.add_marker(pytest.mark.database)


# Clean up between tests
@pytest.fixture(autouse=True)
def cleanup_global_logging():
    """Drop handlers and cached loggers of the global logging factory."""
    yield

    from sqlitune.logging.factory import _global_factory
    _global_factory.shutdown()
