"""SQLiTune - Schema discovery, migrations and index tuning for SQLite.

SQLiTune discovers the live schema of a single-file SQLite database, applies
and tracks ordered schema migrations under bounded concurrency, and observes
real query traffic to recommend indexes and constraint fixes.

Modules:
    core: Exceptions, base classes, caching and utilities
    config: Configuration models
    logging: Structured logging framework
    database: SQLite connector and schema records
    schema: Discovery, constraint validation and column-validated queries
    migration: Migration tracking, execution and concurrency control
    performance: Query recording, index recommendations and PRAGMA advice

Example:
    >>> from sqlitune import SQLiteTuner, TunerConfig
    >>>
    >>> config = TunerConfig.from_file("sqlitune.yaml")
    >>> async with SQLiteTuner(config) as tuner:
    ...     result = await tuner.migrate()
    ...     tuner.record_query("SELECT * FROM users WHERE email = ?", 1200.0)
    ...     recommendations = await tuner.get_index_recommendations()
"""

from . import config, core, logging
from .config import TunerConfig
from .tuner import SQLiteTuner

__version__ = "0.1.0"
__title__ = "SQLiTune"
__description__ = "Schema discovery, migrations and index tuning for SQLite"
__author__ = "SQLiTune Team"
__license__ = "MIT"

__all__ = [
    "core",
    "config",
    "logging",
    "SQLiteTuner",
    "TunerConfig",
    "__version__",
    "__title__",
    "__description__",
    "__author__",
    "__license__",
]
