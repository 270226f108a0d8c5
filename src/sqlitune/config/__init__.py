"""SQLiTune configuration management.

This package provides type-safe configuration models with validation and
environment variable support.

Classes:
    BaseConfig: Base configuration class
    TunerConfig: Top-level configuration
    DatabaseConfig: Database file configuration
    MigrationConfig: Migration execution configuration
    LoggingConfig: Logging configuration

Example:
    >>> from sqlitune.config import TunerConfig
    >>> config = TunerConfig.from_file("sqlitune.yaml")
    >>> config.migration.max_retries
    3
"""

from .models import (
    BaseConfig,
    ConstraintConfig,
    DatabaseConfig,
    DiscoveryConfig,
    IndexerConfig,
    LoggingConfig,
    MigrationConfig,
    ResourceConfig,
    TunerConfig,
)

__all__ = [
    "BaseConfig",
    "ConstraintConfig",
    "DatabaseConfig",
    "DiscoveryConfig",
    "IndexerConfig",
    "LoggingConfig",
    "MigrationConfig",
    "ResourceConfig",
    "TunerConfig",
]
