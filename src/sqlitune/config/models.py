"""Configuration models for SQLiTune.

This module defines Pydantic models for all configuration objects used
throughout SQLiTune. These models provide validation, type safety,
environment variable substitution and serialization.

Classes:
    BaseConfig: Base configuration class
    DatabaseConfig: SQLite database file configuration
    DiscoveryConfig: Schema discovery configuration
    ConstraintConfig: Constraint validator configuration
    MigrationConfig: Migration execution configuration
    ResourceConfig: Concurrency ceiling configuration
    IndexerConfig: Query recording and index recommendation configuration
    LoggingConfig: Logging configuration
    TunerConfig: Top-level configuration

Example:
    >>> config = TunerConfig(
    ...     database=DatabaseConfig(path="app.db"),
    ...     migration=MigrationConfig(directory="migrations", max_retries=5),
    ... )
    >>> config.resources.max_concurrent_operations
    3
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    conint,
    constr,
    field_validator,
    model_validator,
)

from ..core.exceptions import ConfigurationError, ErrorCodes, ValidationError
from ..core.utils import ValidationUtils

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


class BaseConfig(BaseModel):
    """Base configuration class with common functionality.

    This class provides the foundation for all configuration objects
    including validation, environment variable resolution, and serialization.

    Example:
        >>> class MyConfig(BaseConfig):
        ...     name: str
        ...     value: int = 42
    """

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
        use_enum_values=True,
        validate_default=True,
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def resolve_environment_variables(cls, values: Any) -> Any:
        """Resolve environment variables in configuration values.

        Supports ${VAR_NAME} and ${VAR_NAME:default_value} syntax.

        Args:
            values: Raw configuration values

        Returns:
            Values with environment variables resolved
        """
        if not isinstance(values, dict):
            return values

        def replace_env_var(match: "re.Match[str]") -> str:
            var_spec = match.group(1)
            if ":" in var_spec:
                var_name, default = var_spec.split(":", 1)
            else:
                var_name, default = var_spec, ""
            return os.getenv(var_name, default)

        def resolve_value(value: Any) -> Any:
            if isinstance(value, str):
                return _ENV_PATTERN.sub(replace_env_var, value)
            elif isinstance(value, dict):
                return {k: resolve_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [resolve_value(item) for item in value]
            else:
                return value

        return {key: resolve_value(value) for key, value in values.items()}

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def update_from_dict(self, data: Dict[str, Any]) -> "BaseConfig":
        """Update configuration from dictionary.

        Args:
            data: Dictionary with updated values

        Returns:
            New configuration instance with updated values
        """
        current_data = self.model_dump()
        current_data.update(data)
        return self.__class__(**current_data)


class DatabaseConfig(BaseConfig):
    """SQLite database configuration.

    Attributes:
        id: Identifier used in logs
        path: Database file path, or ``:memory:``
        create_if_missing: Create the file when it does not exist
        timeout: Seconds to wait on a locked database
        foreign_keys: Enable ``PRAGMA foreign_keys`` on connect
        pragmas: Additional PRAGMA settings applied on connect

    Example:
        >>> config = DatabaseConfig(path="app.db", pragmas={"journal_mode": "wal"})
    """

    id: constr(min_length=1) = Field("main", description="Database identifier")
    path: Union[Path, str] = Field(..., description="Database file path")
    create_if_missing: bool = Field(True, description="Create the database file if absent")
    timeout: float = Field(5.0, gt=0, description="Busy timeout in seconds")
    foreign_keys: bool = Field(True, description="Enable foreign key enforcement")
    pragmas: Dict[str, Union[int, str]] = Field(
        default_factory=dict, description="Extra PRAGMA settings"
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate database ID format.

        Raises:
            ValidationError: If ID format is invalid
        """
        if not ValidationUtils.validate_identifier(v):
            raise ValidationError(
                f"Invalid database ID format: {v}",
                code=ErrorCodes.INVALID_IDENTIFIER,
            )
        return v

    @field_validator("pragmas")
    @classmethod
    def validate_pragmas(cls, v: Dict[str, Union[int, str]]) -> Dict[str, Union[int, str]]:
        """Reject pragma names and values that are not plain tokens.

        Raises:
            ValidationError: If a pragma name or value is malformed
        """
        for name, value in v.items():
            if not ValidationUtils.validate_identifier(name):
                raise ValidationError(
                    f"Invalid pragma name: {name}",
                    code=ErrorCodes.INVALID_IDENTIFIER,
                )
            if isinstance(value, str) and not re.match(r"^-?[A-Za-z0-9_]+$", value):
                raise ValidationError(f"Invalid value for pragma {name}: {value!r}")
        return v

    @property
    def is_memory(self) -> bool:
        """Whether this configuration targets an in-memory database."""
        return str(self.path) == ":memory:"


class DiscoveryConfig(BaseConfig):
    """Schema discovery configuration.

    Attributes:
        cache_ttl: Lifetime of a discovered snapshot in seconds
        include_views: Include views in the snapshot
        count_rows: Count rows of every table during discovery
        exclude_tables: Table names never reported
    """

    cache_ttl: float = Field(5.0, gt=0, description="Snapshot cache TTL in seconds")
    include_views: bool = Field(False, description="Include views")
    count_rows: bool = Field(False, description="Count rows per table")
    exclude_tables: List[str] = Field(default_factory=list, description="Tables to skip")


class ConstraintConfig(BaseConfig):
    """Constraint validator configuration."""

    preview_limit: conint(ge=1) = Field(
        20, description="Maximum orphaned row keys listed per foreign key"
    )


class MigrationConfig(BaseConfig):
    """Migration execution configuration.

    Attributes:
        directory: Directory holding ``<timestamp>_<description>.sql`` files
        tracking_table: Name of the tracking table
        migration_timeout: Overall budget for one migration in seconds
        attempt_timeout: Budget for a single attempt in seconds
        max_retries: Number of attempts before giving up
        retry_delay: Base delay for linear backoff in seconds
        cache_ttl: Lifetime of cached file and applied listings in seconds
    """

    directory: Path = Field(Path("migrations"), description="Migration directory")
    tracking_table: str = Field("migrations", description="Tracking table name")
    migration_timeout: float = Field(300.0, gt=0, description="Overall timeout in seconds")
    attempt_timeout: float = Field(60.0, gt=0, description="Per-attempt timeout in seconds")
    max_retries: PositiveInt = Field(3, description="Maximum attempts per migration")
    retry_delay: float = Field(1.0, ge=0, description="Linear backoff base delay")
    cache_ttl: float = Field(5.0, gt=0, description="Listing cache TTL in seconds")

    @field_validator("tracking_table")
    @classmethod
    def validate_tracking_table(cls, v: str) -> str:
        """Validate the tracking table name.

        Raises:
            ValidationError: If the name is not a plain SQL identifier
        """
        if not ValidationUtils.validate_sql_identifier(v):
            raise ValidationError(
                f"Invalid tracking table name: {v}",
                code=ErrorCodes.INVALID_IDENTIFIER,
            )
        return v

    @model_validator(mode="after")
    def validate_timeouts(self) -> "MigrationConfig":
        """Ensure a single attempt fits in the overall budget."""
        if self.attempt_timeout > self.migration_timeout:
            raise ValidationError(
                f"attempt_timeout ({self.attempt_timeout}) must be <= "
                f"migration_timeout ({self.migration_timeout})",
                code=ErrorCodes.CONFIG_VALIDATION_FAILED,
            )
        return self


class ResourceConfig(BaseConfig):
    """Concurrency ceiling configuration."""

    max_concurrent_operations: PositiveInt = Field(
        3, description="Maximum concurrent operations"
    )
    slot_timeout: float = Field(30.0, gt=0, description="Seconds before a slot is force-released")


class IndexerConfig(BaseConfig):
    """Query pattern recording and index recommendation configuration.

    Attributes:
        min_frequency: Minimum executions before a pattern is considered
        slow_query_threshold_ms: Average duration that makes a pattern slow
        max_recommendations: Maximum number of recommendations returned
        max_patterns: Maximum number of distinct patterns retained
        max_composite_columns: Maximum columns in a recommended index
    """

    min_frequency: PositiveInt = Field(3, description="Minimum pattern frequency")
    slow_query_threshold_ms: float = Field(1000.0, gt=0, description="Slow query threshold")
    max_recommendations: PositiveInt = Field(10, description="Maximum recommendations")
    max_patterns: PositiveInt = Field(1000, description="Maximum retained patterns")
    max_composite_columns: conint(ge=1, le=8) = Field(
        3, description="Maximum columns per recommended index"
    )


class LoggingConfig(BaseConfig):
    """Logging configuration.

    Attributes:
        level: Log level
        format: Log format (json, text)
        file_path: Log file path
        max_file_size: Maximum log file size in bytes
        backup_count: Number of backup files to keep
        console_output: Enable console output
        structured: Enable structured logging
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging level"
    )
    format: Literal["json", "text"] = Field("json", description="Log format")
    file_path: Optional[Path] = Field(None, description="Log file path")
    max_file_size: PositiveInt = Field(10485760, description="Max file size in bytes (10MB)")
    backup_count: conint(ge=0) = Field(5, description="Number of backup files")
    console_output: bool = Field(True, description="Enable console output")
    structured: bool = Field(True, description="Enable structured logging")

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        """Accept lower-case level names."""
        return v.upper() if isinstance(v, str) else v

    @field_validator("file_path")
    @classmethod
    def validate_log_file_path(cls, v: Optional[Path]) -> Optional[Path]:
        """Validate log file path is writable.

        Raises:
            ValidationError: If the log directory cannot be created
        """
        if v is not None:
            parent_dir = v.parent
            if not parent_dir.exists():
                try:
                    parent_dir.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise ValidationError(f"Cannot create log directory: {e}", cause=e)

        return v


class TunerConfig(BaseConfig):
    """Top-level SQLiTune configuration.

    Example:
        >>> config = TunerConfig.from_dict({
        ...     "database": {"path": "${APP_DB:app.db}"},
        ...     "indexer": {"min_frequency": 5},
        ... })
    """

    database: DatabaseConfig = Field(..., description="Database configuration")
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    constraints: ConstraintConfig = Field(default_factory=ConstraintConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    resources: ResourceConfig = Field(default_factory=ResourceConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TunerConfig":
        """Build configuration from a plain dictionary.

        Raises:
            ConfigurationError: If data is not a mapping
        """
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration must be a mapping",
                code=ErrorCodes.CONFIG_INVALID,
                context={"type": type(data).__name__},
            )
        return cls(**data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "TunerConfig":
        """Load configuration from a YAML file.

        Args:
            path: YAML file path

        Raises:
            ConfigurationError: If the file is missing or not valid YAML
        """
        config_path = Path(path)
        if not config_path.is_file():
            raise ConfigurationError(
                f"Configuration file not found: {config_path}",
                code=ErrorCodes.CONFIG_NOT_FOUND,
                context={"path": str(config_path)},
            )

        try:
            with config_path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {config_path}",
                code=ErrorCodes.CONFIG_INVALID,
                context={"path": str(config_path)},
                cause=e,
            ) from e

        return cls.from_dict(data)
