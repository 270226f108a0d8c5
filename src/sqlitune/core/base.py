"""Base classes for SQLiTune components.

Every SQLiTune component is an explicit instance owned by its caller and
constructed with a typed configuration object. There are no process-wide
singletons: two tuners over two databases never share state.

Classes:
    BaseComponent: Generic base class for all SQLiTune components
    AsyncComponent: Base class for components with async initialization

Example:
    >>> class SQLiteConnector(AsyncComponent[DatabaseConfig]):
    ...     async def _async_initialize(self) -> None:
    ...         self._connection = await aiosqlite.connect(self.config.path)
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, ClassVar, Dict, Generic, TypeVar

import structlog

from .exceptions import ConfigurationError, SQLiTuneException, ValidationError

# Configuration type
T = TypeVar("T")


class BaseComponent(Generic[T], ABC):
    """Base class for all SQLiTune components.

    Provides configuration storage and validation, a structlog logger and
    basic health information.

    Type Parameters:
        T: Type of configuration object this component accepts

    Attributes:
        component_name: Name of the component for logging and identification
        version: Component version
    """

    component_name: ClassVar[str] = "BaseComponent"
    version: ClassVar[str] = "1.0.0"

    def __init__(self, config: T) -> None:
        """Initialize base component.

        Args:
            config: Configuration object for this component

        Raises:
            ValidationError: If configuration is None
            ConfigurationError: If configuration fails validation
        """
        if config is None:
            raise ValidationError(
                "Configuration cannot be None",
                code="CONFIG_NULL",
                context={"component": self.component_name},
            )

        self._config: T = config
        self._initialized: bool = False
        self._creation_time: float = time.time()
        self._logger = structlog.get_logger(self.__class__.__name__)

        if not self.validate_config():
            raise ConfigurationError(
                f"Invalid configuration for {self.component_name}",
                code="CONFIG_INVALID",
                context={"component": self.component_name},
            )

    @property
    def config(self) -> T:
        """Get component configuration."""
        return self._config

    @property
    def is_initialized(self) -> bool:
        """Check if component is initialized."""
        return self._initialized

    @property
    def uptime(self) -> float:
        """Get component uptime in seconds."""
        return time.time() - self._creation_time

    def validate_config(self) -> bool:
        """Validate component configuration.

        Subclasses override this to add component-specific checks.

        Returns:
            True if configuration is valid
        """
        return self._config is not None

    def get_health_status(self) -> Dict[str, Any]:
        """Get component health status.

        Returns:
            Dictionary containing component health information
        """
        return {
            "component": self.component_name,
            "version": self.version,
            "initialized": self._initialized,
            "uptime_seconds": self.uptime,
            "status": "healthy" if self._initialized else "not_initialized",
        }

    def __repr__(self) -> str:
        """Return string representation of component."""
        return (
            f"{self.__class__.__name__}("
            f"name={self.component_name!r}, "
            f"initialized={self._initialized}, "
            f"uptime={self.uptime:.2f}s)"
        )


class AsyncComponent(BaseComponent[T]):
    """Base class for components with async initialization and cleanup.

    ``initialize()`` and ``cleanup()`` are idempotent and guarded by locks so
    concurrent callers share a single initialization.
    """

    def __init__(self, config: T) -> None:
        """Initialize async component.

        Args:
            config: Configuration object for this component
        """
        super().__init__(config)
        self._initialization_lock = asyncio.Lock()
        self._cleanup_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize component asynchronously.

        Raises:
            SQLiTuneException: If initialization fails. SQLiTune errors raised
                by the subclass propagate unchanged; anything else is wrapped
                with code ``INIT_FAILED``.
        """
        async with self._initialization_lock:
            if self._initialized:
                return

            self._logger.debug("Initializing component", component=self.component_name)

            try:
                await self._async_initialize()
            except SQLiTuneException as e:
                self._logger.error(
                    "Component initialization failed",
                    component=self.component_name,
                    error=str(e),
                )
                raise
            except Exception as e:
                self._logger.error(
                    "Component initialization failed",
                    component=self.component_name,
                    error=str(e),
                )
                raise SQLiTuneException(
                    f"Failed to initialize {self.component_name}",
                    code="INIT_FAILED",
                    context={"component": self.component_name},
                    cause=e,
                ) from e

            self._initialized = True
            self._logger.debug("Component initialized", component=self.component_name)

    async def cleanup(self) -> None:
        """Clean up component resources asynchronously.

        Cleanup failures are logged and not raised so they cannot mask the
        error that triggered the cleanup.
        """
        async with self._cleanup_lock:
            if not self._initialized:
                return

            try:
                await self._async_cleanup()
            except Exception as e:
                self._logger.error(
                    "Component cleanup failed",
                    component=self.component_name,
                    error=str(e),
                )
            finally:
                self._initialized = False

    @abstractmethod
    async def _async_initialize(self) -> None:
        """Perform async initialization work."""

    async def _async_cleanup(self) -> None:
        """Perform async cleanup work."""

    @asynccontextmanager
    async def managed_lifecycle(self) -> AsyncGenerator["AsyncComponent[T]", None]:
        """Context manager for automatic lifecycle management.

        Example:
            >>> async with tuner.managed_lifecycle() as active:
            ...     await active.migrate()
        """
        try:
            await self.initialize()
            yield self
        finally:
            await self.cleanup()

    async def __aenter__(self) -> "AsyncComponent[T]":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.cleanup()
