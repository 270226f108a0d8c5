"""Schema change detection.

SQLite bumps ``PRAGMA schema_version`` on every schema change. The watcher
polls it and, when it moves, drops the discovery cache and notifies the
registered listeners.

Example:
    >>> watcher = SchemaWatcher(connector, discovery, interval=2.0)
    >>> watcher.add_listener(lambda old, new: print(f"schema {old} -> {new}"))
    >>> watcher.start()
    >>> ...
    >>> await watcher.stop()
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Union

from ..core.exceptions import SQLiTuneException
from ..database.connector import SQLiteConnector
from ..logging import get_logger
from .discovery import SchemaDiscovery

Listener = Callable[[Optional[int], int], Union[None, Awaitable[None]]]


class SchemaWatcher:
    """Polls ``PRAGMA schema_version`` and reacts to changes."""

    def __init__(
        self,
        connector: SQLiteConnector,
        discovery: SchemaDiscovery,
        *,
        interval: float = 5.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.connector = connector
        self.discovery = discovery
        self.interval = interval
        self.logger = get_logger("schema.watcher")

        self._listeners: List[Listener] = []
        self._last_version: Optional[int] = None
        self._task: Optional["asyncio.Task[Any]"] = None

    @property
    def last_version(self) -> Optional[int]:
        return self._last_version

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: Listener) -> None:
        """Register a callable (sync or async) taking ``(old_version, new_version)``."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def check(self) -> bool:
        """Poll once.

        The first poll only records the version. Returns True when the
        version changed since the previous poll. Listener errors are
        logged and do not propagate.
        """
        version = await self.connector.pragma_value("schema_version")
        previous = self._last_version
        self._last_version = version

        if previous is None or previous == version:
            return False

        self.logger.info("Schema change detected", previous_version=previous, version=version)
        self.discovery.invalidate()

        for listener in list(self._listeners):
            await self._notify(listener, previous, version)

        return True

    async def _notify(self, listener: Listener, previous: int, version: int) -> None:
        # one failing listener must not starve the others or stop polling
        try:
            outcome = listener(previous, version)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self.logger.error(
                "Schema change listener failed",
                listener=getattr(listener, "__qualname__", repr(listener)),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _run(self) -> None:
        while True:
            try:
                await self.check()
            except SQLiTuneException as e:
                self.logger.warning("Schema version poll failed", error=str(e))
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start polling in a background task on the running loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        self.logger.debug("Schema watcher started", interval=self.interval)

    async def stop(self) -> None:
        """Stop the background task and wait for it to finish."""
        if self._task is None:
            return

        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.debug("Schema watcher stopped")
