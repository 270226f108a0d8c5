"""Bounded concurrency for migration work.

The resource manager hands out at most ``max_concurrent_operations`` slots.
It never queues: a request beyond the ceiling fails immediately with
:class:`ResourceExhaustionError`. Every slot carries a timer that
force-releases it after ``slot_timeout`` seconds so a stuck operation cannot
hold a slot forever.

Example:
    >>> resources = ResourceManager(ResourceConfig(max_concurrent_operations=2))
    >>> release = await resources.acquire("migrate-1")
    >>> try:
    ...     await do_work()
    ... finally:
    ...     release()
"""

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import (
    Any,
    AsyncGenerator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from ..config.models import ResourceConfig
from ..core.exceptions import (
    ErrorCodes,
    ResourceError,
    ResourceExhaustionError,
    SlotTimeoutError,
)
from ..logging import get_logger
from .models import ResourceMetrics

T = TypeVar("T")

Release = Callable[[], None]


@dataclass
class _Slot:
    operation_id: str
    token: int
    acquired_at: float
    timer: Optional[asyncio.TimerHandle] = None


@dataclass
class BatchOutcome:
    """Result of one operation in ``run_batch``: a value or an error."""

    operation_id: str
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ResourceManager:
    """Slot-based admission control with per-slot timeouts.

    Args:
        config: Slot ceiling and timeout; defaults to 3 slots of 30 seconds
    """

    def __init__(self, config: Optional[ResourceConfig] = None) -> None:
        self.config = config or ResourceConfig()
        self.logger = get_logger("migration.resources")

        self._slots: Dict[str, _Slot] = {}
        self._tokens = itertools.count(1)
        self._stats = {
            "total": 0,
            "failures": 0,
            "rejected": 0,
            "timed_out": 0,
        }

    @property
    def max_concurrent(self) -> int:
        return self.config.max_concurrent_operations

    def _acquire(self, operation_id: str) -> _Slot:
        if operation_id in self._slots:
            raise ResourceError(
                f"Operation '{operation_id}' already holds a slot",
                code=ErrorCodes.DUPLICATE_OPERATION,
                operation="acquire",
                context={"operation_id": operation_id},
            )

        if len(self._slots) >= self.max_concurrent:
            self._stats["rejected"] += 1
            self.logger.warning(
                "Resource slots exhausted",
                operation_id=operation_id,
                active=len(self._slots),
                max_concurrent=self.max_concurrent,
            )
            raise ResourceExhaustionError(
                f"Maximum concurrent operations reached ({self.max_concurrent})",
                code=ErrorCodes.SLOT_EXHAUSTED,
                operation="acquire",
                context={
                    "operation_id": operation_id,
                    "active_operations": list(self._slots),
                },
                suggestion="Retry once a running operation has finished",
            )

        loop = asyncio.get_running_loop()
        slot = _Slot(operation_id=operation_id, token=next(self._tokens), acquired_at=loop.time())
        slot.timer = loop.call_later(
            self.config.slot_timeout, self._expire, operation_id, slot.token
        )
        self._slots[operation_id] = slot
        self._stats["total"] += 1

        self.logger.debug(
            "Resource slot acquired",
            operation_id=operation_id,
            active=len(self._slots),
        )
        return slot

    def _release(self, operation_id: str, token: int) -> bool:
        slot = self._slots.get(operation_id)
        if slot is None or slot.token != token:
            return False

        del self._slots[operation_id]
        if slot.timer is not None:
            slot.timer.cancel()

        self.logger.debug(
            "Resource slot released",
            operation_id=operation_id,
            active=len(self._slots),
        )
        return True

    def _expire(self, operation_id: str, token: int) -> None:
        if self._release(operation_id, token):
            self._stats["failures"] += 1
            self._stats["timed_out"] += 1
            self.logger.warning(
                "Resource slot force-released after timeout",
                operation_id=operation_id,
                slot_timeout=self.config.slot_timeout,
            )

    async def acquire(self, operation_id: str) -> Release:
        """Take a slot for ``operation_id``.

        Returns:
            A release function; calling it more than once is harmless

        Raises:
            ResourceExhaustionError: If every slot is in use
            ResourceError: If ``operation_id`` already holds a slot
        """
        slot = self._acquire(operation_id)

        def release() -> None:
            self._release(operation_id, slot.token)

        return release

    @asynccontextmanager
    async def slot(self, operation_id: str) -> AsyncGenerator[None, None]:
        """Hold a slot for the duration of the block."""
        slot = self._acquire(operation_id)
        failed = False
        try:
            yield
        except BaseException:
            failed = True
            raise
        finally:
            released = self._release(operation_id, slot.token)
            # a timed-out slot was already counted as a failure
            if failed and released:
                self._stats["failures"] += 1

    async def run(
        self,
        operation_id: str,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: Optional[float] = None,
    ) -> T:
        """Run ``operation`` inside a slot.

        Raises:
            ResourceExhaustionError: If no slot is free
            SlotTimeoutError: If ``timeout`` elapses first
        """
        async with self.slot(operation_id):
            if timeout is None:
                return await operation()
            try:
                return await asyncio.wait_for(operation(), timeout)
            except asyncio.TimeoutError as e:
                raise SlotTimeoutError(
                    f"Operation '{operation_id}' timed out after {timeout}s",
                    code=ErrorCodes.OPERATION_TIMEOUT,
                    operation="run",
                    context={"operation_id": operation_id, "timeout": timeout},
                    cause=e,
                ) from e

    async def _run_captured(
        self, operation_id: str, operation: Callable[[], Awaitable[Any]]
    ) -> BatchOutcome:
        try:
            return BatchOutcome(operation_id, result=await self.run(operation_id, operation))
        except Exception as e:
            return BatchOutcome(operation_id, error=e)

    async def run_batch(
        self, operations: Sequence[Tuple[str, Callable[[], Awaitable[Any]]]]
    ) -> List[BatchOutcome]:
        """Start every operation at once.

        Operations beyond the slot ceiling are refused rather than queued;
        their outcome carries the ``ResourceExhaustionError``. Outcomes are
        returned in input order.
        """
        return list(
            await asyncio.gather(
                *(self._run_captured(operation_id, op) for operation_id, op in operations)
            )
        )

    def get_metrics(self) -> ResourceMetrics:
        return ResourceMetrics(
            active=len(self._slots),
            max_concurrent=self.max_concurrent,
            total=self._stats["total"],
            failures=self._stats["failures"],
            rejected=self._stats["rejected"],
            timed_out=self._stats["timed_out"],
        )

    def has_available_slots(self) -> bool:
        return len(self._slots) < self.max_concurrent

    def get_utilization(self) -> float:
        return self.get_metrics().utilization

    def active_operations(self) -> List[str]:
        return list(self._slots)

    def is_active(self, operation_id: str) -> bool:
        return operation_id in self._slots

    def reset_metrics(self) -> None:
        """Zero the counters; active slots are unaffected."""
        for key in self._stats:
            self._stats[key] = 0

    async def cleanup(self) -> None:
        """Cancel every timer and drop all slots."""
        for slot in self._slots.values():
            if slot.timer is not None:
                slot.timer.cancel()
        if self._slots:
            self.logger.info("Released active slots on cleanup", count=len(self._slots))
        self._slots.clear()
