"""Unit tests for the resource manager."""

import asyncio

import pytest

from sqlitune.config.models import ResourceConfig
from sqlitune.core.exceptions import ResourceError, ResourceExhaustionError, SlotTimeoutError
from sqlitune.migration.resources import ResourceManager


class TestAcquireRelease:
    """acquire() and its release function."""

    async def test_acquire_and_release(self, resources):
        release = await resources.acquire("migrate-1")

        assert resources.is_active("migrate-1")
        assert resources.get_metrics().active == 1

        release()
        release()

        assert not resources.is_active("migrate-1")
        assert resources.get_metrics().active == 0
        assert resources.get_metrics().total == 1

    async def test_exhaustion_is_immediate(self, resources):
        """There is no queue: the third request fails at once."""
        await resources.acquire("a")
        await resources.acquire("b")

        with pytest.raises(ResourceExhaustionError) as exc_info:
            await resources.acquire("c")

        assert exc_info.value.code == "SLOT_EXHAUSTED"
        assert exc_info.value.context["active_operations"] == ["a", "b"]
        assert resources.get_metrics().rejected == 1
        assert not resources.has_available_slots()

    async def test_duplicate_operation(self, resources):
        await resources.acquire("migrate")

        with pytest.raises(ResourceError) as exc_info:
            await resources.acquire("migrate")

        assert exc_info.value.code == "DUPLICATE_OPERATION"
        assert not isinstance(exc_info.value, ResourceExhaustionError)

    async def test_utilization(self, resources):
        await resources.acquire("a")

        assert resources.get_utilization() == 50.0
        assert resources.get_metrics().to_dict()["utilization"] == 50.0
        assert resources.active_operations() == ["a"]


class TestSlotTimeout:
    """Slots are force-released by their timer."""

    @pytest.fixture
    async def short_lived(self):
        manager = ResourceManager(ResourceConfig(max_concurrent_operations=1, slot_timeout=0.05))
        yield manager
        await manager.cleanup()

    async def test_timer_releases_slot(self, short_lived):
        await short_lived.acquire("stuck")

        await asyncio.sleep(0.15)

        assert not short_lived.is_active("stuck")
        metrics = short_lived.get_metrics()
        assert metrics.timed_out == 1
        assert metrics.failures == 1
        assert metrics.active == 0

    async def test_stale_release_keeps_new_slot(self, short_lived):
        """A late release of an expired slot does not free its successor."""
        stale_release = await short_lived.acquire("migrate")
        await asyncio.sleep(0.15)

        await short_lived.acquire("migrate")
        stale_release()

        assert short_lived.is_active("migrate")

    async def test_released_slot_timer_cancelled(self, short_lived):
        release = await short_lived.acquire("quick")
        release()

        await asyncio.sleep(0.15)

        assert short_lived.get_metrics().timed_out == 0


class TestConcurrency:
    """The ceiling holds under concurrent load."""

    async def test_active_never_exceeds_max(self, resources):
        peak = 0
        running = 0

        async def work():
            nonlocal peak, running
            running += 1
            peak = max(peak, running, resources.get_metrics().active)
            await asyncio.sleep(0.02)
            running -= 1
            return "done"

        outcomes = await asyncio.gather(
            *(resources.run(f"op-{i}", work) for i in range(10)),
            return_exceptions=True,
        )

        assert peak <= resources.max_concurrent
        assert sum(1 for outcome in outcomes if outcome == "done") == 2
        assert sum(isinstance(o, ResourceExhaustionError) for o in outcomes) == 8
        assert resources.get_metrics().active == 0
        assert resources.get_metrics().rejected == 8

    async def test_slots_reusable_after_completion(self, resources):
        async def work():
            await asyncio.sleep(0)
            return 1

        results = []
        for i in range(5):
            results.append(await resources.run(f"op-{i}", work))

        assert results == [1] * 5
        assert resources.get_metrics().total == 5

    async def test_run_batch(self, resources):
        async def work():
            await asyncio.sleep(0.01)
            return "ok"

        outcomes = await resources.run_batch([(f"op-{i}", work) for i in range(3)])

        assert [outcome.operation_id for outcome in outcomes] == ["op-0", "op-1", "op-2"]
        assert [outcome.ok for outcome in outcomes] == [True, True, False]
        assert outcomes[0].result == "ok"
        assert isinstance(outcomes[2].error, ResourceExhaustionError)


class TestRun:
    """run() and slot()."""

    async def test_failure_counted_and_slot_released(self, resources):
        async def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await resources.run("broken", broken)

        metrics = resources.get_metrics()
        assert metrics.failures == 1
        assert metrics.active == 0

    async def test_timeout(self, resources):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(SlotTimeoutError) as exc_info:
            await resources.run("slow", slow, timeout=0.05)

        assert exc_info.value.code == "OPERATION_TIMEOUT"
        assert not resources.is_active("slow")

    async def test_slot_context_manager(self, resources):
        async with resources.slot("block"):
            assert resources.is_active("block")

        assert not resources.is_active("block")
        assert resources.get_metrics().failures == 0

    async def test_reset_metrics_and_cleanup(self, resources):
        await resources.acquire("a")
        resources.reset_metrics()

        metrics = resources.get_metrics()
        assert (metrics.total, metrics.active) == (0, 1)

        await resources.cleanup()
        assert resources.get_metrics().active == 0
