"""High-level migration entry point.

The manager puts the migration core behind the resource manager: a run
takes a slot, applies the pending migrations and reports what happened as a
:class:`MigrationRunResult`. It never raises for migration or resource
failures; those end up in ``errors``.
"""

import time
from typing import Optional

from ..core.exceptions import ResourceError, SQLiTuneException
from ..logging import get_logger, get_performance_logger
from .core import MigrationCore
from .models import ManagerStatus, MigrationFile, MigrationRunResult
from .resources import ResourceManager

MIGRATE_OPERATION_ID = "migrate"


class MigrationManager:
    """Runs migrations under bounded concurrency.

    Args:
        core: Migration core doing the actual work
        resources: Slot manager shared with other migration work
    """

    def __init__(self, core: MigrationCore, resources: Optional[ResourceManager] = None) -> None:
        self.core = core
        self.resources = resources or ResourceManager()
        self.logger = get_logger("migration.manager")
        self.perf_logger = get_performance_logger("migration.manager")

    async def initialize(self) -> None:
        await self.core.initialize()

    async def migrate(self) -> MigrationRunResult:
        """Apply every pending migration.

        Returns with ``executed=0, failed=0`` when nothing is pending; applied
        files are still checked for drift.
        """
        start_time = time.perf_counter()

        def elapsed_ms() -> float:
            return (time.perf_counter() - start_time) * 1000

        try:
            status = await self.core.get_status()
        except SQLiTuneException as e:
            self.logger.error("Could not read migration status", error=str(e))
            return MigrationRunResult(success=False, duration_ms=elapsed_ms(), errors=[e.message])

        if status.pending == 0:
            self.logger.debug("Database is up to date", applied=status.applied)
            try:
                drift = await self.core.verify_checksums()
            except SQLiTuneException as e:
                self.logger.error("Could not verify checksums", error=str(e))
                return MigrationRunResult(success=False, duration_ms=elapsed_ms(), errors=[e.message])
            return MigrationRunResult(success=True, duration_ms=elapsed_ms(), drift=drift)

        try:
            async with self.resources.slot(MIGRATE_OPERATION_ID):
                with self.perf_logger.measure("migrate", pending=status.pending):
                    batch = await self.core.execute_all_migrations()
        except ResourceError as e:
            self.logger.warning("Migration run refused", error=str(e))
            return MigrationRunResult(success=False, duration_ms=elapsed_ms(), errors=[e.message])
        except SQLiTuneException as e:
            self.logger.error("Migration run failed", error=str(e))
            return MigrationRunResult(success=False, duration_ms=elapsed_ms(), errors=[e.message])

        result = MigrationRunResult(
            success=batch.success,
            executed=batch.executed,
            failed=batch.failed,
            duration_ms=elapsed_ms(),
            errors=list(batch.errors),
            drift=list(batch.drift),
        )
        self.logger.info(
            "Migration run finished",
            success=result.success,
            executed=result.executed,
            failed=result.failed,
            duration_ms=round(result.duration_ms, 2),
        )
        return result

    async def status(self) -> ManagerStatus:
        core_status = await self.core.get_status()
        metrics = self.resources.get_metrics()
        return ManagerStatus(
            total_files=core_status.total_files,
            applied=core_status.applied,
            pending=core_status.pending,
            last_applied=core_status.last_applied,
            resource_utilization=metrics.utilization,
            active_operations=self.resources.active_operations(),
            drift=[item.describe() for item in await self.core.verify_checksums()],
        )

    async def is_up_to_date(self) -> bool:
        return await self.pending_count() == 0

    async def pending_count(self) -> int:
        return (await self.core.get_status()).pending

    async def create_migration(self, description: str, content: str) -> MigrationFile:
        return await self.core.create_migration(description, content)

    async def cleanup(self) -> None:
        await self.resources.cleanup()
        self.core.invalidate_cache()
