"""SQLiTune composition root.

:class:`SQLiteTuner` builds one explicit instance of every component for a
single database and exposes two surfaces:

- read-only: :meth:`~SQLiteTuner.status`, :meth:`~SQLiteTuner.plan_migrations`,
  :meth:`~SQLiteTuner.get_index_recommendations`,
  :meth:`~SQLiteTuner.get_constraint_issues`,
  :meth:`~SQLiteTuner.get_tuning_suggestions`
- mutating: :meth:`~SQLiteTuner.migrate`, :meth:`~SQLiteTuner.apply_fixes`,
  :meth:`~SQLiteTuner.create_migration`, :meth:`~SQLiteTuner.record_query`

Two tuners never share state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config.models import TunerConfig
from .core.base import AsyncComponent
from .database.connector import SQLiteConnector
from .logging import configure_from_config, get_logger
from .migration.core import MigrationCore
from .migration.manager import MigrationManager
from .migration.models import MigrationFile, MigrationRunResult
from .migration.resources import ResourceManager
from .performance.indexer import AutoIndexer, IndexRecommendation
from .performance.pragmas import PragmaAdvisor, TuningSuggestion
from .performance.recorder import QueryPattern, QueryPatternRecorder
from .schema.constraints import ConstraintIssues, ConstraintValidator, FixOptions, FixResult
from .schema.discovery import SchemaDiscovery
from .schema.repository import Repository


def estimate_impact(item_count: int) -> str:
    """``low`` for nothing to do, ``medium`` for up to three items, else ``high``."""
    if item_count == 0:
        return "low"
    if item_count <= 3:
        return "medium"
    return "high"


@dataclass
class MigrationPlan:
    """What a migration run would do, computed without side effects."""

    migrations: List[str] = field(default_factory=list)
    validation_problems: Dict[str, List[str]] = field(default_factory=dict)
    tuning_suggestions: List[TuningSuggestion] = field(default_factory=list)
    index_recommendations: List[IndexRecommendation] = field(default_factory=list)
    estimated_impact: str = "low"
    dry_run: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "migrations": list(self.migrations),
            "validation_problems": {k: list(v) for k, v in self.validation_problems.items()},
            "tuning_suggestions": [s.to_dict() for s in self.tuning_suggestions],
            "index_recommendations": [r.to_dict() for r in self.index_recommendations],
            "estimated_impact": self.estimated_impact,
            "dry_run": self.dry_run,
        }


class SQLiteTuner(AsyncComponent[TunerConfig]):
    """Schema discovery, migrations and index advice for one SQLite database.

    Args:
        config: Complete tuner configuration
        configure_logging: Apply ``config.logging`` to the logging factory

    Example:
        >>> async with SQLiteTuner(TunerConfig(database={"path": "app.db"})) as tuner:
        ...     await tuner.migrate()
    """

    component_name = "SQLiteTuner"

    def __init__(self, config: TunerConfig, *, configure_logging: bool = True) -> None:
        super().__init__(config)
        if configure_logging:
            configure_from_config(config.logging)
        self.logger = get_logger("tuner")

        self.connector = SQLiteConnector(config.database)
        self.discovery = SchemaDiscovery(
            self.connector,
            config.discovery,
            tracking_table=config.migration.tracking_table,
        )
        self.constraints = ConstraintValidator(self.connector, self.discovery, config.constraints)
        self.migration_core = MigrationCore(self.connector, config.migration, discovery=self.discovery)
        self.resources = ResourceManager(config.resources)
        self.migrations = MigrationManager(self.migration_core, self.resources)
        self.recorder = QueryPatternRecorder(config.indexer)
        self.indexer = AutoIndexer(self.recorder, config.indexer)
        self.advisor = PragmaAdvisor(self.connector)

    async def _async_initialize(self) -> None:
        await self.connector.initialize()
        await self.migrations.initialize()
        snapshot = await self.discovery.discover(force=True)
        self.logger.info(
            "SQLiTune ready",
            database_path=self.connector.database_path,
            tables=len(snapshot),
        )

    async def _async_cleanup(self) -> None:
        await self.migrations.cleanup()
        await self.connector.cleanup()

    # Read-only surface

    async def status(self) -> Dict[str, Any]:
        schema = await self.discovery.get_schema()
        migration_status = await self.migrations.status()
        return {
            "database": self.connector.get_connection_info(),
            "schema": {
                "tables": len(schema),
                "discovered_at": schema.discovered_at.isoformat(),
                "warnings": len(schema.warnings),
            },
            "migrations": migration_status.to_dict(),
            "resources": self.resources.get_metrics().to_dict(),
            "query_patterns": self.recorder.get_stats(),
        }

    async def plan_migrations(self) -> MigrationPlan:
        """Pending migrations, their problems and the current advice."""
        pending = await self.migration_core.get_pending()
        suggestions = await self.advisor.suggest()
        recommendations = await self.get_index_recommendations()

        problems: Dict[str, List[str]] = {}
        for migration in pending:
            found = self.migration_core.validate_migration(migration)
            if found:
                problems[migration.name] = found

        plan = MigrationPlan(
            migrations=[migration.name for migration in pending],
            validation_problems=problems,
            tuning_suggestions=suggestions,
            index_recommendations=recommendations,
            estimated_impact=estimate_impact(len(pending) + len(suggestions)),
        )
        self.logger.info(
            "Migration plan computed",
            migrations=len(plan.migrations),
            tuning_suggestions=len(plan.tuning_suggestions),
            index_recommendations=len(plan.index_recommendations),
            estimated_impact=plan.estimated_impact,
        )
        return plan

    async def get_index_recommendations(self, **overrides: Any) -> List[IndexRecommendation]:
        """Index recommendations; keyword overrides go to the auto-indexer."""
        schema = await self.discovery.get_schema()
        return self.indexer.analyze_and_recommend(schema, **overrides)

    async def get_constraint_issues(self) -> ConstraintIssues:
        return await self.constraints.plan()

    async def get_tuning_suggestions(self) -> List[TuningSuggestion]:
        return await self.advisor.suggest()

    # Mutating surface

    async def migrate(self) -> MigrationRunResult:
        return await self.migrations.migrate()

    async def apply_fixes(
        self,
        options: Optional[FixOptions] = None,
        issues: Optional[ConstraintIssues] = None,
    ) -> FixResult:
        """Fix constraint issues; a dry run unless ``options`` says otherwise."""
        if issues is None:
            issues = await self.constraints.plan()
        return await self.constraints.apply_fixes(issues, options)

    async def create_migration(self, description: str, content: str) -> MigrationFile:
        return await self.migrations.create_migration(description, content)

    def record_query(
        self, sql_text: str, duration_ms: float, table: Optional[str] = None
    ) -> QueryPattern:
        """Telemetry hook: record one executed query and its duration."""
        return self.recorder.record_query(sql_text, duration_ms, table)

    async def repository(self, table: str) -> Repository:
        """Column-validated finder for ``table``.

        Raises:
            TableNotFoundError: If the table does not exist
        """
        schema = await self.discovery.get_schema()
        return Repository(self.connector, schema.require_table(table))
