"""Unit tests for the SQLiteTuner composition root."""

import pytest

from sqlitune.config.models import TunerConfig
from sqlitune.core.exceptions import TableNotFoundError, ValidationError
from sqlitune.schema.constraints import FixOptions
from sqlitune.tuner import SQLiteTuner, estimate_impact


@pytest.fixture
async def tuner(tuner_config):
    tuner = SQLiteTuner(tuner_config, configure_logging=False)
    await tuner.initialize()
    yield tuner
    await tuner.cleanup()


class TestEstimateImpact:
    """Impact buckets."""

    @pytest.mark.parametrize("count,impact", [(0, "low"), (1, "medium"), (3, "medium"), (4, "high")])
    def test_estimate_impact(self, count, impact):
        assert estimate_impact(count) == impact


class TestLifecycle:
    """Construction and shutdown."""

    def test_instances_not_shared(self, tuner_config):
        first = SQLiteTuner(tuner_config, configure_logging=False)
        second = SQLiteTuner(tuner_config, configure_logging=False)

        assert first.connector is not second.connector
        assert first.resources is not second.resources
        assert first.recorder is not second.recorder

    async def test_context_manager(self, tuner_config):
        async with SQLiteTuner(tuner_config, configure_logging=False) as tuner:
            assert tuner.is_initialized
            assert tuner.connector.is_connected

        assert not tuner.connector.is_connected

    async def test_from_config_file(self, config_file):
        async with SQLiteTuner(TunerConfig.from_file(config_file), configure_logging=False) as tuner:
            status = await tuner.status()

        assert status["schema"]["tables"] == 2


class TestReadOnlySurface:
    """Reads never change the database."""

    async def test_status(self, tuner):
        status = await tuner.status()

        assert status["database"]["connected"] is True
        assert status["schema"]["tables"] == 2
        assert status["migrations"]["pending"] == 0
        assert status["resources"]["active"] == 0
        assert status["query_patterns"]["patterns"] == 0

    async def test_plan_migrations(self, tuner, write_migration):
        write_migration("20240101000000_a.sql", "CREATE TABLE tags (id INTEGER PRIMARY KEY);")
        write_migration("20240102000000_b.sql", "DROP TABLE tags;")

        plan = await tuner.plan_migrations()

        assert plan.dry_run is True
        assert plan.migrations == ["20240101000000_a", "20240102000000_b"]
        assert plan.validation_problems["20240102000000_b"]
        assert "20240101000000_a" not in plan.validation_problems
        assert plan.estimated_impact in ("medium", "high")
        assert plan.to_dict()["migrations"] == plan.migrations
        assert (await tuner.status())["migrations"]["applied"] == 0

    async def test_index_recommendations(self, tuner):
        for _ in range(10):
            tuner.record_query("SELECT * FROM users WHERE email = ?", 1200)

        recommendations = await tuner.get_index_recommendations()

        assert [(rec.table, rec.columns, rec.priority) for rec in recommendations] == [
            ("users", ("email",), "high")
        ]
        assert await tuner.get_index_recommendations(min_frequency=11) == []

    async def test_record_query_validates(self, tuner):
        with pytest.raises(ValidationError):
            tuner.record_query("SELECT 1", -5)

    async def test_constraint_issues(self, tuner):
        issues = await tuner.get_constraint_issues()

        assert issues.foreign_keys_enabled is True
        assert len(issues.orphans) == 0
        assert [(i.table, i.columns) for i in issues.missing_indexes] == [("posts", ("user_id",))]

    async def test_tuning_suggestions(self, tuner):
        suggestions = await tuner.get_tuning_suggestions()

        assert "journal_mode" in {s.setting for s in suggestions}


class TestMutatingSurface:
    """Migrations, fixes and repositories."""

    async def test_migrate(self, tuner, write_migration):
        write_migration("20240101000000_a.sql", "CREATE TABLE tags (id INTEGER PRIMARY KEY, label TEXT);")

        result = await tuner.migrate()

        assert (result.executed, result.failed) == (1, 0)
        assert (await tuner.status())["schema"]["tables"] == 3
        assert (await tuner.migrate()).executed == 0

    async def test_create_migration(self, tuner):
        migration = await tuner.create_migration("add tags", "CREATE TABLE tags (id INTEGER);")

        assert migration.path.exists()
        assert (await tuner.plan_migrations()).migrations == [migration.name]

    async def test_apply_fixes_dry_run_by_default(self, tuner):
        result = await tuner.apply_fixes()

        assert result.dry_run is True
        assert result.executed_statements == []
        assert result.indexes_created == 0

    async def test_apply_fixes(self, tuner):
        result = await tuner.apply_fixes(FixOptions(create_missing_indexes=True, dry_run=False))

        assert result.indexes_created == 1
        assert (await tuner.get_constraint_issues()).missing_indexes == []

    async def test_repository(self, tuner):
        await tuner.connector.execute_query(
            "INSERT INTO users (email, name) VALUES (?, ?)", ("ada@example.com", "Ada")
        )

        users = await tuner.repository("users")

        assert [row["name"] for row in await users.find_by("email", "ada@example.com")] == ["Ada"]
        with pytest.raises(TableNotFoundError):
            await tuner.repository("ghosts")
