"""Unit tests for the migration core.

These run real migrations against a SQLite file: ordering, tracking,
retries, timeouts, checksum drift and validation.
"""

import asyncio
import re
import time
from datetime import timezone
from pathlib import Path

import pytest

from sqlitune.config.models import MigrationConfig
from sqlitune.core.exceptions import (
    ChecksumDriftWarning,
    MigrationError,
    MigrationExecutionError,
    MigrationTimeoutError,
    QueryError,
    ValidationError,
)
from sqlitune.migration.core import MIGRATION_FILE_PATTERN, MigrationCore
from sqlitune.migration.models import MigrationFile, MigrationState

from .conftest import CREATE_ITEMS


async def _tracked_names(connector, table="migrations"):
    rows = await connector.fetch_all(f'SELECT name FROM "{table}" ORDER BY name')
    return [row["name"] for row in rows]


async def _table_exists(connector, name):
    found = await connector.fetch_value(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    )
    return found is not None


def _file(name, content):
    match = MIGRATION_FILE_PATTERN.match(f"{name}.sql")
    return MigrationFile(
        name=name,
        timestamp=match.group("timestamp") if match else "",
        description=match.group("description") if match else name,
        content=content,
        path=Path(f"{name}.sql"),
    )


class TestTrackingTable:
    """The migrations tracking table."""

    async def test_initialize_creates_table(self, core, connector):
        await core.initialize()

        columns = [row["name"] for row in (await connector.pragma("table_info", "migrations")).rows]
        assert columns == ["id", "name", "applied_at", "checksum"]

    async def test_initialize_is_idempotent(self, core, connector, migration_config):
        await core.initialize()
        await core.initialize()
        await MigrationCore(connector, migration_config).initialize()

        assert await _table_exists(connector, "migrations")

    async def test_name_is_unique(self, core, connector):
        await core.initialize()
        insert = "INSERT INTO migrations (id, name, checksum) VALUES (?, ?, ?)"
        await connector.execute_query(insert, ("1", "20240101000000_a", "x"))

        with pytest.raises(QueryError):
            await connector.execute_query(insert, ("2", "20240101000000_a", "y"))

    async def test_reads_do_not_create_table(self, core, connector):
        assert await core.list_applied() == []
        assert (await core.get_status()).applied == 0
        assert not await _table_exists(connector, "migrations")

    async def test_custom_tracking_table(self, connector, migrations_dir, two_migrations):
        core = MigrationCore(
            connector,
            MigrationConfig(directory=migrations_dir, tracking_table="schema_history", retry_delay=0),
        )

        await core.execute_all_migrations()

        assert await _tracked_names(connector, "schema_history") == [
            "20240101000000_a",
            "20240102000000_b",
        ]


class TestMigrationFiles:
    """Listing migration files."""

    async def test_files_ordered_by_timestamp(self, core, write_migration):
        write_migration("20240301000000_third.sql", "SELECT 3;")
        write_migration("20240101000000_first.sql", "SELECT 1;")
        write_migration("20240201000000_second.sql", "SELECT 2;")

        files = await core.list_migration_files()

        assert [f.name for f in files] == [
            "20240101000000_first",
            "20240201000000_second",
            "20240301000000_third",
        ]
        assert files[0].timestamp == "20240101000000"
        assert files[0].description == "first"
        assert files[0].content == "SELECT 1;"
        assert files[0].filename == "20240101000000_first.sql"

    async def test_misnamed_and_foreign_files_skipped(self, core, write_migration, migrations_dir):
        write_migration("20240101000000_ok.sql", "SELECT 1;")
        write_migration("2024_short.sql", "SELECT 1;")
        write_migration("20240101000000-dash.sql", "SELECT 1;")
        write_migration("README.md", "notes")
        (migrations_dir / "20240102000000_dir.sql").mkdir()

        files = await core.list_migration_files()

        assert [f.name for f in files] == ["20240101000000_ok"]

    async def test_missing_directory(self, connector, temp_dir):
        core = MigrationCore(connector, MigrationConfig(directory=temp_dir / "absent"))

        assert await core.list_migration_files() == []
        assert (await core.execute_all_migrations()).executed == 0

    async def test_listing_cached_until_invalidated(self, core, write_migration):
        write_migration("20240101000000_a.sql", "SELECT 1;")
        assert len(await core.list_migration_files()) == 1

        write_migration("20240102000000_b.sql", "SELECT 2;")
        assert len(await core.list_migration_files()) == 1

        core.invalidate_cache()
        assert len(await core.list_migration_files()) == 2

    async def test_listing_expires(self, connector, migrations_dir, write_migration):
        core = MigrationCore(connector, MigrationConfig(directory=migrations_dir, cache_ttl=0.05))
        assert await core.list_migration_files() == []

        write_migration("20240101000000_a.sql", "SELECT 1;")
        await asyncio.sleep(0.1)

        assert len(await core.list_migration_files()) == 1


class TestExecution:
    """Applying migrations."""

    async def test_nothing_pending(self, core):
        result = await core.execute_all_migrations()

        assert result.executed == 0
        assert result.failed == 0
        assert result.success

    async def test_apply_in_order(self, core, connector, two_migrations):
        """Both files apply in timestamp order and are recorded once each."""
        result = await core.execute_all_migrations()

        assert result.executed == 2
        assert result.failed == 0
        assert [record.name for record in result.applied] == ["20240101000000_a", "20240102000000_b"]
        assert await _tracked_names(connector) == ["20240101000000_a", "20240102000000_b"]
        assert await connector.fetch_value("SELECT note FROM items") == "from b"

        second = await core.execute_all_migrations()

        assert second.executed == 0
        assert second.failed == 0
        assert len(await _tracked_names(connector)) == 2

    async def test_records(self, core, two_migrations):
        await core.execute_all_migrations()

        records = await core.list_applied()

        assert [record.name for record in records] == ["20240101000000_a", "20240102000000_b"]
        assert records[0].checksum == core.calculate_checksum(CREATE_ITEMS)
        assert records[0].applied_at.tzinfo is not None
        assert records[0].applied_at.utcoffset() == timezone.utc.utcoffset(None)
        assert len(records[0].id) == 32
        assert await core.is_applied("20240101000000_a")

    async def test_status(self, core, two_migrations):
        before = await core.get_status()
        assert (before.total_files, before.applied, before.pending) == (2, 0, 2)
        assert before.last_applied is None
        assert before.pending_names == ["20240101000000_a", "20240102000000_b"]

        await core.execute_all_migrations()

        after = await core.get_status()
        assert (after.total_files, after.applied, after.pending) == (2, 2, 0)
        assert after.last_applied == "20240102000000_b"

    async def test_states(self, core, two_migrations):
        await core.get_pending()
        assert core.get_state("20240101000000_a") == MigrationState.PENDING

        await core.execute_all_migrations()

        assert core.get_state("20240101000000_a") == MigrationState.APPLIED
        assert core.get_state("unknown") is None

    async def test_schema_snapshot_refreshed(self, core, discovery, two_migrations):
        assert "items" not in (await discovery.get_schema()).table_names

        await core.execute_all_migrations()

        snapshot = await discovery.get_schema()
        assert "items" in snapshot.table_names
        assert "migrations" not in snapshot.table_names

    async def test_failure_halts_batch(self, core, connector, write_migration):
        """Earlier migrations stay applied; later ones are not attempted."""
        write_migration("20240101000000_a.sql", CREATE_ITEMS)
        write_migration(
            "20240102000000_b.sql",
            "CREATE TABLE half_done (id INTEGER);\nINSERT INTO nowhere VALUES (1);",
        )
        write_migration("20240103000000_c.sql", "CREATE TABLE later (id INTEGER);")

        result = await core.execute_all_migrations()

        assert result.executed == 1
        assert result.failed == 1
        assert not result.success
        assert result.errors[0].startswith("20240102000000_b:")
        assert await _tracked_names(connector) == ["20240101000000_a"]
        assert not await _table_exists(connector, "half_done")
        assert not await _table_exists(connector, "later")
        assert core.get_state("20240102000000_b") == MigrationState.FAILED

    async def test_failed_migration_runs_again_once_fixed(self, core, connector, write_migration):
        write_migration("20240101000000_a.sql", "INSERT INTO nowhere VALUES (1);")
        assert (await core.execute_all_migrations()).failed == 1

        write_migration("20240101000000_a.sql", CREATE_ITEMS)
        core.invalidate_cache()
        result = await core.execute_all_migrations()

        assert result.executed == 1
        assert core.get_state("20240101000000_a") == MigrationState.APPLIED

    async def test_applied_migration_cannot_run_again(self, core, two_migrations):
        await core.execute_all_migrations()
        migration = (await core.list_migration_files())[0]

        with pytest.raises(MigrationError) as exc_info:
            await core.execute_migration(migration)

        assert exc_info.value.code == "MIGRATION_STATE_INVALID"


class TestRetries:
    """Retry, backoff and timeouts."""

    async def test_retry_with_linear_backoff(self, core, connector, write_migration, monkeypatch):
        write_migration("20240101000000_a.sql", CREATE_ITEMS)
        migration = (await core.list_migration_files())[0]

        real_apply = core._apply
        calls = []

        async def flaky(*args):
            calls.append(args)
            if len(calls) < 3:
                raise QueryError("database is locked")
            return await real_apply(*args)

        delays = []
        real_sleep = asyncio.sleep

        async def recording_sleep(delay, *args, **kwargs):
            delays.append(delay)
            await real_sleep(0)

        monkeypatch.setattr(core, "_apply", flaky)
        monkeypatch.setattr(asyncio, "sleep", recording_sleep)

        record = await core.execute_migration(migration)

        assert record.name == "20240101000000_a"
        assert len(calls) == 3
        assert delays == [pytest.approx(0.01), pytest.approx(0.02)]
        assert await _tracked_names(connector) == ["20240101000000_a"]

    async def test_retries_exhausted(self, core, write_migration, monkeypatch):
        write_migration("20240101000000_a.sql", CREATE_ITEMS)
        migration = (await core.list_migration_files())[0]
        calls = []

        async def always_locked(*args):
            calls.append(args)
            raise QueryError("database is locked")

        monkeypatch.setattr(core, "_apply", always_locked)

        with pytest.raises(MigrationExecutionError) as exc_info:
            await core.execute_migration(migration)

        assert len(calls) == 3
        assert exc_info.value.code == "MIGRATION_FAILED"
        assert exc_info.value.context["attempts"] == 3
        assert isinstance(exc_info.value.cause, QueryError)
        assert core.get_state(migration.name) == MigrationState.FAILED

    async def test_committed_attempt_not_recorded_twice(self, core, connector, write_migration, monkeypatch):
        """An attempt that committed before failing is detected on the next attempt."""
        write_migration("20240101000000_a.sql", CREATE_ITEMS)
        migration = (await core.list_migration_files())[0]
        real_apply = core._apply
        calls = []

        async def commit_then_fail(*args):
            calls.append(args)
            await real_apply(*args)
            raise QueryError("connection reset after commit")

        monkeypatch.setattr(core, "_apply", commit_then_fail)

        record = await core.execute_migration(migration)

        assert len(calls) == 1
        assert record.name == migration.name
        assert await _tracked_names(connector) == ["20240101000000_a"]

    async def test_attempt_timeout(self, connector, migrations_dir, write_migration, monkeypatch):
        core = MigrationCore(
            connector,
            MigrationConfig(
                directory=migrations_dir,
                migration_timeout=2.0,
                attempt_timeout=0.05,
                max_retries=2,
                retry_delay=0.01,
            ),
        )
        write_migration("20240101000000_a.sql", CREATE_ITEMS)
        migration = (await core.list_migration_files())[0]

        async def hang(*args):
            await asyncio.sleep(5)

        monkeypatch.setattr(core, "_apply", hang)

        with pytest.raises(MigrationTimeoutError) as exc_info:
            await core.execute_migration(migration)

        assert exc_info.value.code == "MIGRATION_TIMEOUT"
        assert exc_info.value.context["attempt"] == 2
        assert await _tracked_names(connector) == []

    async def test_last_attempt_committed_before_timeout(
        self, connector, migrations_dir, write_migration, monkeypatch
    ):
        """A final attempt that committed and then timed out counts as applied."""
        core = MigrationCore(
            connector,
            MigrationConfig(
                directory=migrations_dir,
                migration_timeout=2.0,
                attempt_timeout=0.2,
                max_retries=1,
                retry_delay=0.01,
            ),
        )
        write_migration("20240101000000_a.sql", CREATE_ITEMS)
        migration = (await core.list_migration_files())[0]
        real_apply = core._apply

        async def commit_then_hang(*args):
            await real_apply(*args)
            await asyncio.sleep(5)

        monkeypatch.setattr(core, "_apply", commit_then_hang)

        record = await core.execute_migration(migration)

        assert record.name == migration.name
        assert core.get_state(migration.name) == MigrationState.APPLIED
        assert await _tracked_names(connector) == ["20240101000000_a"]

    async def test_overall_timeout(self, connector, migrations_dir, write_migration, monkeypatch):
        core = MigrationCore(
            connector,
            MigrationConfig(
                directory=migrations_dir,
                migration_timeout=0.1,
                attempt_timeout=0.1,
                max_retries=10,
                retry_delay=0.05,
            ),
        )
        write_migration("20240101000000_a.sql", CREATE_ITEMS)
        migration = (await core.list_migration_files())[0]

        async def hang(*args):
            await asyncio.sleep(5)

        monkeypatch.setattr(core, "_apply", hang)

        start = time.perf_counter()
        with pytest.raises(MigrationTimeoutError):
            await core.execute_migration(migration)

        assert time.perf_counter() - start < 1.0


class TestChecksumDrift:
    """Changed or missing files after they were applied."""

    async def test_changed_file_warns(self, core, two_migrations):
        await core.execute_all_migrations()
        two_migrations[0].write_text(CREATE_ITEMS + "\n-- edited", encoding="utf-8")
        core.invalidate_cache()

        with pytest.warns(ChecksumDriftWarning, match="20240101000000_a"):
            drift = await core.verify_checksums()

        assert len(drift) == 1
        assert drift[0].name == "20240101000000_a"
        assert drift[0].missing_file is False
        assert drift[0].current_checksum != drift[0].recorded_checksum

    async def test_drift_does_not_block_migrations(self, core, connector, two_migrations, write_migration):
        """Drift is only a warning: the run still succeeds."""
        await core.execute_all_migrations()
        two_migrations[0].write_text(CREATE_ITEMS + "\n-- edited", encoding="utf-8")
        write_migration("20240103000000_c.sql", "CREATE TABLE later (id INTEGER);")
        core.invalidate_cache()

        with pytest.warns(ChecksumDriftWarning):
            result = await core.execute_all_migrations()

        assert result.success
        assert result.executed == 1
        assert [item.name for item in result.drift] == ["20240101000000_a"]

    async def test_missing_file(self, core, two_migrations):
        await core.execute_all_migrations()
        two_migrations[1].unlink()
        core.invalidate_cache()

        with pytest.warns(ChecksumDriftWarning, match="file is missing"):
            drift = await core.verify_checksums()

        assert drift[0].missing_file is True

    async def test_no_drift(self, core, two_migrations, recwarn):
        await core.execute_all_migrations()

        assert await core.verify_checksums() == []
        assert not [w for w in recwarn if issubclass(w.category, ChecksumDriftWarning)]

    def test_checksum_is_sha256(self, core):
        checksum = core.calculate_checksum("SELECT 1;")

        assert re.fullmatch(r"[0-9a-f]{64}", checksum)
        assert core.calculate_checksum("SELECT 1;") == checksum
        assert core.calculate_checksum("SELECT 2;") != checksum


class TestValidation:
    """validate_migration()."""

    def test_valid_migration(self, core):
        migration = _file(
            "20240101000000_create_items",
            "-- items\nCREATE TABLE IF NOT EXISTS items (id INTEGER PRIMARY KEY AUTOINCREMENT);\n"
            "DELETE FROM items WHERE id < 0;\nDROP INDEX IF EXISTS idx_old;",
        )

        assert core.validate_migration(migration) == []

    def test_bad_name(self, core):
        problems = core.validate_migration(_file("create_items", "SELECT 1;"))

        assert any("name must be" in problem for problem in problems)

    def test_empty(self, core):
        problems = core.validate_migration(_file("20240101000000_empty", "-- nothing here\n"))

        assert problems == ["20240101000000_empty: contains no SQL statements"]

    @pytest.mark.parametrize(
        "content, expected",
        [
            ("CREATE TABLE t (id INTEGER AUTO_INCREMENT);", "AUTO_INCREMENT"),
            ("CREATE TABLE t (id SERIAL);", "SERIAL"),
            ("DROP TABLE users;", "drops a table without IF EXISTS"),
            ("DROP INDEX idx_users_email;", "drops an index without IF EXISTS"),
            ("BEGIN;\nCREATE TABLE t (id INTEGER);\nCOMMIT;", "controls the transaction"),
            ("DELETE FROM users;", "deletes without a WHERE clause"),
        ],
    )
    def test_problems(self, core, content, expected):
        problems = core.validate_migration(_file("20240101000000_check", content))

        assert any(expected in problem for problem in problems)


class TestCreateMigration:
    """create_migration()."""

    async def test_creates_timestamped_file(self, core, migrations_dir):
        migration = await core.create_migration("Add items table", CREATE_ITEMS)

        assert re.fullmatch(r"\d{14}_Add_items_table", migration.name)
        assert migration.path.parent == migrations_dir
        assert migration.path.read_text(encoding="utf-8") == CREATE_ITEMS
        assert [f.name for f in await core.list_migration_files()] == [migration.name]

    async def test_same_second_gets_next_timestamp(self, core):
        first = await core.create_migration("one", "SELECT 1;")
        second = await core.create_migration("two", "SELECT 2;")

        assert second.timestamp > first.timestamp
        names = [f.name for f in await core.list_migration_files()]
        assert names == [first.name, second.name]

    async def test_invalid_description(self, core):
        with pytest.raises(ValidationError) as exc_info:
            await core.create_migration("!!!", "SELECT 1;")

        assert exc_info.value.code == "MIGRATION_INVALID"

    async def test_created_migration_applies(self, core, connector):
        await core.create_migration("items", CREATE_ITEMS)

        assert (await core.execute_all_migrations()).executed == 1
        assert await _table_exists(connector, "items")
