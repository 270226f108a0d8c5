"""Migration-specific fixtures."""

import pytest

from sqlitune.migration.core import MigrationCore
from sqlitune.migration.manager import MigrationManager
from sqlitune.migration.resources import ResourceManager

CREATE_ITEMS = "CREATE TABLE items (id INTEGER PRIMARY KEY, label TEXT NOT NULL);"
ALTER_ITEMS = "ALTER TABLE items ADD COLUMN note TEXT;\nINSERT INTO items (label, note) VALUES ('first', 'from b');"


@pytest.fixture
def core(connector, migration_config, discovery):
    return MigrationCore(connector, migration_config, discovery=discovery)


@pytest.fixture
async def resources(resource_config):
    manager = ResourceManager(resource_config)
    yield manager
    await manager.cleanup()


@pytest.fixture
def manager(core, resources):
    return MigrationManager(core, resources)


@pytest.fixture
def two_migrations(write_migration):
    """The first migration creates a table the second one alters."""
    return [
        write_migration("20240101000000_a.sql", CREATE_ITEMS),
        write_migration("20240102000000_b.sql", ALTER_ITEMS),
    ]
