"""Unit tests for schema discovery.

Discovery must reproduce exactly what the engine reports: column
nullability straight from ``notnull``, primary keys in key order and every
column of every foreign key.
"""

from unittest.mock import patch

import pytest

from sqlitune.config.models import DiscoveryConfig
from sqlitune.core.exceptions import QueryError, TableNotFoundError
from sqlitune.database.models import SchemaSnapshot
from sqlitune.schema.discovery import SchemaDiscovery, extract_check_constraints


class TestColumns:
    """Column metadata of the sample schema."""

    async def test_tables_listed_by_name(self, discovery):
        snapshot = await discovery.discover()

        assert isinstance(snapshot, SchemaSnapshot)
        assert snapshot.table_names == ["posts", "users"]
        assert snapshot.warnings == ()

    async def test_nullability_matches_engine(self, discovery):
        """Only NOT NULL columns are reported non-nullable."""
        users = await discovery.get_table("users")

        nullability = {column.name: column.nullable for column in users.columns}
        assert nullability == {"id": True, "email": False, "name": True, "created_at": True}

    async def test_primary_key_and_rowid_alias(self, discovery):
        users = await discovery.get_table("users")
        posts = await discovery.get_table("posts")

        assert users.primary_key == ("id",)
        assert users.get_column("id").is_primary_key
        assert users.get_column("id").auto_increment_kind == "rowid"
        assert posts.get_column("id").auto_increment_kind == "autoincrement"
        assert posts.rowid_alias == "id"
        assert not users.get_column("email").is_primary_key

    async def test_autoincrement_keyword_outside_code_ignored(self, connector, discovery):
        await connector.execute_query(
            "CREATE TABLE notes (\n"
            "    id INTEGER PRIMARY KEY, -- not AUTOINCREMENT\n"
            "    body TEXT DEFAULT 'AUTOINCREMENT',\n"
            '    "autoincrement" TEXT\n'
            ")"
        )

        notes = (await discovery.discover(force=True)).require_table("notes")

        assert notes.get_column("id").auto_increment_kind == "rowid"
        assert notes.get_column("body").default_value == "'AUTOINCREMENT'"

    async def test_declared_types_and_defaults(self, discovery):
        users = await discovery.get_table("users")

        created_at = users.get_column("created_at")
        assert created_at.declared_type == "TEXT"
        assert created_at.default_value == "CURRENT_TIMESTAMP"
        assert created_at.type_affinity == "TEXT"
        assert [column.position for column in users.columns] == [0, 1, 2, 3]

    async def test_column_lookup_is_case_insensitive(self, discovery):
        users = await discovery.get_table("USERS")

        assert users.get_column("EMAIL").name == "email"
        assert users.has_column("Name")
        assert not users.has_column("emial")


class TestForeignKeys:
    """Foreign key metadata."""

    async def test_single_column_foreign_key(self, discovery):
        posts = await discovery.get_table("posts")

        assert len(posts.foreign_keys) == 1
        fk = posts.foreign_keys[0]
        assert fk.column == "user_id"
        assert fk.referenced_table == "users"
        assert fk.referenced_column == "id"
        assert fk.on_delete == "CASCADE"
        assert fk.on_update == "NO ACTION"

    async def test_composite_foreign_key(self, connector, discovery):
        await connector.execute_script("""
            CREATE TABLE regions (country TEXT, code TEXT, PRIMARY KEY (country, code));
            CREATE TABLE stores (
                id INTEGER PRIMARY KEY,
                country TEXT,
                region TEXT,
                FOREIGN KEY (country, region) REFERENCES regions (country, code)
            );
        """)

        stores = (await discovery.discover(force=True)).require_table("stores")
        regions = (await discovery.get_schema()).require_table("regions")

        assert regions.primary_key == ("country", "code")
        assert [(fk.id, fk.seq, fk.column, fk.referenced_column) for fk in stores.foreign_keys] == [
            (0, 0, "country", "country"),
            (0, 1, "region", "code"),
        ]

    async def test_reference_without_column_list(self, connector, discovery):
        """A bare REFERENCES parent targets the parent's primary key."""
        await connector.execute_query(
            "CREATE TABLE comments (id INTEGER PRIMARY KEY, post_id INTEGER REFERENCES posts)"
        )

        comments = (await discovery.discover(force=True)).require_table("comments")

        assert comments.foreign_keys[0].referenced_column == "id"


class TestIndexesAndOptions:
    """Indexes, views, row counts and exclusions."""

    async def test_indexes(self, connector, discovery):
        await connector.execute_script("""
            CREATE UNIQUE INDEX idx_users_email ON users (email);
            CREATE INDEX idx_posts_user_published ON posts (user_id, published_at);
        """)

        snapshot = await discovery.discover(force=True)
        users = snapshot.require_table("users")
        posts = snapshot.require_table("posts")

        assert users.indexes[0].name == "idx_users_email"
        assert users.indexes[0].unique is True
        assert posts.indexes[0].columns == ("user_id", "published_at")
        assert posts.is_covered_by_index(["user_id"])
        assert not posts.is_covered_by_index(["published_at"])
        assert ("email",) in users.unique_constraints

    async def test_without_rowid_and_checks(self, connector, discovery):
        await connector.execute_query(
            "CREATE TABLE kv (k TEXT PRIMARY KEY, v INTEGER CHECK (v >= 0)) WITHOUT ROWID"
        )

        kv = (await discovery.discover(force=True)).require_table("kv")

        assert kv.without_rowid is True
        assert kv.rowid_alias is None
        assert kv.check_constraints == ("v >= 0",)

    async def test_tracking_table_excluded(self, connector, discovery):
        await connector.execute_query("CREATE TABLE migrations (id INTEGER PRIMARY KEY)")

        snapshot = await discovery.discover(force=True)

        assert "migrations" not in snapshot.table_names

    async def test_configured_exclusions(self, connector):
        discovery = SchemaDiscovery(connector, DiscoveryConfig(exclude_tables=["posts"]))

        assert (await discovery.discover()).table_names == ["users"]

    async def test_views_optional(self, connector, discovery):
        await connector.execute_query("CREATE VIEW active_users AS SELECT id, email FROM users")

        assert "active_users" not in (await discovery.discover(force=True)).table_names

        with_views = SchemaDiscovery(connector, DiscoveryConfig(include_views=True))
        view = (await with_views.discover()).require_table("active_users")
        assert view.is_view is True
        assert view.column_names == ("id", "email")

    async def test_row_counts(self, connector):
        await connector.execute_query("INSERT INTO users (email) VALUES ('a@example.com')")
        discovery = SchemaDiscovery(connector, DiscoveryConfig(count_rows=True))

        snapshot = await discovery.discover()

        assert snapshot.require_table("users").row_count == 1
        assert snapshot.require_table("posts").row_count == 0


class TestCaching:
    """Snapshot caching and invalidation."""

    async def test_snapshot_cached(self, connector, discovery):
        first = await discovery.get_schema()
        await connector.execute_query("CREATE TABLE tags (id INTEGER PRIMARY KEY)")

        assert await discovery.get_schema() is first

    async def test_invalidate(self, connector, discovery):
        await discovery.get_schema()
        await connector.execute_query("CREATE TABLE tags (id INTEGER PRIMARY KEY)")

        discovery.invalidate()

        assert "tags" in (await discovery.get_schema()).table_names

    async def test_unknown_table(self, discovery):
        with pytest.raises(TableNotFoundError) as exc_info:
            await discovery.get_table("comments")

        assert exc_info.value.available_options == ["posts", "users"]
        assert await discovery.table_exists("users")
        assert not await discovery.table_exists("comments")


class TestDegradation:
    """Failures never escape discovery."""

    async def test_closed_connection_yields_empty_snapshot(self, connector, discovery):
        await connector.cleanup()

        snapshot = await discovery.discover()

        assert len(snapshot) == 0
        assert snapshot.warnings[0].code == "INTROSPECTION_FAILED"

    async def test_dead_connection_yields_empty_snapshot(self, connector, discovery):
        """The underlying connection closing behind the connector degrades too."""
        await connector._connection.close()

        snapshot = await discovery.discover(force=True)

        assert len(snapshot) == 0
        assert snapshot.warnings[0].code == "INTROSPECTION_FAILED"

    async def test_failed_snapshot_not_cached(self, connector, discovery):
        with patch.object(connector, "fetch_all", side_effect=QueryError("locked")):
            assert len(await discovery.discover()) == 0

        assert len(await discovery.discover()) == 2

    async def test_facet_failure_degrades_one_table(self, connector, discovery):
        original = connector.pragma

        async def failing_pragma(name, argument=None):
            if name == "foreign_key_list" and argument == "posts":
                raise QueryError("disk I/O error")
            return await original(name, argument)

        with patch.object(connector, "pragma", side_effect=failing_pragma):
            snapshot = await discovery.discover()

        posts = snapshot.require_table("posts")
        assert posts.foreign_keys == ()
        assert posts.column_names == ("id", "user_id", "title", "body", "published_at")
        assert len(snapshot.warnings) == 1
        assert snapshot.warnings[0].table == "posts"
        assert snapshot.warnings[0].operation == "foreign_keys"


class TestExtractCheckConstraints:
    """CHECK expression extraction."""

    def test_nested_parentheses_and_strings(self):
        sql = (
            "CREATE TABLE t (a INTEGER CHECK (a > (1 + 1)), "
            "b TEXT CHECK (b <> ')'), CHECK (length(b) < 10))"
        )

        assert extract_check_constraints(sql) == ("a > (1 + 1)", "b <> ')'", "length(b) < 10")

    def test_no_sql(self):
        assert extract_check_constraints(None) == ()
        assert extract_check_constraints("CREATE TABLE t (a)") == ()
