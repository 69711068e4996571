"""
Tests for Index Management Module

These tests validate capture, drop and faithful recreation of secondary
indexes, and that the manager stays inert unless enabled.
"""

from unittest.mock import MagicMock

from mysql_pg_migration.index_manager import INDEX_QUERY, IndexManager
from mysql_pg_migration.models import IndexDescriptor, MigrationOptions


INDEXES = {
    "users": [
        ("index_users_on_email", True, ["email"]),
        ("index_users_on_last_name_and_first_name", False, ["last_name", "first_name"]),
    ],
}


class TestIndexManager:
    """Test IndexManager."""

    def test_disabled_by_default(self, fake_target):
        conn = fake_target(indexes=INDEXES)
        manager = IndexManager(conn, MigrationOptions())

        assert manager.drop("users") == []
        assert conn.statements == []

    def test_disabled_in_dry_run(self, fake_target):
        conn = fake_target(indexes=INDEXES)
        manager = IndexManager(conn, MigrationOptions(drop_indexes=True, dry_run=True))

        assert manager.drop("users") == []
        assert manager.restore([IndexDescriptor("ix", "users", ("a",))]) == 0
        assert conn.statements == []

    def test_drop_captures_in_column_order(self, fake_target):
        conn = fake_target(indexes=INDEXES)
        manager = IndexManager(conn, MigrationOptions(drop_indexes=True))

        captured = manager.drop("users")

        assert captured == [
            IndexDescriptor(
                "index_users_on_email", "users", ("email",), True,
                "CREATE UNIQUE INDEX index_users_on_email ON public.users USING btree (email)",
            ),
            IndexDescriptor(
                "index_users_on_last_name_and_first_name", "users", ("last_name", "first_name"), False,
                "CREATE INDEX index_users_on_last_name_and_first_name ON public.users USING btree (last_name, first_name)",
            ),
        ]
        assert conn.indexes["users"] == []
        drops = [s for s in conn.statements if s.startswith("DROP INDEX")]
        assert drops == [
            'DROP INDEX "public"."index_users_on_email"',
            'DROP INDEX "public"."index_users_on_last_name_and_first_name"',
        ]
        # one transaction for all drops
        assert conn.commits == 1

    def test_no_indexes_means_no_drop_transaction(self, fake_target):
        conn = fake_target()
        manager = IndexManager(conn, MigrationOptions(drop_indexes=True))

        assert manager.drop("users") == []
        assert conn.commits == 0

    def test_restore_recreates_exactly(self, fake_target):
        conn = fake_target(indexes=INDEXES)
        manager = IndexManager(conn, MigrationOptions(drop_indexes=True))

        captured = manager.drop("users")
        restored = manager.restore(captured)

        assert restored == 2
        creates = [s for s in conn.statements if s.startswith("CREATE")]
        assert creates == [
            "CREATE UNIQUE INDEX index_users_on_email ON public.users USING btree (email)",
            "CREATE INDEX index_users_on_last_name_and_first_name ON public.users USING btree (last_name, first_name)",
        ]

    def test_partial_and_expression_indexes_replayed_verbatim(self, fake_target):
        partial = (
            "CREATE UNIQUE INDEX index_users_on_email_active ON public.users "
            "USING btree (email) WHERE (deleted_at IS NULL)"
        )
        expression = "CREATE INDEX index_users_on_lower_email ON public.users USING btree (lower((email)::text))"
        covering = "CREATE INDEX index_users_on_name ON public.users USING btree (last_name DESC) INCLUDE (first_name)"
        conn = fake_target(indexes={"users": [
            ("index_users_on_email_active", True, ["email"], partial),
            ("index_users_on_lower_email", False, [], expression),
            ("index_users_on_name", False, ["last_name", "first_name"], covering),
        ]})
        manager = IndexManager(conn, MigrationOptions(drop_indexes=True))

        captured = manager.drop("users")
        manager.restore(captured)

        assert [i.columns for i in captured] == [("email",), (), ("last_name", "first_name")]
        creates = [s for s in conn.statements if s.startswith("CREATE")]
        assert creates == [partial, expression, covering]

    def test_capture_query_keeps_expression_indexes(self):
        # expression keys have no pg_attribute row; inner joins would drop the index
        assert "LEFT JOIN LATERAL unnest" in INDEX_QUERY
        assert "LEFT JOIN pg_attribute" in INDEX_QUERY
        assert "pg_get_indexdef(ix.indexrelid)" in INDEX_QUERY

    def test_restore_one_transaction_per_table(self):
        conn = MagicMock()
        conn.closed = 0
        manager = IndexManager(conn, MigrationOptions(drop_indexes=True))
        indexes = [
            IndexDescriptor("ix_a", "users", ("a",)),
            IndexDescriptor("ix_b", "orders", ("b",)),
            IndexDescriptor("ix_c", "users", ("c",)),
        ]

        assert manager.restore(indexes) == 3
        assert conn.commit.call_count == 2

    def test_definition_preferred_over_columns(self, render_sql):
        manager = IndexManager(MagicMock(), MigrationOptions(drop_indexes=True))
        index = IndexDescriptor("ix", "users", ("a",), False, "CREATE INDEX ix ON public.users USING gin (a)")

        assert render_sql(manager.create_statement(index)) == "CREATE INDEX ix ON public.users USING gin (a)"

    def test_uses_target_schema(self, render_sql):
        manager = IndexManager(MagicMock(), MigrationOptions(drop_indexes=True, target_schema="app"))

        statement = manager.create_statement(IndexDescriptor("ix", "users", ("a", "b"), True))

        assert render_sql(statement) == 'CREATE UNIQUE INDEX "ix" ON "app"."users" ("a", "b")'
