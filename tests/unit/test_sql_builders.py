"""Tests for identifier rules, table name resolution and SQL builders."""

import pytest

from tablepipe.core.models import ColumnInfo, SemanticType, TargetColumn, TargetSchema
from tablepipe.dialects import PostgresDialect, SQLiteDialect
from tablepipe.dialects.base import IdentifierRules, TableRef
from tablepipe.dialects.sql import (
    build_add_column,
    build_create_from_snapshot,
    build_create_table,
    build_delete_all,
    build_drop_table,
    build_on_conflict_merge,
    build_update_insert_merge,
)


@pytest.fixture
def sqlite():
    return SQLiteDialect()


@pytest.fixture
def postgres():
    return PostgresDialect()


class TestIdentifierRules:
    @pytest.mark.parametrize(
        "fold,name,expected",
        [
            ("lower", "orders", False),
            ("lower", "Orders", True),
            ("lower", "order", True),
            ("lower", "my col", True),
            ("lower", "1st", True),
            (None, "Orders", False),
            ("upper", "ORDERS", False),
        ],
    )
    def test_needs_quoting(self, fold, name, expected):
        assert IdentifierRules(fold=fold).needs_quoting(name) is expected

    def test_quote_escapes_quote_char(self):
        assert IdentifierRules().quote('a"b') == '"a""b"'
        assert IdentifierRules(quote_char="`").quote("a`b") == "`a``b`"


class TestTableNames:
    def test_split_folds_unquoted_parts_only(self, postgres):
        ref = postgres.split_table_name('Sales."Order Items"', "public")

        assert ref == TableRef("sales", "Order Items")

    def test_unqualified_name_uses_default_schema(self, postgres):
        assert postgres.split_table_name("Orders", "public") == TableRef("public", "orders")

    def test_dot_inside_quotes_is_part_of_the_name(self, sqlite):
        assert sqlite.split_table_name('"a.b"', None) == TableRef(None, "a.b")

    def test_qualified_name_quotes_only_when_needed(self, postgres):
        assert postgres.qualified_name(TableRef("public", "orders")) == "public.orders"
        assert postgres.qualified_name(TableRef("sales", "Order Items")) == 'sales."Order Items"'
        assert postgres.qualified_name(TableRef(None, "user")) == '"user"'


class TestBuilders:
    def test_create_table(self, sqlite):
        columns = [
            ColumnInfo("id", SemanticType.INTEGER, nullable=True),
            ColumnInfo("name", SemanticType.STRING),
        ]

        sql = build_create_table(sqlite, "orders", columns, primary_key=["id"])

        assert sql == (
            "CREATE TABLE IF NOT EXISTS orders (\n"
            '    "id" INTEGER NOT NULL,\n'
            '    "name" TEXT,\n'
            '    PRIMARY KEY ("id")\n'
            ")"
        )

    def test_create_from_snapshot_keeps_native_types(self, sqlite):
        snapshot = TargetSchema(
            exists=True,
            columns=(
                TargetColumn("code", "CHAR(10)", SemanticType.STRING, nullable=False, primary_key=True),
                TargetColumn("amount", "DECIMAL(10,2)", SemanticType.DECIMAL),
            ),
            primary_key=("code",),
        )

        sql = build_create_from_snapshot(sqlite, "prices", snapshot)

        assert '"code" CHAR(10) NOT NULL' in sql
        assert '"amount" DECIMAL(10,2),' in sql
        assert sql.startswith("CREATE TABLE prices (")
        assert 'PRIMARY KEY ("code")' in sql

    def test_simple_statements(self, postgres):
        assert build_add_column(postgres, "t", ColumnInfo("Total", SemanticType.DECIMAL)) == (
            'ALTER TABLE t ADD COLUMN "Total" NUMERIC'
        )
        assert build_drop_table("t") == "DROP TABLE IF EXISTS t"
        assert build_delete_all("t") == "DELETE FROM t"
        assert postgres.truncate_sql("t") == "TRUNCATE TABLE t"

    def test_on_conflict_upsert(self, sqlite):
        sql = build_on_conflict_merge(sqlite, "orders", "stg", ["id", "name"], ["id"], True)

        assert sql == (
            'INSERT INTO orders ("id", "name") SELECT "id", "name" FROM "stg" WHERE true '
            'ON CONFLICT ("id") DO UPDATE SET "name" = EXCLUDED."name"'
        )

    def test_on_conflict_ignore_and_key_only_upsert(self, sqlite):
        ignore = build_on_conflict_merge(sqlite, "orders", "stg", ["id", "name"], ["id"], False)
        key_only = build_on_conflict_merge(sqlite, "orders", "stg", ["id"], ["id"], True)

        assert ignore.endswith('ON CONFLICT ("id") DO NOTHING')
        assert key_only.endswith("DO NOTHING")

    def test_update_insert_merge(self, sqlite):
        statements = build_update_insert_merge(
            sqlite, "orders", "stg", ["id", "region", "name"], ["id", "region"], True
        )

        assert len(statements) == 2
        assert statements[0] == (
            'UPDATE orders AS tgt SET "name" = src."name" FROM "stg" AS src '
            'WHERE tgt."id" = src."id" AND tgt."region" = src."region"'
        )
        assert statements[1].startswith('INSERT INTO orders ("id", "region", "name") SELECT src."id"')
        assert "WHERE NOT EXISTS (SELECT 1 FROM orders AS tgt WHERE" in statements[1]

    def test_update_insert_merge_ignore_skips_update(self, sqlite):
        statements = build_update_insert_merge(sqlite, "orders", "stg", ["id", "name"], ["id"], False)

        assert len(statements) == 1
        assert statements[0].startswith("INSERT INTO orders")


class TestStaging:
    def test_staging_name(self, sqlite):
        name = sqlite.staging_name()

        assert name.startswith("tp_stg_")
        assert len(name) == len("tp_stg_") + 16
        assert name != sqlite.staging_name()

    def test_generic_staging_table(self, sqlite):
        assert sqlite.create_staging_sql("tp_stg_1", "orders", ['"id"', '"name"']) == (
            'CREATE TEMP TABLE "tp_stg_1" AS SELECT "id", "name" FROM orders WHERE 1 = 0'
        )

    def test_postgres_staging_table(self, postgres):
        sql = postgres.create_staging_sql("tp_stg_1", "public.orders", ['"id"'])

        assert sql.startswith('CREATE TEMP TABLE "tp_stg_1"')
        assert sql.endswith('SELECT "id" FROM public.orders WITH NO DATA')
