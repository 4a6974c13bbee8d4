"""SQL statement builders shared by every dialect."""

from typing import List, Sequence

from tablepipe.core.models import ColumnInfo, TargetSchema
from tablepipe.dialects.base import SqlDialect


def column_definition(dialect: SqlDialect, name: str, native_type: str, nullable: bool) -> str:
    nullability = "" if nullable else " NOT NULL"
    return f"{dialect.identifiers.quote(name)} {native_type}{nullability}"


def build_create_table(
    dialect: SqlDialect,
    qualified_table: str,
    columns: Sequence[ColumnInfo],
    primary_key: Sequence[str] = (),
) -> str:
    """Build CREATE TABLE from the source's semantic types."""
    definitions = [
        column_definition(
            dialect,
            column.name,
            dialect.type_mapper.native_type(column.type),
            column.nullable and column.name not in primary_key,
        )
        for column in columns
    ]
    if primary_key:
        keys = ", ".join(dialect.identifiers.quote(k) for k in primary_key)
        definitions.append(f"PRIMARY KEY ({keys})")
    body = ",\n    ".join(definitions)
    return f"CREATE TABLE IF NOT EXISTS {qualified_table} (\n    {body}\n)"


def build_create_from_snapshot(
    dialect: SqlDialect, qualified_table: str, snapshot: TargetSchema
) -> str:
    """Build CREATE TABLE that reproduces an introspected structure.

    Native types are reused verbatim so lengths, precision and scale survive.
    """
    definitions = [
        column_definition(dialect, column.name, column.native_type, column.nullable)
        for column in snapshot.columns
    ]
    if snapshot.primary_key:
        keys = ", ".join(dialect.identifiers.quote(k) for k in snapshot.primary_key)
        definitions.append(f"PRIMARY KEY ({keys})")
    body = ",\n    ".join(definitions)
    return f"CREATE TABLE {qualified_table} (\n    {body}\n)"


def build_add_column(dialect: SqlDialect, qualified_table: str, column: ColumnInfo) -> str:
    native = dialect.type_mapper.native_type(column.type)
    return (
        f"ALTER TABLE {qualified_table} ADD COLUMN "
        f"{dialect.identifiers.quote(column.name)} {native}"
    )


def build_drop_table(qualified_table: str) -> str:
    return f"DROP TABLE IF EXISTS {qualified_table}"


def build_delete_all(qualified_table: str) -> str:
    return f"DELETE FROM {qualified_table}"


def build_on_conflict_merge(
    dialect: SqlDialect,
    qualified_table: str,
    staging: str,
    columns: Sequence[str],
    keys: Sequence[str],
    update_existing: bool,
) -> str:
    """Single INSERT ... ON CONFLICT statement; keys must match a unique index."""
    quote = dialect.identifiers.quote
    cols = ", ".join(quote(c) for c in columns)
    conflict = ", ".join(quote(k) for k in keys)
    key_set = set(keys)
    non_keys = [c for c in columns if c not in key_set]

    # WHERE true keeps SQLite from parsing ON CONFLICT as a join constraint
    sql = (
        f"INSERT INTO {qualified_table} ({cols}) "
        f"SELECT {cols} FROM {quote(staging)} WHERE true "
        f"ON CONFLICT ({conflict}) "
    )
    if update_existing and non_keys:
        assignments = ", ".join(f"{quote(c)} = EXCLUDED.{quote(c)}" for c in non_keys)
        return sql + f"DO UPDATE SET {assignments}"
    return sql + "DO NOTHING"


def build_update_insert_merge(
    dialect: SqlDialect,
    qualified_table: str,
    staging: str,
    columns: Sequence[str],
    keys: Sequence[str],
    update_existing: bool,
) -> List[str]:
    """UPDATE ... FROM followed by INSERT ... WHERE NOT EXISTS.

    Used when the key columns are not backed by a unique constraint. Both
    statements run inside the batch transaction.
    """
    quote = dialect.identifiers.quote
    stg = quote(staging)
    key_set = set(keys)
    non_keys = [c for c in columns if c not in key_set]
    cols = ", ".join(quote(c) for c in columns)
    source_cols = ", ".join(f"src.{quote(c)}" for c in columns)
    match = " AND ".join(f"tgt.{quote(k)} = src.{quote(k)}" for k in keys)

    statements = []
    if update_existing and non_keys:
        assignments = ", ".join(f"{quote(c)} = src.{quote(c)}" for c in non_keys)
        statements.append(
            f"UPDATE {qualified_table} AS tgt SET {assignments} "
            f"FROM {stg} AS src WHERE {match}"
        )
    statements.append(
        f"INSERT INTO {qualified_table} ({cols}) "
        f"SELECT {source_cols} FROM {stg} AS src "
        f"WHERE NOT EXISTS (SELECT 1 FROM {qualified_table} AS tgt WHERE {match})"
    )
    return statements
