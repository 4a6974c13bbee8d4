"""SQL dialect capability records."""

from tablepipe.dialects.base import IdentifierRules, SqlDialect, TableRef, TypeMapper
from tablepipe.dialects.duckdb_dialect import DuckDBDialect
from tablepipe.dialects.postgres_dialect import PostgresDialect
from tablepipe.dialects.sqlite_dialect import SQLiteDialect

__all__ = [
    "DuckDBDialect",
    "IdentifierRules",
    "PostgresDialect",
    "SQLiteDialect",
    "SqlDialect",
    "TableRef",
    "TypeMapper",
]
