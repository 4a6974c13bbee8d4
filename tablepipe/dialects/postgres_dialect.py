"""PostgreSQL dialect: psycopg2 COPY bulk path and catalog introspection."""

import datetime as dt
import io
from typing import Any, List, Optional, Sequence

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.pool import NullPool

from tablepipe.core.models import SemanticType, TargetColumn, TargetSchema
from tablepipe.dialects.base import IdentifierRules, SqlDialect, TableRef, TypeMapper
from tablepipe.logging import get_logger
from tablepipe.security import sanitize_connection_string

logger = get_logger(__name__)

POSTGRES_RESERVED_WORDS = frozenset(
    {
        "all", "analyse", "analyze", "and", "any", "array", "as", "asc",
        "asymmetric", "authorization", "binary", "both", "case", "cast", "check",
        "collate", "collation", "column", "concurrently", "constraint", "create",
        "cross", "current_catalog", "current_date", "current_role",
        "current_schema", "current_time", "current_timestamp", "current_user",
        "default", "deferrable", "desc", "distinct", "do", "else", "end",
        "except", "false", "fetch", "for", "foreign", "freeze", "from", "full",
        "grant", "group", "having", "ilike", "in", "initially", "inner",
        "intersect", "into", "is", "isnull", "join", "lateral", "leading", "left",
        "like", "limit", "localtimestamp", "natural", "not", "notnull", "null",
        "offset", "on", "only", "or", "order", "outer", "overlaps", "placing",
        "primary", "references", "returning", "right", "select", "session_user",
        "similar", "some", "symmetric", "table", "then", "to", "trailing", "true",
        "union", "unique", "user", "using", "variadic", "verbose", "when", "where",
        "window", "with",
    }
)  # fmt: skip


class PostgresTypeMapper(TypeMapper):
    """Maps semantic types to PostgreSQL types."""

    _NATIVE = {
        SemanticType.STRING: "TEXT",
        SemanticType.INTEGER: "INTEGER",
        SemanticType.LONG: "BIGINT",
        SemanticType.DECIMAL: "NUMERIC",
        SemanticType.FLOAT: "DOUBLE PRECISION",
        SemanticType.BOOLEAN: "BOOLEAN",
        SemanticType.TIMESTAMP: "TIMESTAMP",
        SemanticType.TIMESTAMP_TZ: "TIMESTAMPTZ",
        SemanticType.GUID: "UUID",
        SemanticType.BYTES: "BYTEA",
    }

    _SEMANTIC = {
        "boolean": SemanticType.BOOLEAN,
        "bool": SemanticType.BOOLEAN,
        "smallint": SemanticType.INTEGER,
        "int2": SemanticType.INTEGER,
        "integer": SemanticType.INTEGER,
        "int": SemanticType.INTEGER,
        "int4": SemanticType.INTEGER,
        "bigint": SemanticType.LONG,
        "int8": SemanticType.LONG,
        "real": SemanticType.FLOAT,
        "float4": SemanticType.FLOAT,
        "double precision": SemanticType.FLOAT,
        "float8": SemanticType.FLOAT,
        "numeric": SemanticType.DECIMAL,
        "decimal": SemanticType.DECIMAL,
        "date": SemanticType.TIMESTAMP,
        "timestamp": SemanticType.TIMESTAMP,
        "timestamp without time zone": SemanticType.TIMESTAMP,
        "timestamptz": SemanticType.TIMESTAMP_TZ,
        "timestamp with time zone": SemanticType.TIMESTAMP_TZ,
        "uuid": SemanticType.GUID,
        "bytea": SemanticType.BYTES,
    }

    def native_type(self, semantic_type: SemanticType) -> str:
        return self._NATIVE[semantic_type]

    def semantic_type(self, native_type: str) -> SemanticType:
        base = native_type.split("(")[0].strip().lower()
        return self._SEMANTIC.get(base, SemanticType.STRING)


def format_copy_value(value: Any) -> str:
    """Render one value as a CSV field for COPY ... (FORMAT csv).

    NULL is the unquoted empty field, so every string is quoted to keep empty
    strings distinct from NULL.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "t" if value else "f"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, dt.datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, str):
        return '"' + value.replace('"', '""') + '"'
    return str(value)


def build_postgres_url(connection_string: str) -> str:
    """Normalize postgres:// and postgresql:// URLs to the psycopg2 driver."""
    url = make_url(connection_string)
    if url.drivername in ("postgres", "postgresql"):
        url = url.set(drivername="postgresql+psycopg2")
    return url.render_as_string(hide_password=False)


class PostgresDialect(SqlDialect):
    """PostgreSQL capability record."""

    name = "postgresql"
    identifiers = IdentifierRules(fold="lower", reserved=POSTGRES_RESERVED_WORDS)
    type_mapper = PostgresTypeMapper()

    def connect(self, connection_string: str) -> Any:
        engine = create_engine(
            build_postgres_url(connection_string),
            poolclass=NullPool,
            connect_args={"application_name": "tablepipe"},
        )
        connection = engine.raw_connection()
        # Transactions are issued explicitly with BEGIN/COMMIT
        connection.driver_connection.autocommit = True
        logger.debug(
            f"Opened PostgreSQL connection: {sanitize_connection_string(connection_string)}"
        )
        return connection

    def interrupt(self, connection: Any) -> None:
        # Sends a cancel request to the server over a separate socket
        connection.driver_connection.cancel()

    def execute(self, connection: Any, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        logger.debug(f"PostgreSQL execute: {sql}")
        with connection.cursor() as cursor:
            cursor.execute(sql, tuple(params) if params is not None else None)

    def query(
        self, connection: Any, sql: str, params: Optional[Sequence[Any]] = None
    ) -> List[tuple]:
        logger.debug(f"PostgreSQL query: {sql}")
        with connection.cursor() as cursor:
            cursor.execute(sql, tuple(params) if params is not None else None)
            return [tuple(row) for row in cursor.fetchall()]

    def resolve_table(self, connection: Any, table: str) -> TableRef:
        rows = self.query(
            connection,
            "SELECT n.nspname, c.relname FROM pg_class c "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "WHERE c.oid = to_regclass(%s)::oid",
            [table],
        )
        if rows:
            return TableRef(rows[0][0], rows[0][1])
        default_schema = self.query(connection, "SELECT current_schema()")[0][0]
        return self.split_table_name(table, default_schema)

    def inspect(self, connection: Any, ref: TableRef) -> TargetSchema:
        rows = self.query(
            connection,
            "SELECT column_name, data_type, udt_name, is_nullable, "
            "character_maximum_length, numeric_precision, numeric_scale "
            "FROM information_schema.columns "
            "WHERE table_schema = %s AND table_name = %s ORDER BY ordinal_position",
            [ref.schema, ref.name],
        )
        if not rows:
            return TargetSchema.missing()

        constraint_sql = (
            "SELECT a.attname FROM pg_constraint con "
            "JOIN pg_class c ON c.oid = con.conrelid "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord) ON true "
            "JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum = k.attnum "
            "WHERE n.nspname = %s AND c.relname = %s AND con.contype = %s "
            "AND array_length(con.conkey, 1) {arity} ORDER BY con.oid, k.ord"
        )
        primary_key = [
            r[0]
            for r in self.query(
                connection, constraint_sql.format(arity=">= 1"), [ref.schema, ref.name, "p"]
            )
        ]
        unique = {
            r[0]
            for r in self.query(
                connection, constraint_sql.format(arity="= 1"), [ref.schema, ref.name, "u"]
            )
        }

        columns = []
        for name, data_type, udt_name, is_nullable, max_length, precision, scale in rows:
            native = self._native_type(data_type, udt_name, max_length, precision, scale)
            columns.append(
                TargetColumn(
                    name=name,
                    native_type=native,
                    semantic_type=self.type_mapper.semantic_type(data_type),
                    nullable=is_nullable == "YES",
                    primary_key=name in primary_key,
                    unique=name in unique,
                    max_length=max_length,
                    precision=precision if udt_name == "numeric" else None,
                    scale=scale if udt_name == "numeric" else None,
                )
            )

        stats = self.query(
            connection,
            "SELECT c.reltuples::bigint, pg_total_relation_size(c.oid) FROM pg_class c "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "WHERE n.nspname = %s AND c.relname = %s",
            [ref.schema, ref.name],
        )
        row_count, size_bytes = (stats[0] if stats else (None, None))
        if row_count is not None and row_count < 0:
            # Never analyzed
            row_count = None

        return TargetSchema(
            exists=True,
            columns=tuple(columns),
            row_count=row_count,
            size_bytes=size_bytes,
            primary_key=tuple(primary_key),
        )

    @staticmethod
    def _native_type(data_type, udt_name, max_length, precision, scale) -> str:
        if udt_name == "varchar" and max_length:
            return f"VARCHAR({max_length})"
        if udt_name == "bpchar" and max_length:
            return f"CHAR({max_length})"
        if udt_name == "numeric" and precision is not None:
            return f"NUMERIC({precision},{scale or 0})"
        if data_type == "ARRAY":
            return f"{udt_name.lstrip('_').upper()}[]"
        return udt_name.upper()

    def create_staging_sql(
        self, staging: str, qualified_table: str, quoted_columns: Sequence[str]
    ) -> str:
        cols = ", ".join(quoted_columns)
        return (
            f"CREATE TEMP TABLE {self.identifiers.quote(staging)} ON COMMIT PRESERVE ROWS AS "
            f"SELECT {cols} FROM {qualified_table} WITH NO DATA"
        )

    def bulk_import(
        self,
        connection: Any,
        qualified_table: str,
        columns: Sequence[TargetColumn],
        rows: Sequence[Sequence[Any]],
    ) -> None:
        buffer = io.StringIO()
        for row in rows:
            buffer.write(",".join(format_copy_value(v) for v in row))
            buffer.write("\n")
        buffer.seek(0)

        target_cols = ", ".join(self.identifiers.quote(c.name) for c in columns)
        copy_sql = f"COPY {qualified_table} ({target_cols}) FROM STDIN WITH (FORMAT CSV)"
        logger.debug(f"PostgreSQL copy: {copy_sql} ({len(rows)} rows)")
        with connection.cursor() as cursor:
            cursor.copy_expert(copy_sql, buffer)
