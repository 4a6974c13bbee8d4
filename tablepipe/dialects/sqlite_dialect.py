"""SQLite dialect over a raw pysqlite connection obtained through SQLAlchemy."""

import datetime as dt
import re
import sqlite3
import uuid
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from tablepipe.core.models import SemanticType, TargetColumn, TargetSchema
from tablepipe.dialects.base import (
    IdentifierRules,
    SqlDialect,
    TableRef,
    TypeMapper,
    parse_type_arguments,
)
from tablepipe.logging import get_logger

logger = get_logger(__name__)


class SQLiteTypeMapper(TypeMapper):
    """Maps semantic types to SQLite declared types.

    Declared types are matched by substring, following SQLite's own affinity
    rules.
    """

    _NATIVE = {
        SemanticType.STRING: "TEXT",
        SemanticType.INTEGER: "INTEGER",
        SemanticType.LONG: "INTEGER",
        SemanticType.DECIMAL: "NUMERIC",
        SemanticType.FLOAT: "REAL",
        SemanticType.BOOLEAN: "INTEGER",
        SemanticType.TIMESTAMP: "TEXT",
        SemanticType.TIMESTAMP_TZ: "TEXT",
        SemanticType.GUID: "TEXT",
        SemanticType.BYTES: "BLOB",
    }

    def native_type(self, semantic_type: SemanticType) -> str:
        return self._NATIVE[semantic_type]

    def semantic_type(self, native_type: str) -> SemanticType:
        upper = native_type.split("(")[0].strip().upper()
        if "INT" in upper:
            return SemanticType.LONG
        if "CHAR" in upper or "TEXT" in upper or "CLOB" in upper:
            return SemanticType.STRING
        if "BLOB" in upper:
            return SemanticType.BYTES
        if "REAL" in upper or "FLOA" in upper or "DOUB" in upper:
            return SemanticType.FLOAT
        if "BOOL" in upper:
            return SemanticType.BOOLEAN
        if "DATE" in upper or "TIME" in upper:
            return SemanticType.TIMESTAMP
        if "DECIMAL" in upper or "NUMERIC" in upper:
            return SemanticType.DECIMAL
        return SemanticType.STRING


def adapt_value(value: Any) -> Any:
    """Turn converted values into types pysqlite binds natively."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dt.datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, (dt.date, uuid.UUID)):
        return str(value)
    return value


class SQLiteDialect(SqlDialect):
    """SQLite capability record."""

    name = "sqlite"
    # SQLite matches identifiers case-insensitively and keeps their spelling
    identifiers = IdentifierRules(fold=None)
    type_mapper = SQLiteTypeMapper()

    def connect(self, connection_string: str) -> Any:
        path = connection_string or ":memory:"
        engine = create_engine(
            f"sqlite:///{path}",
            poolclass=NullPool,
            connect_args={"check_same_thread": False},
        )
        connection = engine.raw_connection()
        # Transactions are issued explicitly with BEGIN/COMMIT
        connection.driver_connection.isolation_level = None
        logger.debug(f"Opened SQLite database: {path}")
        return connection

    def interrupt(self, connection: Any) -> None:
        connection.driver_connection.interrupt()

    def execute(self, connection: Any, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        logger.debug(f"SQLite execute: {sql}")
        cursor = connection.cursor()
        try:
            cursor.execute(sql, tuple(params) if params is not None else ())
        finally:
            cursor.close()

    def query(
        self, connection: Any, sql: str, params: Optional[Sequence[Any]] = None
    ) -> List[tuple]:
        logger.debug(f"SQLite query: {sql}")
        cursor = connection.cursor()
        try:
            cursor.execute(sql, tuple(params) if params is not None else ())
            return [tuple(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def execute_script(self, connection: Any, sql: str) -> None:
        logger.debug(f"SQLite script: {sql}")
        connection.driver_connection.executescript(sql)

    def truncate_sql(self, qualified_table: str) -> str:
        # SQLite has no TRUNCATE; an unqualified DELETE uses the truncate optimization
        return f"DELETE FROM {qualified_table}"

    def resolve_table(self, connection: Any, table: str) -> TableRef:
        ref = self.split_table_name(table, None)
        rows = self.query(
            connection,
            "SELECT name FROM sqlite_master WHERE type = 'table' AND lower(name) = lower(?)",
            [ref.name],
        )
        if rows:
            return TableRef(ref.schema, rows[0][0])
        return ref

    def inspect(self, connection: Any, ref: TableRef) -> TargetSchema:
        quoted = self.identifiers.quote(ref.name)
        info = self.query(connection, f"PRAGMA table_info({quoted})")
        if not info:
            return TargetSchema.missing()

        unique = set()
        for index_row in self.query(connection, f"PRAGMA index_list({quoted})"):
            # (seq, name, unique, origin, partial)
            index_name, is_unique, origin = index_row[1], index_row[2], index_row[3]
            if not is_unique or origin != "u":
                continue
            index_columns = self.query(
                connection, f"PRAGMA index_info({self.identifiers.quote(index_name)})"
            )
            if len(index_columns) == 1:
                unique.add(index_columns[0][2])

        pk_positions = sorted((row[5], row[1]) for row in info if row[5])
        primary_key = [name for _, name in pk_positions]

        columns = []
        for _cid, name, declared, notnull, _default, pk in info:
            declared = declared or ""
            first_arg, second_arg = parse_type_arguments(declared)
            is_text = bool(re.search(r"CHAR|TEXT|CLOB", declared, re.IGNORECASE))
            columns.append(
                TargetColumn(
                    name=name,
                    native_type=declared or "BLOB",
                    semantic_type=self.type_mapper.semantic_type(declared),
                    nullable=not notnull and not pk,
                    primary_key=bool(pk),
                    unique=name in unique,
                    max_length=first_arg if is_text else None,
                    precision=None if is_text else first_arg,
                    scale=None if is_text else second_arg,
                )
            )

        row_count = self.query(connection, f"SELECT COUNT(*) FROM {self.qualified_name(ref)}")[0][0]
        return TargetSchema(
            exists=True,
            columns=tuple(columns),
            row_count=row_count,
            size_bytes=self._table_size(connection, ref),
            primary_key=tuple(primary_key),
        )

    def _table_size(self, connection: Any, ref: TableRef) -> Optional[int]:
        """Pages used by the table and its indexes, or the whole file without dbstat."""
        try:
            rows = self.query(
                connection,
                "SELECT SUM(pgsize) FROM dbstat "
                "WHERE name IN (SELECT name FROM sqlite_master WHERE tbl_name = ?)",
                [ref.name],
            )
            return rows[0][0]
        except sqlite3.Error as e:
            logger.debug(f"dbstat unavailable, reporting database size instead: {e}")
        page_count = self.query(connection, "PRAGMA page_count")[0][0]
        page_size = self.query(connection, "PRAGMA page_size")[0][0]
        return page_count * page_size

    def bulk_import(
        self,
        connection: Any,
        qualified_table: str,
        columns: Sequence[TargetColumn],
        rows: Sequence[Sequence[Any]],
    ) -> None:
        target_cols = ", ".join(self.identifiers.quote(c.name) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {qualified_table} ({target_cols}) VALUES ({placeholders})"
        logger.debug(f"SQLite executemany: {sql} ({len(rows)} rows)")
        cursor = connection.cursor()
        try:
            cursor.executemany(sql, [tuple(adapt_value(v) for v in row) for row in rows])
        finally:
            cursor.close()
