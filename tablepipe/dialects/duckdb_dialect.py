"""DuckDB dialect: Arrow-registered bulk import and catalog introspection."""

import uuid
from typing import Any, List, Optional, Sequence

import duckdb

from tablepipe.core.models import SemanticType, TargetColumn, TargetSchema
from tablepipe.core.values import rows_to_arrow
from tablepipe.dialects.base import (
    COMMON_RESERVED_WORDS,
    IdentifierRules,
    SqlDialect,
    TableRef,
    TypeMapper,
    base_type_name,
)
from tablepipe.logging import get_logger

logger = get_logger(__name__)

# Bytes per value; variable-length types count as the 16 byte string header
_FIXED_WIDTHS = {
    "BOOLEAN": 1,
    "TINYINT": 1,
    "SMALLINT": 2,
    "INTEGER": 4,
    "BIGINT": 8,
    "HUGEINT": 16,
    "FLOAT": 4,
    "DOUBLE": 8,
    "DECIMAL": 16,
    "DATE": 4,
    "TIME": 8,
    "TIMESTAMP": 8,
    "TIMESTAMP WITH TIME ZONE": 8,
    "UUID": 16,
}


class DuckDBTypeMapper(TypeMapper):
    """Maps semantic types to DuckDB types."""

    _NATIVE = {
        SemanticType.STRING: "VARCHAR",
        SemanticType.INTEGER: "INTEGER",
        SemanticType.LONG: "BIGINT",
        SemanticType.DECIMAL: "DECIMAL(38,10)",
        SemanticType.FLOAT: "DOUBLE",
        SemanticType.BOOLEAN: "BOOLEAN",
        SemanticType.TIMESTAMP: "TIMESTAMP",
        SemanticType.TIMESTAMP_TZ: "TIMESTAMP WITH TIME ZONE",
        SemanticType.GUID: "UUID",
        SemanticType.BYTES: "BLOB",
    }

    _SEMANTIC = {
        "INTEGER": SemanticType.INTEGER,
        "INT": SemanticType.INTEGER,
        "INT4": SemanticType.INTEGER,
        "SMALLINT": SemanticType.INTEGER,
        "INT2": SemanticType.INTEGER,
        "TINYINT": SemanticType.INTEGER,
        "INT1": SemanticType.INTEGER,
        "UTINYINT": SemanticType.INTEGER,
        "USMALLINT": SemanticType.INTEGER,
        "BIGINT": SemanticType.LONG,
        "INT8": SemanticType.LONG,
        "UINTEGER": SemanticType.LONG,
        "BOOLEAN": SemanticType.BOOLEAN,
        "BOOL": SemanticType.BOOLEAN,
        "LOGICAL": SemanticType.BOOLEAN,
        "FLOAT": SemanticType.FLOAT,
        "FLOAT4": SemanticType.FLOAT,
        "REAL": SemanticType.FLOAT,
        "DOUBLE": SemanticType.FLOAT,
        "FLOAT8": SemanticType.FLOAT,
        "DECIMAL": SemanticType.DECIMAL,
        "NUMERIC": SemanticType.DECIMAL,
        "HUGEINT": SemanticType.DECIMAL,
        "UBIGINT": SemanticType.DECIMAL,
        "DATE": SemanticType.TIMESTAMP,
        "TIMESTAMP": SemanticType.TIMESTAMP,
        "DATETIME": SemanticType.TIMESTAMP,
        "TIMESTAMP_S": SemanticType.TIMESTAMP,
        "TIMESTAMP_MS": SemanticType.TIMESTAMP,
        "TIMESTAMP_NS": SemanticType.TIMESTAMP,
        "TIMESTAMPTZ": SemanticType.TIMESTAMP_TZ,
        "TIMESTAMP WITH TIME ZONE": SemanticType.TIMESTAMP_TZ,
        "UUID": SemanticType.GUID,
        "BLOB": SemanticType.BYTES,
        "BYTEA": SemanticType.BYTES,
        "BINARY": SemanticType.BYTES,
        "VARBINARY": SemanticType.BYTES,
    }

    def native_type(self, semantic_type: SemanticType) -> str:
        return self._NATIVE[semantic_type]

    def semantic_type(self, native_type: str) -> SemanticType:
        return self._SEMANTIC.get(base_type_name(native_type), SemanticType.STRING)


class DuckDBDialect(SqlDialect):
    """DuckDB capability record."""

    name = "duckdb"
    identifiers = IdentifierRules(fold=None, reserved=COMMON_RESERVED_WORDS)
    type_mapper = DuckDBTypeMapper()

    def connect(self, connection_string: str) -> Any:
        path = connection_string or ":memory:"
        logger.debug(f"Opening DuckDB database: {path}")
        return duckdb.connect(path)

    def execute(self, connection: Any, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        logger.debug(f"DuckDB execute: {sql}")
        if params is None:
            connection.execute(sql)
        else:
            connection.execute(sql, list(params))

    def query(
        self, connection: Any, sql: str, params: Optional[Sequence[Any]] = None
    ) -> List[tuple]:
        logger.debug(f"DuckDB query: {sql}")
        if params is None:
            return connection.execute(sql).fetchall()
        return connection.execute(sql, list(params)).fetchall()

    def resolve_table(self, connection: Any, table: str) -> TableRef:
        default_schema = self.query(connection, "SELECT current_schema()")[0][0]
        ref = self.split_table_name(table, default_schema)
        rows = self.query(
            connection,
            "SELECT table_schema, table_name FROM information_schema.tables "
            "WHERE table_catalog = current_database() "
            "AND lower(table_schema) = lower(?) AND lower(table_name) = lower(?)",
            [ref.schema, ref.name],
        )
        if rows:
            return TableRef(rows[0][0], rows[0][1])
        return ref

    def inspect(self, connection: Any, ref: TableRef) -> TargetSchema:
        rows = self.query(
            connection,
            "SELECT column_name, data_type, is_nullable, character_maximum_length, "
            "numeric_precision, numeric_scale FROM information_schema.columns "
            "WHERE table_catalog = current_database() "
            "AND table_schema = ? AND table_name = ? ORDER BY ordinal_position",
            [ref.schema, ref.name],
        )
        if not rows:
            return TargetSchema.missing()

        primary_key: List[str] = []
        unique: set = set()
        constraints = self.query(
            connection,
            "SELECT constraint_type, constraint_column_names FROM duckdb_constraints() "
            "WHERE database_name = current_database() AND schema_name = ? AND table_name = ? "
            "AND constraint_type IN ('PRIMARY KEY', 'UNIQUE')",
            [ref.schema, ref.name],
        )
        for constraint_type, names in constraints:
            if constraint_type == "PRIMARY KEY":
                primary_key = list(names)
            elif len(names) == 1:
                unique.add(names[0])

        columns = []
        for name, data_type, is_nullable, max_length, precision, scale in rows:
            is_decimal = base_type_name(data_type) in ("DECIMAL", "NUMERIC")
            columns.append(
                TargetColumn(
                    name=name,
                    native_type=data_type,
                    semantic_type=self.type_mapper.semantic_type(data_type),
                    nullable=str(is_nullable).upper() == "YES" and name not in primary_key,
                    primary_key=name in primary_key,
                    unique=name in unique,
                    max_length=max_length,
                    precision=precision if is_decimal else None,
                    scale=scale if is_decimal else None,
                )
            )

        row_count = self.query(connection, f"SELECT COUNT(*) FROM {self.qualified_name(ref)}")[0][0]
        return TargetSchema(
            exists=True,
            columns=tuple(columns),
            row_count=row_count,
            size_bytes=self._table_size(connection, ref, columns, row_count),
            primary_key=tuple(primary_key),
        )

    def _table_size(
        self, connection: Any, ref: TableRef, columns: List[TargetColumn], row_count: int
    ) -> int:
        """Approximate storage size of a table.

        Checkpointed data is measured in storage blocks. Rows that only live in
        the WAL or in memory so far are estimated from the column widths.
        """
        table = self.qualified_name(ref).replace("'", "''")
        try:
            blocks = self.query(
                connection,
                f"SELECT COUNT(DISTINCT block_id) FROM pragma_storage_info('{table}') "
                "WHERE persistent",
            )[0][0]
            if blocks:
                block_size = self.query(
                    connection,
                    "SELECT block_size FROM pragma_database_size() "
                    "WHERE database_name = current_database()",
                )[0][0]
                return blocks * block_size
        except duckdb.Error as e:
            logger.debug(f"Storage info unavailable for {ref}: {e}")
        width = sum(_FIXED_WIDTHS.get(base_type_name(c.native_type), 16) for c in columns)
        return row_count * width

    def bulk_import(
        self,
        connection: Any,
        qualified_table: str,
        columns: Sequence[TargetColumn],
        rows: Sequence[Sequence[Any]],
    ) -> None:
        names = [f"c{i}" for i in range(len(columns))]
        # Text-carried kinds are cast by DuckDB on insert
        batch = rows_to_arrow(rows, names, [c.semantic_type for c in columns])

        view = f"tp_import_{uuid.uuid4().hex[:16]}"
        target_cols = ", ".join(self.identifiers.quote(c.name) for c in columns)
        casts = ", ".join(
            f"CAST({name} AS {column.native_type})" for name, column in zip(names, columns)
        )
        connection.register(view, batch)
        try:
            self.execute(
                connection,
                f"INSERT INTO {qualified_table} ({target_cols}) SELECT {casts} FROM {view}",
            )
        finally:
            try:
                connection.unregister(view)
            except duckdb.Error as e:
                logger.debug(f"Ignoring error while unregistering {view}: {e}")
