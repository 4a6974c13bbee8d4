"""Query sources for the supported SQL dialects."""

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any, Iterator, List

from tablepipe.core.errors import ConfigurationError
from tablepipe.core.models import ColumnInfo, Row, SemanticType
from tablepipe.dialects.base import SqlDialect
from tablepipe.logging import get_logger
from tablepipe.readers.base import SourceReader
from tablepipe.security import sanitize_connection_string

logger = get_logger(__name__)

# psycopg2 reports the type OID in cursor.description
POSTGRES_TYPE_OIDS = {
    16: SemanticType.BOOLEAN,
    17: SemanticType.BYTES,
    20: SemanticType.LONG,
    21: SemanticType.INTEGER,
    23: SemanticType.INTEGER,
    700: SemanticType.FLOAT,
    701: SemanticType.FLOAT,
    1082: SemanticType.TIMESTAMP,
    1114: SemanticType.TIMESTAMP,
    1184: SemanticType.TIMESTAMP_TZ,
    1700: SemanticType.DECIMAL,
    2950: SemanticType.GUID,
}

PEEK_ROWS = 100


def python_semantic_type(value: Any) -> SemanticType:
    """Semantic type of a Python value, for drivers that report no column types."""
    if isinstance(value, bool):
        return SemanticType.BOOLEAN
    if isinstance(value, int):
        return SemanticType.LONG
    if isinstance(value, float):
        return SemanticType.FLOAT
    if isinstance(value, Decimal):
        return SemanticType.DECIMAL
    if isinstance(value, dt.datetime):
        return SemanticType.TIMESTAMP_TZ if value.tzinfo else SemanticType.TIMESTAMP
    if isinstance(value, dt.date):
        return SemanticType.TIMESTAMP
    if isinstance(value, uuid.UUID):
        return SemanticType.GUID
    if isinstance(value, (bytes, bytearray, memoryview)):
        return SemanticType.BYTES
    return SemanticType.STRING


class SqlQueryReader(SourceReader):
    """Runs a query once and streams its result set in batches.

    Args:
    ----
        dialect: Dialect of the source database
        connection_string: Dialect specific connection string
        query: SELECT statement; a bare table name is wrapped as ``SELECT *``

    """

    def __init__(self, dialect: SqlDialect, connection_string: str, query: str):
        super().__init__()
        if not query or not query.strip():
            raise ConfigurationError("A query or table name is required for SQL sources")
        self.dialect = dialect
        self.connection_string = connection_string
        self.query = self._as_select(query.strip().rstrip(";"))
        self._connection: Any = None
        self._cursor: Any = None
        self._pending: List[Row] = []

    @staticmethod
    def _as_select(query: str) -> str:
        if " " not in query and "\n" not in query:
            return f"SELECT * FROM {query}"
        return query

    def _discover_columns(self) -> List[ColumnInfo]:
        logger.info(
            f"Opening {self.dialect.name} source "
            f"{sanitize_connection_string(self.connection_string)}"
        )
        self._connection = self.dialect.connect(self.connection_string)
        if self.dialect.name == "duckdb":
            return self._describe_duckdb()

        self._cursor = self._connection.cursor()
        logger.debug(f"Executing source query: {self.query}")
        self._cursor.execute(self.query)
        names = [d[0] for d in self._cursor.description]
        if self.dialect.name == "postgresql":
            return [
                ColumnInfo(name, POSTGRES_TYPE_OIDS.get(d[1], SemanticType.STRING))
                for name, d in zip(names, self._cursor.description)
            ]
        # No declared types: infer from the first rows
        self._pending = [list(row) for row in self._cursor.fetchmany(PEEK_ROWS)]
        return [
            ColumnInfo(name, self._infer_type(index)) for index, name in enumerate(names)
        ]

    def _describe_duckdb(self) -> List[ColumnInfo]:
        described = self._connection.execute(f"DESCRIBE {self.query}").fetchall()
        columns = [
            ColumnInfo(
                name=row[0],
                type=self.dialect.type_mapper.semantic_type(row[1]),
                nullable=row[2] != "NO",
            )
            for row in described
        ]
        logger.debug(f"Executing source query: {self.query}")
        self._cursor = self._connection.execute(self.query)
        return columns

    def _infer_type(self, index: int) -> SemanticType:
        for row in self._pending:
            if row[index] is not None:
                return python_semantic_type(row[index])
        return SemanticType.STRING

    def read_batches(self, batch_size: int) -> Iterator[List[Row]]:
        if self._pending:
            pending, self._pending = self._pending, []
            for start in range(0, len(pending), batch_size):
                yield pending[start:start + batch_size]
        while True:
            rows = self._cursor.fetchmany(batch_size)
            if not rows:
                return
            yield [list(row) for row in rows]

    def close(self) -> None:
        cursor, self._cursor = self._cursor, None
        connection, self._connection = self._connection, None
        if cursor is not None and cursor is not connection:
            try:
                cursor.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing source cursor: {e}")
        if connection is not None:
            self.dialect.close(connection)
