"""Per-dialect capability record used by the generic SQL target writer.

A dialect supplies connection handling, identifier rules, catalog queries and
a bulk import routine. The writer lifecycle itself lives in
``tablepipe.writers.sql_writer`` and is shared by every dialect.
"""

import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, FrozenSet, List, Optional, Sequence, Tuple

from tablepipe.core.models import SemanticType, TargetColumn, TargetSchema
from tablepipe.logging import get_logger

logger = get_logger(__name__)

_SIMPLE_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

COMMON_RESERVED_WORDS = frozenset(
    {
        "all", "and", "as", "asc", "between", "by", "case", "check", "column",
        "constraint", "create", "cross", "default", "delete", "desc", "distinct",
        "drop", "else", "end", "exists", "foreign", "from", "full", "group",
        "having", "in", "index", "inner", "insert", "into", "is", "join", "key",
        "left", "like", "limit", "not", "null", "offset", "on", "or", "order",
        "outer", "primary", "references", "right", "select", "set", "table",
        "then", "to", "union", "unique", "update", "user", "using", "values",
        "when", "where", "with",
    }
)  # fmt: skip


@dataclass(frozen=True)
class IdentifierRules:
    """Identifier casing and quoting rules of a dialect.

    ``fold`` is the casing unquoted identifiers are folded to by the engine
    ("lower", "upper"), or None when the engine preserves them.
    """

    fold: Optional[str] = "lower"
    quote_char: str = '"'
    reserved: FrozenSet[str] = COMMON_RESERVED_WORDS

    def normalize(self, name: str) -> str:
        if self.fold == "lower":
            return name.lower()
        if self.fold == "upper":
            return name.upper()
        return name

    def needs_quoting(self, name: str) -> bool:
        if not _SIMPLE_IDENTIFIER.match(name):
            return True
        if name.lower() in self.reserved:
            return True
        return self.fold is not None and name != self.normalize(name)

    def quote(self, name: str) -> str:
        q = self.quote_char
        return f"{q}{name.replace(q, q + q)}{q}"

    def quote_if_needed(self, name: str) -> str:
        return self.quote(name) if self.needs_quoting(name) else name


@dataclass(frozen=True)
class TableRef:
    """Resolved physical location of a table."""

    schema: Optional[str]
    name: str

    def __str__(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name


class TypeMapper(ABC):
    """Maps semantic column types to native types and back."""

    @abstractmethod
    def native_type(self, semantic_type: SemanticType) -> str:
        """Native type used when a column is created from a semantic type."""

    @abstractmethod
    def semantic_type(self, native_type: str) -> SemanticType:
        """Semantic type a native type is converted to on write."""


def base_type_name(native_type: str) -> str:
    return native_type.split("(")[0].strip().upper()


def parse_type_arguments(native_type: str) -> Tuple[Optional[int], Optional[int]]:
    """Extract the (first, second) integer arguments of e.g. DECIMAL(10,2)."""
    match = re.search(r"\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)", native_type)
    if not match:
        return None, None
    first = int(match.group(1))
    second = int(match.group(2)) if match.group(2) is not None else None
    return first, second


class SqlDialect(ABC):
    """Capability record for one relational engine."""

    name: str = "sql"
    identifiers: IdentifierRules = IdentifierRules()
    type_mapper: TypeMapper
    supports_on_conflict: bool = True
    staging_prefix: str = "tp_stg_"

    # Connection handling

    @abstractmethod
    def connect(self, connection_string: str) -> Any:
        """Open a new DB-API style connection in autocommit mode."""

    def is_open(self, connection: Any) -> bool:
        if connection is None:
            return False
        try:
            self.query(connection, "SELECT 1")
            return True
        except Exception as e:
            logger.debug(f"{self.name}: connection is not usable: {e}")
            return False

    def close(self, connection: Any) -> None:
        connection.close()

    def interrupt(self, connection: Any) -> None:
        """Abort the statement running on ``connection`` from another thread."""
        connection.interrupt()

    @abstractmethod
    def execute(self, connection: Any, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        """Run a statement that returns no rows."""

    @abstractmethod
    def query(
        self, connection: Any, sql: str, params: Optional[Sequence[Any]] = None
    ) -> List[tuple]:
        """Run a statement and fetch all rows."""

    def execute_script(self, connection: Any, sql: str) -> None:
        """Run a free-form command, possibly holding several statements."""
        self.execute(connection, sql)

    def begin(self, connection: Any) -> None:
        self.execute(connection, "BEGIN TRANSACTION")

    def commit(self, connection: Any) -> None:
        self.execute(connection, "COMMIT")

    def rollback(self, connection: Any) -> None:
        self.execute(connection, "ROLLBACK")

    # Catalog

    @abstractmethod
    def resolve_table(self, connection: Any, table: str) -> TableRef:
        """Resolve a user supplied table name to its physical location."""

    @abstractmethod
    def inspect(self, connection: Any, ref: TableRef) -> TargetSchema:
        """Read the table's structure from the catalog."""

    def split_table_name(self, table: str, default_schema: Optional[str]) -> TableRef:
        """Textual ``schema.table`` split used when the table does not exist yet."""
        parts = [self._strip_quotes(p) for p in _split_dotted(table)]
        if len(parts) >= 2:
            schema, name = parts[-2], parts[-1]
            return TableRef(self._normalize_part(schema), self._normalize_part(name))
        return TableRef(default_schema, self._normalize_part(parts[0]))

    def _strip_quotes(self, part: str) -> Tuple[str, bool]:
        q = self.identifiers.quote_char
        part = part.strip()
        if len(part) >= 2 and part.startswith(q) and part.endswith(q):
            return part[1:-1].replace(q + q, q), True
        return part, False

    def _normalize_part(self, part: Tuple[str, bool]) -> str:
        text, quoted = part
        return text if quoted else self.identifiers.normalize(text)

    def qualified_name(self, ref: TableRef) -> str:
        quoted = self.identifiers.quote_if_needed(ref.name)
        if ref.schema:
            return f"{self.identifiers.quote_if_needed(ref.schema)}.{quoted}"
        return quoted

    # Data movement

    @abstractmethod
    def bulk_import(
        self,
        connection: Any,
        qualified_table: str,
        columns: Sequence[TargetColumn],
        rows: Sequence[Sequence[Any]],
    ) -> None:
        """Load already converted rows into a table through the bulk path."""

    def truncate_sql(self, qualified_table: str) -> str:
        return f"TRUNCATE TABLE {qualified_table}"

    def staging_name(self) -> str:
        return f"{self.staging_prefix}{uuid.uuid4().hex[:16]}"

    def create_staging_sql(
        self, staging: str, qualified_table: str, quoted_columns: Sequence[str]
    ) -> str:
        cols = ", ".join(quoted_columns)
        return (
            f"CREATE TEMP TABLE {self.identifiers.quote(staging)} AS "
            f"SELECT {cols} FROM {qualified_table} WHERE 1 = 0"
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


def _split_dotted(name: str) -> List[str]:
    """Split on dots that are not inside double quotes."""
    parts, current, in_quotes = [], [], False
    for ch in name:
        if ch == '"':
            in_quotes = not in_quotes
        if ch == "." and not in_quotes:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts
