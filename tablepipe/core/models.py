"""Core data model shared by readers, the pipeline engine and target writers."""

from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Any, List, Optional, Sequence, Tuple

# A row is an ordered value array aligned with its column list.
Row = List[Any]


class SemanticType(Enum):
    """Logical type of a column, independent of any database dialect."""

    STRING = "string"
    INTEGER = "integer"
    LONG = "long"
    DECIMAL = "decimal"
    FLOAT = "float"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    TIMESTAMP_TZ = "timestamp_tz"
    GUID = "guid"
    BYTES = "bytes"

    @property
    def is_numeric(self) -> bool:
        return self in (
            SemanticType.INTEGER,
            SemanticType.LONG,
            SemanticType.DECIMAL,
            SemanticType.FLOAT,
        )

    @property
    def is_temporal(self) -> bool:
        return self in (SemanticType.TIMESTAMP, SemanticType.TIMESTAMP_TZ)


@dataclass(frozen=True)
class ColumnInfo:
    """Describes one column of the row stream.

    ``case_sensitive`` marks a name that must be kept verbatim instead of
    being folded to the target dialect's default identifier casing.
    """

    name: str
    type: SemanticType = SemanticType.STRING
    nullable: bool = True
    case_sensitive: bool = False

    def renamed(self, name: str) -> "ColumnInfo":
        return replace(self, name=name)

    def retyped(self, semantic_type: SemanticType) -> "ColumnInfo":
        return replace(self, type=semantic_type)


class WriteStrategy(Enum):
    """Table preparation policy plus per-row conflict resolution policy."""

    APPEND = "append"
    TRUNCATE = "truncate"
    DELETE_THEN_INSERT = "delete_then_insert"
    RECREATE = "recreate"
    UPSERT = "upsert"
    IGNORE = "ignore"

    @classmethod
    def parse(cls, value: "str | WriteStrategy") -> "WriteStrategy":
        if isinstance(value, WriteStrategy):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        aliases = {"deletetheninsert": "delete_then_insert", "delete": "delete_then_insert"}
        normalized = aliases.get(normalized, normalized)
        for strategy in cls:
            if strategy.value == normalized:
                return strategy
        valid = ", ".join(s.value for s in cls)
        raise ValueError(f"Unknown write strategy '{value}'. Valid strategies: {valid}")

    @property
    def uses_staging(self) -> bool:
        return self in (WriteStrategy.UPSERT, WriteStrategy.IGNORE)


class WriterState(Enum):
    """Lifecycle states of a target writer."""

    UNINITIALIZED = auto()
    INITIALIZING = auto()
    READY = auto()
    WRITING = auto()
    COMPLETING = auto()
    CLOSED = auto()
    FAULTED = auto()


@dataclass(frozen=True)
class TargetColumn:
    """Physical column of a target table as reported by the catalog."""

    name: str
    native_type: str
    semantic_type: SemanticType
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None


@dataclass(frozen=True)
class TargetSchema:
    """Immutable snapshot of a target table's physical structure."""

    exists: bool
    columns: Tuple[TargetColumn, ...] = field(default_factory=tuple)
    row_count: Optional[int] = None
    size_bytes: Optional[int] = None
    primary_key: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def missing(cls) -> "TargetSchema":
        return cls(exists=False)

    def find_column(self, name: str) -> Optional[TargetColumn]:
        """Find a column by exact name first, then case-insensitively."""
        for column in self.columns:
            if column.name == name:
                return column
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]


def column_names(columns: Sequence[ColumnInfo]) -> List[str]:
    return [column.name for column in columns]
