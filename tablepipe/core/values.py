"""Value conversion towards a resolved target type.

Each column gets exactly one converter, chosen once from its resolved target
type when the writer initializes. Converters never re-dispatch on the target
type per value; they only inspect the incoming value's shape.
"""

import datetime as dt
import uuid
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd
import pyarrow as pa

from tablepipe.core.models import SemanticType

Converter = Callable[[Any], Any]

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_TRUE_STRINGS = {"true", "t", "1", "yes", "y"}
_FALSE_STRINGS = {"false", "f", "0", "no", "n"}


class ValueKind(Enum):
    """Closed set of value kinds a target column can receive."""

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

    @classmethod
    def for_type(cls, semantic_type: SemanticType) -> "ValueKind":
        return cls(semantic_type.value)


def _to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def _to_integral(value: Any, low: int, high: int) -> int:
    if isinstance(value, bool):
        result = int(value)
    elif isinstance(value, int):
        result = value
    elif isinstance(value, str):
        result = int(value.strip())
    elif isinstance(value, (float, Decimal)):
        if value != value or not float(value).is_integer():
            raise ValueError(f"Value {value!r} is not an integral number")
        result = int(value)
    else:
        # numpy scalars and other number-likes
        result = int(value)
    if result < low or result > high:
        raise OverflowError(f"Value {result} is outside the range [{low}, {high}]")
    return result


def _to_integer(value: Any) -> int:
    return _to_integral(value, _INT32_MIN, _INT32_MAX)


def _to_long(value: Any) -> int:
    return _to_integral(value, _INT64_MIN, _INT64_MAX)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        result = Decimal(int(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Cannot parse {value!r} as a decimal number") from None
    else:
        result = Decimal(str(value))
    if not result.is_finite():
        raise ValueError(f"Value {value!r} is not a finite decimal number")
    return result


def _to_float(value: Any) -> float:
    if isinstance(value, str):
        return float(value.strip())
    return float(value)


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(f"Cannot parse {value!r} as a boolean")
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    return bool(value)


def _parse_timestamp(value: Any) -> dt.datetime:
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time())
    if isinstance(value, str) and not value.strip():
        raise ValueError("Cannot parse an empty string as a timestamp")
    parsed = pd.Timestamp(value)
    if pd.isna(parsed):
        raise ValueError(f"Cannot parse {value!r} as a timestamp")
    return parsed.to_pydatetime()


def _to_timestamp(value: Any) -> dt.datetime:
    """Zone-naive target: strip any zone, keeping the wall-clock time."""
    return _parse_timestamp(value).replace(tzinfo=None)


def _to_timestamp_tz(value: Any) -> dt.datetime:
    """Zone-aware target: unzoned values are taken as UTC."""
    parsed = _parse_timestamp(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


def _to_guid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, (bytes, bytearray)) and len(value) == 16:
        return uuid.UUID(bytes=bytes(value))
    return uuid.UUID(str(value).strip())


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    raise TypeError(f"Cannot convert {type(value).__name__} to bytes")


_CONVERTERS: Dict[ValueKind, Converter] = {
    ValueKind.STRING: _to_string,
    ValueKind.INTEGER: _to_integer,
    ValueKind.LONG: _to_long,
    ValueKind.DECIMAL: _to_decimal,
    ValueKind.FLOAT: _to_float,
    ValueKind.BOOLEAN: _to_boolean,
    ValueKind.TIMESTAMP: _to_timestamp,
    ValueKind.TIMESTAMP_TZ: _to_timestamp_tz,
    ValueKind.GUID: _to_guid,
    ValueKind.BYTES: _to_bytes,
}


def converter_for(kind: ValueKind) -> Converter:
    """Return a null-preserving converter for the given value kind."""
    convert = _CONVERTERS[kind]

    def _convert(value: Any) -> Any:
        if value is None:
            return None
        return convert(value)

    _convert.kind = kind  # type: ignore[attr-defined]
    return _convert


def build_converters(types: Sequence[SemanticType]) -> List[Converter]:
    """Fix one converter per column from its resolved target type."""
    return [converter_for(ValueKind.for_type(t)) for t in types]


def convert_row(row: Sequence[Any], converters: Sequence[Converter]) -> List[Any]:
    return [convert(value) for convert, value in zip(converters, row)]


def type_name(value: Optional[Any]) -> str:
    if value is None:
        return "null"
    return type(value).__name__


ARROW_TYPES = {
    SemanticType.STRING: pa.string(),
    SemanticType.INTEGER: pa.int32(),
    SemanticType.LONG: pa.int64(),
    SemanticType.DECIMAL: pa.string(),
    SemanticType.FLOAT: pa.float64(),
    SemanticType.BOOLEAN: pa.bool_(),
    SemanticType.TIMESTAMP: pa.timestamp("us"),
    SemanticType.TIMESTAMP_TZ: pa.timestamp("us", tz="UTC"),
    SemanticType.GUID: pa.string(),
    SemanticType.BYTES: pa.binary(),
}

# Carried as text through Arrow so no precision is lost
TEXT_CARRIED = (SemanticType.DECIMAL, SemanticType.GUID)


def rows_to_arrow(
    rows: Sequence[Sequence[Any]], names: Sequence[str], types: Sequence[SemanticType]
) -> pa.Table:
    """Pivot converted rows into an Arrow table, one typed array per column."""
    arrays = []
    for index, semantic_type in enumerate(types):
        values = [row[index] for row in rows]
        if semantic_type in TEXT_CARRIED:
            values = [None if v is None else str(v) for v in values]
        arrays.append(pa.array(values, type=ARROW_TYPES[semantic_type]))
    return pa.Table.from_arrays(arrays, names=list(names))
