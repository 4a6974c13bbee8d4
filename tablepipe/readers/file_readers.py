"""CSV and Parquet sources."""

import os
from typing import Iterator, List

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from tablepipe.core.errors import ConfigurationError
from tablepipe.core.models import ColumnInfo, Row, SemanticType
from tablepipe.logging import get_logger
from tablepipe.readers.base import SourceReader

logger = get_logger(__name__)


def _require_file(path: str, kind: str) -> None:
    if not path:
        raise ConfigurationError(f"{kind} source: 'path' not specified")
    if not os.path.exists(path):
        raise ConfigurationError(f"{kind} file not found: {path}", context={"path": path})


_INT32_COMPATIBLE = (pa.int8(), pa.int16(), pa.int32(), pa.uint8(), pa.uint16())


class CsvReader(SourceReader):
    """Reads a CSV file in chunks; every column is read as text.

    Values are handed to the target as strings and converted to the target's
    column types by the writer.
    """

    def __init__(self, path: str, delimiter: str = ",", encoding: str = "utf-8"):
        super().__init__()
        self.path = path
        self.delimiter = delimiter
        self.encoding = encoding

    def _discover_columns(self) -> List[ColumnInfo]:
        _require_file(self.path, "CSV")
        header = pd.read_csv(self.path, sep=self.delimiter, encoding=self.encoding, nrows=0)
        return [ColumnInfo(str(name), SemanticType.STRING) for name in header.columns]

    def read_batches(self, batch_size: int) -> Iterator[List[Row]]:
        logger.debug(f"Reading CSV {self.path} in chunks of {batch_size}")
        chunks = pd.read_csv(
            self.path,
            sep=self.delimiter,
            encoding=self.encoding,
            dtype=str,
            keep_default_na=False,
            na_values=[""],
            chunksize=batch_size,
        )
        for chunk in chunks:
            chunk = chunk.astype(object).where(pd.notna(chunk), None)
            yield chunk.values.tolist()


def arrow_semantic_type(arrow_type: pa.DataType) -> SemanticType:
    """Map an Arrow type to the semantic type used for target creation."""
    if pa.types.is_boolean(arrow_type):
        return SemanticType.BOOLEAN
    if arrow_type in _INT32_COMPATIBLE:
        return SemanticType.INTEGER
    if pa.types.is_integer(arrow_type):
        return SemanticType.LONG
    if pa.types.is_floating(arrow_type):
        return SemanticType.FLOAT
    if pa.types.is_decimal(arrow_type):
        return SemanticType.DECIMAL
    if pa.types.is_timestamp(arrow_type):
        return SemanticType.TIMESTAMP_TZ if arrow_type.tz else SemanticType.TIMESTAMP
    if pa.types.is_date(arrow_type):
        return SemanticType.TIMESTAMP
    if pa.types.is_binary(arrow_type) or pa.types.is_large_binary(arrow_type):
        return SemanticType.BYTES
    return SemanticType.STRING


class ParquetReader(SourceReader):
    """Reads a Parquet file record batch by record batch."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._file = None

    def _discover_columns(self) -> List[ColumnInfo]:
        _require_file(self.path, "Parquet")
        self._file = pq.ParquetFile(self.path)
        schema = self._file.schema_arrow
        return [
            ColumnInfo(field.name, arrow_semantic_type(field.type), field.nullable)
            for field in schema
        ]

    def read_batches(self, batch_size: int) -> Iterator[List[Row]]:
        for batch in self._file.iter_batches(batch_size=batch_size):
            columns = [array.to_pylist() for array in batch.columns]
            yield [list(row) for row in zip(*columns)]

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
