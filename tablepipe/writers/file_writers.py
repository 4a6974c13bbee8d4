"""CSV and Parquet file targets.

Both write into a hidden temporary file next to the target and atomically
rename it into place on ``complete``. A failed or abandoned run leaves any
existing file untouched.
"""

import os
import uuid
from abc import abstractmethod
from typing import Any, List, Optional, Sequence

import pandas as pd
import pyarrow.parquet as pq

from tablepipe.core.errors import ConfigurationError, WriterStateError
from tablepipe.core.models import ColumnInfo, WriterState
from tablepipe.core.values import Converter, build_converters, convert_row, rows_to_arrow
from tablepipe.logging import get_logger
from tablepipe.writers.base import DataWriter

logger = get_logger(__name__)


class FileTargetWriter(DataWriter):
    """Stage-and-swap file writer; subclasses supply the encoding."""

    format_name = "file"

    def __init__(self, path: str):
        if not path:
            raise ConfigurationError(f"{self.format_name} target: 'path' not specified")
        self.path = path
        self.state = WriterState.UNINITIALIZED
        self.rows_written = 0
        self._columns: List[ColumnInfo] = []
        self._converters: List[Converter] = []
        self._temp_path: Optional[str] = None

    @property
    def columns(self) -> List[ColumnInfo]:
        return list(self._columns)

    def _create_temp_path(self) -> str:
        dir_path = os.path.dirname(self.path)
        base_name = os.path.basename(self.path)
        return os.path.join(dir_path, f".tmp_{uuid.uuid4().hex[:8]}_{base_name}")

    def initialize(self, columns: Sequence[ColumnInfo]) -> None:
        if self.state != WriterState.UNINITIALIZED:
            raise WriterStateError("initialize", self.state)
        self._columns = list(columns)
        self._converters = build_converters([c.type for c in self._columns])
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._temp_path = self._create_temp_path()
        self.state = WriterState.READY
        logger.info(f"Writing {self.format_name} to {self.path}")

    def write_batch(self, rows: Sequence[Sequence[Any]]) -> None:
        if self.state != WriterState.READY:
            raise WriterStateError("write a batch", self.state)
        if not rows:
            return
        try:
            self._write_rows([convert_row(row, self._converters) for row in rows])
        except Exception:
            self.state = WriterState.FAULTED
            raise
        self.rows_written += len(rows)

    def complete(self) -> None:
        if self.state != WriterState.READY:
            raise WriterStateError("complete", self.state)
        self.state = WriterState.COMPLETING
        self._finish_file()
        if not os.path.exists(self._temp_path):
            # Zero rows: still produce a file with the header/schema
            self._write_rows([])
            self._finish_file()
        os.replace(self._temp_path, self.path)
        self._temp_path = None
        logger.info(f"Wrote {self.rows_written:,} rows to {self.path}")

    def execute_command(self, command: str) -> None:
        raise ConfigurationError(
            f"{self.format_name} targets cannot execute commands",
            context={"command": command},
        )

    def close(self) -> None:
        if self.state == WriterState.CLOSED:
            return
        try:
            self._finish_file()
        except Exception as e:
            logger.debug(f"Ignoring error while closing {self.format_name} writer: {e}")
        if self._temp_path and os.path.exists(self._temp_path):
            try:
                os.remove(self._temp_path)
            except OSError:
                logger.warning(f"Failed to cleanup temporary file: {self._temp_path}")
        self._temp_path = None
        self.state = WriterState.CLOSED

    @abstractmethod
    def _write_rows(self, rows: List[List[Any]]) -> None:
        """Append converted rows to the temporary file."""

    def _finish_file(self) -> None:
        """Flush and close any open file handle."""


class CsvTargetWriter(FileTargetWriter):
    """Writes rows as CSV through pandas, header on the first write."""

    format_name = "CSV"

    def __init__(self, path: str, delimiter: str = ","):
        super().__init__(path)
        self.delimiter = delimiter
        self._header_written = False

    def _write_rows(self, rows: List[List[Any]]) -> None:
        df = pd.DataFrame(rows, columns=[c.name for c in self._columns])
        df.to_csv(
            self._temp_path,
            mode="a",
            header=not self._header_written,
            index=False,
            sep=self.delimiter,
        )
        self._header_written = True


class ParquetTargetWriter(FileTargetWriter):
    """Writes one Parquet row group per batch through pyarrow."""

    format_name = "Parquet"

    def __init__(self, path: str, compression: str = "snappy"):
        super().__init__(path)
        self.compression = compression
        self._writer: Optional[pq.ParquetWriter] = None

    def _write_rows(self, rows: List[List[Any]]) -> None:
        table = rows_to_arrow(
            rows, [c.name for c in self._columns], [c.type for c in self._columns]
        )
        if self._writer is None:
            self._writer = pq.ParquetWriter(
                self._temp_path, table.schema, compression=self.compression
            )
        self._writer.write_table(table)

    def _finish_file(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

