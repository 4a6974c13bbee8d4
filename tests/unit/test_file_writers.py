"""Tests for the stage-and-swap CSV and Parquet targets."""

import os
from decimal import Decimal

import pandas as pd
import pyarrow.parquet as pq
import pytest

from tablepipe.core.errors import ConfigurationError, WriterStateError
from tablepipe.core.models import ColumnInfo, SemanticType, WriterState
from tablepipe.writers.file_writers import CsvTargetWriter, ParquetTargetWriter

COLUMNS = [
    ColumnInfo("id", SemanticType.LONG),
    ColumnInfo("name", SemanticType.STRING),
    ColumnInfo("amount", SemanticType.DECIMAL),
]


def _temp_files(directory):
    return [name for name in os.listdir(directory) if name.startswith(".tmp_")]


class TestCsvTarget:
    def test_writes_header_once_and_renames_on_complete(self, tmp_path):
        path = tmp_path / "out" / "orders.csv"
        writer = CsvTargetWriter(str(path))

        writer.initialize(COLUMNS)
        writer.write_batch([[1, "a", Decimal("1.50")], [2, None, None]])
        writer.write_batch([["3", "c", "2"]])
        assert not path.exists()
        writer.complete()
        writer.close()

        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        assert list(df.columns) == ["id", "name", "amount"]
        assert df.values.tolist() == [["1", "a", "1.50"], ["2", "", ""], ["3", "c", "2"]]
        assert _temp_files(path.parent) == []
        assert writer.state == WriterState.CLOSED

    def test_zero_rows_still_produce_a_header(self, tmp_path):
        path = tmp_path / "empty.csv"

        with CsvTargetWriter(str(path)) as writer:
            writer.initialize(COLUMNS)
            writer.complete()

        assert path.read_text().strip() == "id,name,amount"

    def test_abandoned_run_leaves_existing_file_untouched(self, tmp_path):
        path = tmp_path / "orders.csv"
        path.write_text("previous\n")

        writer = CsvTargetWriter(str(path))
        writer.initialize(COLUMNS)
        writer.write_batch([[1, "a", None]])
        writer.close()

        assert path.read_text() == "previous\n"
        assert _temp_files(tmp_path) == []

    def test_conversion_failure_faults_the_writer(self, tmp_path):
        writer = CsvTargetWriter(str(tmp_path / "orders.csv"))
        writer.initialize(COLUMNS)

        with pytest.raises(ValueError):
            writer.write_batch([["not a number", "a", None]])

        assert writer.state == WriterState.FAULTED
        with pytest.raises(WriterStateError):
            writer.complete()
        writer.close()

    def test_commands_are_rejected(self, tmp_path):
        writer = CsvTargetWriter(str(tmp_path / "orders.csv"))

        with pytest.raises(ConfigurationError, match="cannot execute commands"):
            writer.execute_command("VACUUM")

    def test_write_before_initialize(self, tmp_path):
        writer = CsvTargetWriter(str(tmp_path / "orders.csv"))

        with pytest.raises(WriterStateError, match="UNINITIALIZED"):
            writer.write_batch([[1, "a", None]])

    def test_path_is_required(self):
        with pytest.raises(ConfigurationError, match="'path' not specified"):
            CsvTargetWriter("")


class TestParquetTarget:
    def test_round_trips_typed_columns(self, tmp_path):
        path = tmp_path / "orders.parquet"
        writer = ParquetTargetWriter(str(path))

        writer.initialize(COLUMNS)
        writer.write_batch([[1, "a", Decimal("1.50")]])
        writer.write_batch([[2, "b", None]])
        writer.complete()
        writer.close()

        table = pq.read_table(path)
        assert table.column("id").to_pylist() == [1, 2]
        assert table.column("amount").to_pylist() == ["1.50", None]
        assert pq.ParquetFile(path).metadata.num_row_groups == 2
        assert _temp_files(tmp_path) == []

    def test_zero_rows_still_produce_a_schema(self, tmp_path):
        path = tmp_path / "empty.parquet"

        with ParquetTargetWriter(str(path)) as writer:
            writer.initialize(COLUMNS)
            writer.complete()

        table = pq.read_table(path)
        assert table.num_rows == 0
        assert table.column_names == ["id", "name", "amount"]

    def test_close_without_complete_discards_temp_file(self, tmp_path):
        path = tmp_path / "orders.parquet"
        writer = ParquetTargetWriter(str(path))
        writer.initialize(COLUMNS)
        writer.write_batch([[1, "a", None]])

        writer.close()

        assert not path.exists()
        assert _temp_files(tmp_path) == []
