"""Pipeline targets."""

from tablepipe.writers.base import DataWriter
from tablepipe.writers.file_writers import CsvTargetWriter, ParquetTargetWriter
from tablepipe.writers.sql_writer import SqlTargetWriter

__all__ = ["DataWriter", "CsvTargetWriter", "ParquetTargetWriter", "SqlTargetWriter"]
