"""Pipeline sources."""

from tablepipe.readers.base import SourceReader
from tablepipe.readers.file_readers import CsvReader, ParquetReader
from tablepipe.readers.memory import MemoryReader
from tablepipe.readers.sql_reader import SqlQueryReader

__all__ = ["SourceReader", "CsvReader", "MemoryReader", "ParquetReader", "SqlQueryReader"]
