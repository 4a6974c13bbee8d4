"""Provider detection and reader/writer factories.

Sources and targets are given as ``prefix:location`` strings::

    duckdb:warehouse.db          sqlite:local.db
    postgresql://user@host/db    pg:user@host/db
    csv:data/orders.csv          parquet:data/orders.parquet

Paths ending in ``.csv`` or ``.parquet`` need no prefix.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Type

from tablepipe.config import WriterOptions
from tablepipe.core.errors import ConfigurationError, ProviderError
from tablepipe.dialects.base import SqlDialect
from tablepipe.dialects.duckdb_dialect import DuckDBDialect
from tablepipe.dialects.postgres_dialect import PostgresDialect
from tablepipe.dialects.sqlite_dialect import SQLiteDialect
from tablepipe.logging import get_logger
from tablepipe.readers.base import SourceReader
from tablepipe.readers.file_readers import CsvReader, ParquetReader
from tablepipe.readers.sql_reader import SqlQueryReader
from tablepipe.security import sanitize_connection_string
from tablepipe.writers.base import DataWriter
from tablepipe.writers.file_writers import CsvTargetWriter, ParquetTargetWriter
from tablepipe.writers.sql_writer import SqlTargetWriter

logger = get_logger(__name__)

DIALECTS: Dict[str, Type[SqlDialect]] = {
    "duckdb": DuckDBDialect,
    "sqlite": SQLiteDialect,
    "postgresql": PostgresDialect,
}

_PREFIXES = {
    "duckdb:": "duckdb",
    "sqlite:": "sqlite",
    "pg:": "postgresql",
    "csv:": "csv",
    "parquet:": "parquet",
}

_URL_SCHEMES = ("postgresql://", "postgres://", "postgresql+psycopg2://")

_EXTENSIONS = {".csv": "csv", ".parquet": "parquet", ".pq": "parquet"}

KNOWN_PREFIXES = list(_PREFIXES) + list(_URL_SCHEMES)


@dataclass(frozen=True)
class ProviderLocation:
    """A parsed source or target string."""

    provider: str
    location: str

    @property
    def is_sql(self) -> bool:
        return self.provider in DIALECTS


def parse_location(value: str) -> ProviderLocation:
    """Split a ``prefix:location`` string into provider and location."""
    if not value or not value.strip():
        raise ProviderError(value or "", KNOWN_PREFIXES)
    value = value.strip()
    lowered = value.lower()

    if lowered.startswith(_URL_SCHEMES):
        return ProviderLocation("postgresql", value)
    for prefix, provider in _PREFIXES.items():
        if lowered.startswith(prefix):
            location = value[len(prefix) :]
            if provider == "postgresql" and "://" not in location:
                location = f"postgresql://{location.lstrip('/')}"
            return ProviderLocation(provider, location)
    for extension, provider in _EXTENSIONS.items():
        if lowered.endswith(extension):
            return ProviderLocation(provider, value)
    raise ProviderError(value, KNOWN_PREFIXES)


def create_dialect(provider: str) -> SqlDialect:
    try:
        return DIALECTS[provider]()
    except KeyError:
        raise ConfigurationError(f"'{provider}' is not a SQL provider") from None


def create_reader(source: str, query: Optional[str] = None) -> SourceReader:
    """Build a reader for a source string.

    SQL sources need a query (or a bare table name); file sources ignore it.
    """
    parsed = parse_location(source)
    logger.debug(f"Source provider: {parsed.provider} ({sanitize_connection_string(source)})")
    if parsed.is_sql:
        if not query:
            raise ConfigurationError(
                f"Source '{sanitize_connection_string(source)}' requires --query"
            )
        return SqlQueryReader(create_dialect(parsed.provider), parsed.location, query)
    if parsed.provider == "csv":
        return CsvReader(parsed.location)
    return ParquetReader(parsed.location)


def create_writer(target: str, options: WriterOptions) -> DataWriter:
    """Build a writer for a target string."""
    parsed = parse_location(target)
    logger.debug(f"Target provider: {parsed.provider} ({sanitize_connection_string(target)})")
    if parsed.is_sql:
        return SqlTargetWriter(parsed.location, options, create_dialect(parsed.provider))
    if options.strategy.uses_staging:
        raise ConfigurationError(
            f"Strategy '{options.strategy.value}' is not supported for {parsed.provider} targets"
        )
    if parsed.provider == "csv":
        return CsvTargetWriter(parsed.location)
    return ParquetTargetWriter(parsed.location)
