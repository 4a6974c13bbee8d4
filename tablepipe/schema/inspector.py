"""Catalog inspection over a transient connection."""

from typing import Any

from tablepipe.core.models import TargetSchema
from tablepipe.dialects.base import SqlDialect
from tablepipe.logging import get_logger

logger = get_logger(__name__)


class SchemaInspector:
    """Inspects a target table without touching any writer's connection.

    Every call opens its own connection and closes it before returning.
    """

    def __init__(self, dialect: SqlDialect, connection_string: str):
        self.dialect = dialect
        self.connection_string = connection_string

    def inspect(self, table: str) -> TargetSchema:
        connection: Any = self.dialect.connect(self.connection_string)
        try:
            ref = self.dialect.resolve_table(connection, table)
            snapshot = self.dialect.inspect(connection, ref)
            logger.debug(
                f"Inspected {ref}: exists={snapshot.exists}, "
                f"columns={len(snapshot.columns)}, rows={snapshot.row_count}"
            )
            return snapshot
        finally:
            self.dialect.close(connection)
