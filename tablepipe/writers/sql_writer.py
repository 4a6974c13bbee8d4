"""Generic relational target writer.

One lifecycle drives every SQL dialect::

    UNINITIALIZED -> INITIALIZING -> READY <-> WRITING
                                     READY -> COMPLETING -> CLOSED

Any error moves the writer to FAULTED and tears down its connection. The next
call reconnects from scratch rather than repairing the old connection.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tablepipe.config import WriterOptions
from tablepipe.core.errors import BatchWriteError, ConfigurationError, WriterStateError
from tablepipe.core.models import (
    ColumnInfo,
    TargetColumn,
    TargetSchema,
    WriterState,
    WriteStrategy,
)
from tablepipe.core.values import Converter, build_converters, convert_row
from tablepipe.dialects import sql as sql_builder
from tablepipe.dialects.base import SqlDialect, TableRef
from tablepipe.logging import get_logger
from tablepipe.schema.failure_analyzer import BatchFailureAnalyzer
from tablepipe.schema.inspector import SchemaInspector
from tablepipe.schema.matcher import find_target_column, resolve_key_columns
from tablepipe.security import sanitize_connection_string
from tablepipe.writers.base import DataWriter


def unique_rows_per_key(
    rows: Sequence[List[Any]], key_indexes: Sequence[int], keep_last: bool = True
) -> List[List[Any]]:
    """Keep one row of the batch per key, in batch order.

    The last occurrence of a key wins when ``keep_last`` is set, the first
    one otherwise.

    Rows with a null key value never match an existing row and are all kept.
    """
    chosen: Dict[Tuple[Any, ...], int] = {}
    keep: List[int] = []
    for position, row in enumerate(rows):
        key = tuple(row[i] for i in key_indexes)
        if any(value is None for value in key):
            keep.append(position)
        elif keep_last or key not in chosen:
            chosen[key] = position
    keep.extend(chosen.values())
    return [rows[position] for position in sorted(keep)]


class SqlTargetWriter(DataWriter):
    """Writes batches into one table of a relational database.

    Args:
    ----
        connection_string: Dialect specific connection string
        options: Table, write strategy and key columns
        dialect: Capability record of the target engine
        logger: Logger to report lifecycle events to

    """

    def __init__(
        self,
        connection_string: str,
        options: WriterOptions,
        dialect: SqlDialect,
        logger: Optional[logging.Logger] = None,
        analyzer: Optional[BatchFailureAnalyzer] = None,
    ):
        if not options.table:
            raise ConfigurationError("A target table name is required")
        self.connection_string = connection_string
        self.options = options
        self.dialect = dialect
        self.logger = logger or get_logger(__name__)
        self.analyzer = analyzer or BatchFailureAnalyzer(
            SchemaInspector(dialect, connection_string)
        )
        self.state = WriterState.UNINITIALIZED

        self._connection: Any = None
        self._ref: Optional[TableRef] = None
        self._qualified: str = ""
        self._snapshot: Optional[TargetSchema] = None
        self._columns: List[ColumnInfo] = []
        self._write_columns: List[TargetColumn] = []
        self._converters: List[Converter] = []
        self._keys: List[str] = []
        self._key_indexes: List[int] = []
        self._use_on_conflict = False

    # Introspection

    @property
    def columns(self) -> List[ColumnInfo]:
        return list(self._columns)

    @property
    def key_columns(self) -> List[str]:
        return list(self._keys)

    @property
    def table_ref(self) -> Optional[TableRef]:
        return self._ref

    def inspect_target(self) -> TargetSchema:
        """Return the cached snapshot, reading the catalog on first use."""
        if self._snapshot is None:
            connection = self._ensure_connection()
            if self._ref is None:
                self._ref = self.dialect.resolve_table(connection, self.options.table)
                self._qualified = self.dialect.qualified_name(self._ref)
            self._snapshot = self.dialect.inspect(connection, self._ref)
        return self._snapshot

    def invalidate_schema_cache(self) -> None:
        self._snapshot = None

    # Lifecycle

    def initialize(self, columns: Sequence[ColumnInfo]) -> None:
        if self.state not in (WriterState.UNINITIALIZED, WriterState.FAULTED):
            raise WriterStateError("initialize", self.state)
        self.state = WriterState.INITIALIZING
        try:
            self._columns = [self._normalize_column(c) for c in columns]
            connection = self._ensure_connection(check=True)
            self._ref = self.dialect.resolve_table(connection, self.options.table)
            self._qualified = self.dialect.qualified_name(self._ref)
            self.invalidate_schema_cache()
            self.logger.info(
                f"Target {self.dialect.name}:{self._ref} "
                f"({sanitize_connection_string(self.connection_string)}), "
                f"strategy={self.options.strategy.value}"
            )
            self._apply_write_strategy()
            self._sync_columns()
            if self.options.strategy.uses_staging:
                self._choose_merge_path()
        except Exception:
            self._fault()
            raise
        self.state = WriterState.READY

    def write_batch(self, rows: Sequence[Sequence[Any]]) -> None:
        if self.state == WriterState.FAULTED and self._ref is not None:
            self.logger.info("Writer recovering from a previous failure; reconnecting")
        elif self.state != WriterState.READY:
            raise WriterStateError("write a batch", self.state)
        if not rows:
            return

        self.state = WriterState.WRITING
        try:
            converted = [convert_row(row, self._converters) for row in rows]
            if self.options.strategy.uses_staging:
                self._write_staged(converted)
            else:
                self._write_direct(converted)
        except Exception as e:
            self._fault()
            analysis = self.analyzer.analyze(self.options.table, rows, self._columns)
            if analysis.localized:
                self.logger.error(analysis.report)
                raise BatchWriteError(analysis.report, e, len(rows)) from e
            self.logger.warning(analysis.report)
            raise
        self.state = WriterState.READY

    def complete(self) -> None:
        if self.state != WriterState.READY:
            raise WriterStateError("complete", self.state)
        self.state = WriterState.COMPLETING
        # Both write paths commit per batch; nothing is buffered here
        self.logger.debug(f"Writer for {self._ref} completed")

    def close(self) -> None:
        if self.state == WriterState.CLOSED:
            return
        self._teardown_connection()
        self.state = WriterState.CLOSED

    def execute_command(self, command: str) -> None:
        """Run a free-form command on the writer's connection."""
        if self.state == WriterState.CLOSED:
            raise WriterStateError("execute a command", self.state)
        connection = self._ensure_connection(check=True)
        self.logger.info(f"Executing command: {command.strip()[:200]}")
        try:
            self.dialect.execute_script(connection, command)
        except Exception:
            self._teardown_connection()
            raise
        # A command may have changed the table
        self.invalidate_schema_cache()

    def interrupt(self) -> None:
        """Abort the statement currently running on the writer's connection."""
        connection = self._connection
        if connection is not None:
            self.logger.info(f"Interrupting statement on {self._ref}")
            self.dialect.interrupt(connection)

    def migrate_schema(self, report: Any) -> None:
        """Add every column the report classified as missing in the target."""
        if self.state != WriterState.READY:
            raise WriterStateError("migrate the schema", self.state)
        missing = report.missing_columns
        if not missing:
            return
        try:
            connection = self._ensure_connection()
            for column in missing:
                normalized = self._normalize_column(column)
                self.dialect.execute(
                    connection,
                    sql_builder.build_add_column(self.dialect, self._qualified, normalized),
                )
                self.logger.info(f"Added column '{normalized.name}' to {self._ref}")
            self.invalidate_schema_cache()
            self._sync_columns()
        except Exception:
            self._fault()
            raise

    # Connection handling

    def _ensure_connection(self, check: bool = False) -> Any:
        if self._connection is not None and check and not self.dialect.is_open(self._connection):
            self._teardown_connection()
        if self._connection is None:
            self._connection = self.dialect.connect(self.connection_string)
        return self._connection

    def _teardown_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            self.dialect.close(connection)
        except Exception as e:
            self.logger.debug(f"Ignoring error while closing connection: {e}")

    def _fault(self) -> None:
        self.state = WriterState.FAULTED
        self._teardown_connection()
        self.invalidate_schema_cache()

    # Initialization steps

    def _normalize_column(self, column: ColumnInfo) -> ColumnInfo:
        if column.case_sensitive:
            return column
        return column.renamed(self.dialect.identifiers.normalize(column.name))

    def _apply_write_strategy(self) -> None:
        strategy = self.options.strategy
        snapshot = self.inspect_target()
        connection = self._ensure_connection()

        if strategy.uses_staging:
            self._keys = self._resolve_keys(snapshot)

        if not snapshot.exists:
            primary_key = self._keys if strategy.uses_staging else []
            self.dialect.execute(
                connection,
                sql_builder.build_create_table(
                    self.dialect, self._qualified, self._columns, primary_key
                ),
            )
            self.invalidate_schema_cache()
            self.logger.info(f"Created table {self._ref}")
            return

        if strategy == WriteStrategy.TRUNCATE:
            self.dialect.execute(connection, self.dialect.truncate_sql(self._qualified))
            self.invalidate_schema_cache()
            self.logger.info(f"Truncated table {self._ref}")
        elif strategy == WriteStrategy.DELETE_THEN_INSERT:
            self.dialect.execute(connection, sql_builder.build_delete_all(self._qualified))
            self.invalidate_schema_cache()
            self.logger.info(f"Deleted {snapshot.row_count or 0} rows from {self._ref}")
        elif strategy == WriteStrategy.RECREATE:
            self._recreate(snapshot)

    def _recreate(self, existing: TargetSchema) -> None:
        connection = self._ensure_connection()
        self.dialect.execute(connection, sql_builder.build_drop_table(self._qualified))
        self.logger.info(f"Dropped table {self._ref}")
        if existing.columns:
            create_sql = sql_builder.build_create_from_snapshot(
                self.dialect, self._qualified, existing
            )
        else:
            create_sql = sql_builder.build_create_table(
                self.dialect, self._qualified, self._columns
            )
        self.dialect.execute(connection, create_sql)
        self.invalidate_schema_cache()
        self.logger.info(f"Recreated table {self._ref}")

    def _resolve_keys(self, snapshot: TargetSchema) -> List[str]:
        if snapshot.exists and snapshot.primary_key:
            keys = list(snapshot.primary_key)
            source_names = {c.name.lower() for c in self._columns}
            absent = [k for k in keys if k.lower() not in source_names]
            if absent:
                raise ConfigurationError(
                    f"Primary key column(s) {', '.join(absent)} of {self._ref} "
                    f"are not provided by the source",
                    context={"keys": keys},
                )
            return keys
        if self.options.key:
            available = snapshot.column_names if snapshot.exists else [c.name for c in self._columns]
            return resolve_key_columns(self.options.key, available)
        raise ConfigurationError(
            f"Strategy '{self.options.strategy.value}' requires key columns: "
            f"{self._ref} has no primary key and no key was configured",
            context={"strategy": self.options.strategy.value, "table": str(self._ref)},
        )

    def _sync_columns(self) -> None:
        """Align column names and conversion types with the physical target."""
        snapshot = self.inspect_target()
        synced: List[ColumnInfo] = []
        write_columns: List[TargetColumn] = []
        for column in self._columns:
            target = find_target_column(column, snapshot, self.dialect.identifiers)
            if target is None:
                synced.append(column)
                write_columns.append(
                    TargetColumn(
                        name=column.name,
                        native_type=self.dialect.type_mapper.native_type(column.type),
                        semantic_type=column.type,
                        nullable=column.nullable,
                    )
                )
                continue
            synced.append(
                ColumnInfo(
                    name=target.name,
                    type=column.type,
                    nullable=column.nullable,
                    case_sensitive=True,
                )
            )
            write_columns.append(target)
        self._columns = synced
        self._write_columns = write_columns
        self._converters = build_converters([c.semantic_type for c in write_columns])

    def _choose_merge_path(self) -> None:
        snapshot = self.inspect_target()
        key_set = {k.lower() for k in self._keys}
        unique_match = len(self._keys) == 1 and any(
            c.unique and c.name.lower() in key_set for c in snapshot.columns
        )
        pk_match = {k.lower() for k in snapshot.primary_key} == key_set
        self._use_on_conflict = self.dialect.supports_on_conflict and (pk_match or unique_match)
        # Align key spelling with the physical columns
        names = {c.name.lower(): c.name for c in self._write_columns}
        self._keys = [names.get(k.lower(), k) for k in self._keys]
        positions = {c.name.lower(): i for i, c in enumerate(self._write_columns)}
        absent = [k for k in self._keys if k.lower() not in positions]
        if absent:
            raise ConfigurationError(
                f"Key column(s) {', '.join(absent)} of {self._ref} are not provided by the source",
                context={"keys": list(self._keys)},
            )
        self._key_indexes = [positions[k.lower()] for k in self._keys]
        self.logger.debug(
            f"Merge keys {self._keys} via {'ON CONFLICT' if self._use_on_conflict else 'UPDATE/INSERT'}"
        )

    # Write paths

    def _write_direct(self, rows: List[List[Any]]) -> None:
        connection = self._ensure_connection()
        self.dialect.begin(connection)
        self.dialect.bulk_import(connection, self._qualified, self._write_columns, rows)
        self.dialect.commit(connection)

    def _write_staged(self, rows: List[List[Any]]) -> None:
        unique_rows = unique_rows_per_key(
            rows, self._key_indexes, keep_last=self.options.strategy == WriteStrategy.UPSERT
        )
        if len(unique_rows) < len(rows):
            self.logger.debug(
                f"Collapsed {len(rows) - len(unique_rows)} rows with repeated keys in batch"
            )
        rows = unique_rows
        connection = self._ensure_connection()
        staging = self.dialect.staging_name()
        quote = self.dialect.identifiers.quote
        names = [c.name for c in self._write_columns]
        self.dialect.execute(
            connection,
            self.dialect.create_staging_sql(staging, self._qualified, [quote(n) for n in names]),
        )
        try:
            self.dialect.begin(connection)
            self.dialect.bulk_import(connection, quote(staging), self._write_columns, rows)
            for statement in self._merge_statements(staging, names):
                self.dialect.execute(connection, statement)
            self.dialect.commit(connection)
        except Exception:
            self._rollback_quietly(connection)
            raise
        finally:
            self._drop_staging(connection, staging)
        self.logger.debug(f"Merged {len(rows)} rows into {self._ref} through {staging}")

    def _merge_statements(self, staging: str, names: List[str]) -> List[str]:
        update = self.options.strategy == WriteStrategy.UPSERT
        if self._use_on_conflict:
            return [
                sql_builder.build_on_conflict_merge(
                    self.dialect, self._qualified, staging, names, self._keys, update
                )
            ]
        return sql_builder.build_update_insert_merge(
            self.dialect, self._qualified, staging, names, self._keys, update
        )

    def _rollback_quietly(self, connection: Any) -> None:
        try:
            self.dialect.rollback(connection)
        except Exception as e:
            self.logger.debug(f"Rollback after failed merge raised: {e}")

    def _drop_staging(self, connection: Any, staging: str) -> None:
        try:
            self.dialect.execute(
                connection,
                sql_builder.build_drop_table(self.dialect.identifiers.quote(staging)),
            )
        except Exception as e:
            self.logger.warning(f"Failed to drop staging table {staging}: {e}")

    def __repr__(self) -> str:
        return (
            f"SqlTargetWriter(dialect={self.dialect.name!r}, table={self.options.table!r}, "
            f"strategy={self.options.strategy.value!r}, state={self.state.name})"
        )
