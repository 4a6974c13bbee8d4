"""Classification of source columns against a target schema snapshot."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from tablepipe.core.models import ColumnInfo, SemanticType, TargetColumn, TargetSchema
from tablepipe.dialects.base import IdentifierRules
from tablepipe.logging import get_logger
from tablepipe.schema.matcher import find_target_column

logger = get_logger(__name__)


class CompatibilityStatus(Enum):
    """Outcome of comparing one column between source and target."""

    COMPATIBLE = "compatible"
    WILL_BE_CREATED = "will_be_created"
    POSSIBLE_TRUNCATION = "possible_truncation"
    TYPE_MISMATCH = "type_mismatch"
    MISSING_IN_TARGET = "missing_in_target"
    EXTRA_IN_TARGET = "extra_in_target"
    EXTRA_IN_TARGET_NOT_NULL = "extra_in_target_not_null"
    NULLABILITY_CONFLICT = "nullability_conflict"


_ALWAYS_ERRORS = (
    CompatibilityStatus.NULLABILITY_CONFLICT,
    CompatibilityStatus.EXTRA_IN_TARGET_NOT_NULL,
)

_WARNINGS = (
    CompatibilityStatus.POSSIBLE_TRUNCATION,
    CompatibilityStatus.TYPE_MISMATCH,
    CompatibilityStatus.MISSING_IN_TARGET,
    CompatibilityStatus.EXTRA_IN_TARGET,
)

# Narrowing conversions that can lose data
_NARROWING = {
    (SemanticType.LONG, SemanticType.INTEGER),
    (SemanticType.DECIMAL, SemanticType.INTEGER),
    (SemanticType.DECIMAL, SemanticType.LONG),
    (SemanticType.FLOAT, SemanticType.INTEGER),
    (SemanticType.FLOAT, SemanticType.LONG),
    (SemanticType.TIMESTAMP_TZ, SemanticType.TIMESTAMP),
}

# Source types that convert into any target type without a declared parse
_FLEXIBLE_SOURCES = (SemanticType.STRING,)


@dataclass(frozen=True)
class ColumnCompatibility:
    """Result for a single column."""

    name: str
    status: CompatibilityStatus
    source: Optional[ColumnInfo] = None
    target: Optional[TargetColumn] = None
    message: str = ""


@dataclass(frozen=True)
class SchemaCompatibilityReport:
    """Per-column classification plus the resulting warnings and errors."""

    target_exists: bool
    columns: Tuple[ColumnCompatibility, ...] = field(default_factory=tuple)
    warnings: Tuple[str, ...] = field(default_factory=tuple)
    errors: Tuple[str, ...] = field(default_factory=tuple)
    strict: bool = False

    @property
    def is_compatible(self) -> bool:
        return not self.errors

    @property
    def missing_columns(self) -> List[ColumnInfo]:
        """Source columns that an additive migration would add."""
        return [
            c.source
            for c in self.columns
            if c.status == CompatibilityStatus.MISSING_IN_TARGET and c.source is not None
        ]

    def by_status(self, status: CompatibilityStatus) -> List[ColumnCompatibility]:
        return [c for c in self.columns if c.status == status]

    def error_messages(self) -> List[str]:
        return list(self.errors)


def _types_compatible(source: SemanticType, target: SemanticType) -> bool:
    if source == target or source in _FLEXIBLE_SOURCES or target == SemanticType.STRING:
        return True
    if source.is_numeric and target.is_numeric:
        return True
    if source.is_temporal and target.is_temporal:
        return True
    if source == SemanticType.BOOLEAN and target.is_numeric:
        return True
    return False


def _classify_column(column: ColumnInfo, target: TargetColumn) -> ColumnCompatibility:
    if column.nullable and not target.nullable and not target.primary_key:
        return ColumnCompatibility(
            column.name,
            CompatibilityStatus.NULLABILITY_CONFLICT,
            column,
            target,
            f"Column '{column.name}' is nullable in source but '{target.name}' is NOT NULL in target",
        )
    if not _types_compatible(column.type, target.semantic_type):
        return ColumnCompatibility(
            column.name,
            CompatibilityStatus.TYPE_MISMATCH,
            column,
            target,
            f"Column '{column.name}' is {column.type.value} in source but "
            f"{target.native_type} in target",
        )
    if (column.type, target.semantic_type) in _NARROWING or (
        column.type == SemanticType.STRING and target.max_length is not None
    ):
        return ColumnCompatibility(
            column.name,
            CompatibilityStatus.POSSIBLE_TRUNCATION,
            column,
            target,
            f"Column '{column.name}' ({column.type.value}) may be truncated "
            f"when written to {target.native_type}",
        )
    return ColumnCompatibility(column.name, CompatibilityStatus.COMPATIBLE, column, target)


def classify(
    source_columns: Sequence[ColumnInfo],
    snapshot: TargetSchema,
    strict: bool = False,
    identifiers: Optional[IdentifierRules] = None,
) -> SchemaCompatibilityReport:
    """Classify every source column against the target snapshot.

    Args:
    ----
        source_columns: Columns the pipeline will write
        snapshot: Target schema snapshot
        strict: Treat columns missing in the target as errors
        identifiers: Dialect identifier rules used for name matching

    Returns:
    -------
        Report; compatible iff no column has a hard-conflict status

    """
    if not snapshot.exists:
        created = tuple(
            ColumnCompatibility(
                c.name,
                CompatibilityStatus.WILL_BE_CREATED,
                c,
                None,
                f"Column '{c.name}' will be created",
            )
            for c in source_columns
        )
        return SchemaCompatibilityReport(target_exists=False, columns=created, strict=strict)

    results: List[ColumnCompatibility] = []
    matched = set()
    for column in source_columns:
        target = find_target_column(column, snapshot, identifiers)
        if target is None:
            results.append(
                ColumnCompatibility(
                    column.name,
                    CompatibilityStatus.MISSING_IN_TARGET,
                    column,
                    None,
                    f"Column '{column.name}' does not exist in target",
                )
            )
            continue
        matched.add(target.name)
        results.append(_classify_column(column, target))

    for target in snapshot.columns:
        if target.name in matched:
            continue
        if not target.nullable:
            results.append(
                ColumnCompatibility(
                    target.name,
                    CompatibilityStatus.EXTRA_IN_TARGET_NOT_NULL,
                    None,
                    target,
                    f"Target column '{target.name}' is NOT NULL but not provided by source",
                )
            )
        else:
            results.append(
                ColumnCompatibility(
                    target.name,
                    CompatibilityStatus.EXTRA_IN_TARGET,
                    None,
                    target,
                    f"Target column '{target.name}' is not provided by source and will be NULL",
                )
            )

    warnings: List[str] = []
    errors: List[str] = []
    for result in results:
        if result.status in _ALWAYS_ERRORS or (
            strict and result.status == CompatibilityStatus.MISSING_IN_TARGET
        ):
            errors.append(result.message)
        elif result.status in _WARNINGS:
            warnings.append(result.message)

    if snapshot.row_count:
        warnings.append(f"Target table already contains {snapshot.row_count:,} rows")

    return SchemaCompatibilityReport(
        target_exists=True,
        columns=tuple(results),
        warnings=tuple(warnings),
        errors=tuple(errors),
        strict=strict,
    )


def log_report(report: SchemaCompatibilityReport) -> None:
    for warning in report.warnings:
        logger.warning(f"Schema: {warning}")
    for error in report.errors:
        logger.error(f"Schema: {error}")
    if report.is_compatible:
        logger.debug("Schema: source is compatible with target")
