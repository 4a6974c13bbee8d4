"""Localizes the first unconvertible value of a failed batch."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from tablepipe.core.models import ColumnInfo, SemanticType, TargetColumn, TargetSchema
from tablepipe.core.values import ValueKind, converter_for, type_name
from tablepipe.logging import get_logger
from tablepipe.schema.inspector import SchemaInspector

logger = get_logger(__name__)

MAX_VALUE_DISPLAY = 50


@dataclass(frozen=True)
class FailureAnalysis:
    """Outcome of a failure analysis.

    ``localized`` is True only when a specific value was shown to fail.
    """

    localized: bool
    report: str
    row_index: Optional[int] = None
    column_name: Optional[str] = None


def _display(value: Any) -> str:
    text = "NULL" if value is None else str(value)
    if len(text) > MAX_VALUE_DISPLAY:
        text = text[: MAX_VALUE_DISPLAY - 3] + "..."
    return text


def _check_limits(value: Any, target: TargetColumn) -> None:
    """Raise if a converted value does not fit the target's declared size."""
    if target.semantic_type == SemanticType.STRING and target.max_length:
        if len(value) > target.max_length:
            raise ValueError(
                f"Value length {len(value)} exceeds maximum length {target.max_length}"
            )
    if (
        target.semantic_type == SemanticType.DECIMAL
        and target.precision is not None
        and isinstance(value, Decimal)
    ):
        scale = target.scale or 0
        integer_digits = max(value.adjusted() + 1, 0)
        if integer_digits > target.precision - scale:
            raise ValueError(
                f"Value needs {integer_digits} integer digits but "
                f"{target.native_type} allows {target.precision - scale}"
            )


class BatchFailureAnalyzer:
    """Re-checks a failed batch value by value against the live target schema."""

    def __init__(self, inspector: SchemaInspector):
        self.inspector = inspector

    def analyze(
        self, table: str, rows: Sequence[Sequence[Any]], columns: Sequence[ColumnInfo]
    ) -> FailureAnalysis:
        try:
            snapshot = self.inspector.inspect(table)
            return self.analyze_against(snapshot, rows, columns)
        except Exception as e:
            logger.warning(f"Batch failure analysis could not run: {e}")
            return FailureAnalysis(False, f"Analysis failed itself: {e}")

    def analyze_against(
        self,
        snapshot: TargetSchema,
        rows: Sequence[Sequence[Any]],
        columns: Sequence[ColumnInfo],
    ) -> FailureAnalysis:
        if not snapshot.exists or not snapshot.columns:
            return FailureAnalysis(
                False,
                "Could not retrieve target schema definition from database. "
                "Cannot perform deep analysis.",
            )

        mapping: List[Optional[TargetColumn]] = []
        for column in columns:
            lowered = column.name.lower()
            mapping.append(next((t for t in snapshot.columns if t.name.lower() == lowered), None))
        converters = [
            converter_for(ValueKind.for_type(t.semantic_type)) if t is not None else None
            for t in mapping
        ]

        for row_index, row in enumerate(rows):
            for col_index, value in enumerate(row):
                target = mapping[col_index] if col_index < len(mapping) else None
                if target is None or value is None:
                    continue
                try:
                    converted = converters[col_index](value)
                    _check_limits(converted, target)
                except Exception as e:
                    report = self._format_report(row_index, col_index, row, columns, target, e)
                    return FailureAnalysis(True, report, row_index, columns[col_index].name)

        return FailureAnalysis(
            False,
            "[Error Analysis] Deep analysis could not localize the failing value; "
            "the original error is authoritative.",
        )

    @staticmethod
    def _format_report(
        row_index: int,
        col_index: int,
        row: Sequence[Any],
        columns: Sequence[ColumnInfo],
        target: TargetColumn,
        error: Exception,
    ) -> str:
        source = columns[col_index]
        value = row[col_index]
        lines = [
            f"[Error Analysis] Issue detected at Row {row_index + 1} (in batch).",
            f"Column Mapping: Source '{source.name}' -> Target '{target.name}'",
            f"Source Type: {source.type.value}",
            f"Target Type: {target.native_type} ({target.semantic_type.value})",
            f"Value: '{_display(value)}' ({type_name(value)})",
            f"Error Detail: Value could not be converted to Target Type. {error}",
            "",
            "Row Context:",
        ]
        for index, column in enumerate(columns):
            cell = row[index] if index < len(row) else None
            marker = " <--- ERROR" if index == col_index else ""
            lines.append(f"  [{index}] {column.name}: {_display(cell)}{marker}")
        return "\n".join(lines)
