"""Dialect-aware matching of source column names against target columns."""

from typing import List, Optional, Sequence

from tablepipe.core.errors import ConfigurationError
from tablepipe.core.models import ColumnInfo, TargetColumn, TargetSchema
from tablepipe.dialects.base import IdentifierRules


def physical_name(column: ColumnInfo, identifiers: Optional[IdentifierRules]) -> str:
    """Name the column would have in the target if created from this source."""
    if identifiers is None or column.case_sensitive or identifiers.needs_quoting(column.name):
        return column.name
    return identifiers.normalize(column.name)


def find_target_column(
    column: ColumnInfo,
    snapshot: TargetSchema,
    identifiers: Optional[IdentifierRules] = None,
) -> Optional[TargetColumn]:
    """Find the target column a source column writes to.

    The dialect's physical name is matched exactly first. Columns that are not
    case-sensitive fall back to a case-insensitive match.
    """
    wanted = physical_name(column, identifiers)
    for target in snapshot.columns:
        if target.name == wanted:
            return target
    if column.case_sensitive:
        return None
    lowered = column.name.lower()
    for target in snapshot.columns:
        if target.name.lower() == lowered:
            return target
    return None


def resolve_key_columns(keys: Sequence[str], available: Sequence[str]) -> List[str]:
    """Resolve user supplied key names against the available column names.

    Raises:
    ------
        ConfigurationError: If a key does not name any available column

    """
    resolved = []
    for key in keys:
        match = next((name for name in available if name == key), None)
        if match is None:
            match = next((name for name in available if name.lower() == key.lower()), None)
        if match is None:
            raise ConfigurationError(
                f"Key column '{key}' not found. Available columns: {', '.join(available)}",
                context={"key": key, "available": list(available)},
            )
        if match not in resolved:
            resolved.append(match)
    return resolved
