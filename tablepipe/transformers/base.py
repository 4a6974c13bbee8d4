"""Base class for row transformers."""

from typing import Iterable, List, Optional, Sequence

from tablepipe.core.models import ColumnInfo, Row


class RowTransformer:
    """One element of a transformer chain.

    ``initialize`` runs once, in chain order, before any row flows and may
    add, remove or retype columns. ``transform`` maps one row; returning None
    drops it. Transformers that emit several rows per input override
    ``transform_many``; transformers that buffer override ``flush``.
    """

    name: str = "transformer"

    def __init__(self, name: Optional[str] = None):
        if name:
            self.name = name
        self.input_columns: List[ColumnInfo] = []
        self.output_columns: List[ColumnInfo] = []

    def initialize(self, columns: Sequence[ColumnInfo]) -> List[ColumnInfo]:
        self.input_columns = list(columns)
        self.output_columns = list(columns)
        return list(self.output_columns)

    def transform(self, row: Row) -> Optional[Row]:
        return row

    def transform_many(self, row: Row) -> Iterable[Row]:
        result = self.transform(row)
        if result is None:
            return ()
        return (result,)

    def flush(self) -> Iterable[Row]:
        """Rows still buffered at end of stream."""
        return ()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
