from typing import Iterator, List, Sequence

from tablepipe.core.models import ColumnInfo, Row
from tablepipe.readers.base import SourceReader


class MemoryReader(SourceReader):
    """Serves rows held in memory; mainly for embedding and tests."""

    def __init__(self, columns: Sequence[ColumnInfo], rows: Sequence[Sequence]):
        super().__init__()
        self._declared = list(columns)
        self._rows = rows
        self.batches_served = 0

    def _discover_columns(self) -> List[ColumnInfo]:
        return self._declared

    def read_batches(self, batch_size: int) -> Iterator[List[Row]]:
        for start in range(0, len(self._rows), batch_size):
            self.batches_served += 1
            yield [list(row) for row in self._rows[start : start + batch_size]]
