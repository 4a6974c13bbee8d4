"""Contract every pipeline source implements."""

from abc import ABC, abstractmethod
from typing import Iterator, List

from tablepipe.core.models import ColumnInfo, Row


class SourceReader(ABC):
    """Source of a pipeline run.

    ``open`` populates the column list, which stays fixed afterwards.
    ``read_batches`` is a lazy, forward-only sequence of row batches.
    """

    def __init__(self):
        self._columns: List[ColumnInfo] = []
        self._opened = False

    @property
    def columns(self) -> List[ColumnInfo]:
        if not self._opened:
            raise RuntimeError(f"{self.__class__.__name__} has not been opened")
        return list(self._columns)

    def open(self) -> None:
        self._columns = list(self._discover_columns())
        self._opened = True

    @abstractmethod
    def _discover_columns(self) -> List[ColumnInfo]:
        """Return the source's column list."""

    @abstractmethod
    def read_batches(self, batch_size: int) -> Iterator[List[Row]]:
        """Yield batches of at most ``batch_size`` rows."""

    def close(self) -> None:
        """Release resources held by the reader."""

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
