"""Contract every pipeline target implements."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from tablepipe.core.models import ColumnInfo, TargetSchema


class DataWriter(ABC):
    """Target of a pipeline run.

    A writer is usable only after ``initialize`` has completed. All methods
    are blocking; the pipeline engine calls them from worker threads, one at a
    time.
    """

    @property
    @abstractmethod
    def columns(self) -> List[ColumnInfo]:
        """Columns as the target will receive them, after initialization."""

    @abstractmethod
    def initialize(self, columns: Sequence[ColumnInfo]) -> None:
        """Prepare the target for the given column list."""

    @abstractmethod
    def write_batch(self, rows: Sequence[Sequence[Any]]) -> None:
        """Write one batch atomically."""

    @abstractmethod
    def complete(self) -> None:
        """Flush writer-level buffering after the last batch."""

    @abstractmethod
    def execute_command(self, command: str) -> None:
        """Execute a free-form command against the target (hooks, maintenance)."""

    @abstractmethod
    def close(self) -> None:
        """Release all resources. Safe to call more than once."""

    def interrupt(self) -> None:
        """Ask a statement running on another thread to stop. No-op by default."""

    def inspect_target(self) -> Optional[TargetSchema]:
        """Return the target's schema snapshot, or None if not applicable."""
        return None

    def migrate_schema(self, report: Any) -> None:
        """Add the columns a compatibility report found missing in the target."""
        raise NotImplementedError(f"{self.__class__.__name__} does not support schema migration")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
