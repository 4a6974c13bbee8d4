"""Pytest configuration for tablepipe tests."""

import threading
import time
from typing import Any, Callable, List, Optional, Sequence

import pytest

from tablepipe.core.models import ColumnInfo, SemanticType
from tablepipe.readers.memory import MemoryReader
from tablepipe.writers.base import DataWriter


class RecordingWriter(DataWriter):
    """In-memory writer that records every call made by the engine."""

    def __init__(self):
        self.batches: List[List[list]] = []
        self.commands: List[str] = []
        self.events: List[str] = []
        self.initialized_columns: Optional[List[ColumnInfo]] = None
        self.failures: List[BaseException] = []
        self.failing_command: Optional[str] = None
        self.delay = 0.0
        self.gate: Optional[threading.Event] = None
        self.closed = False
        self.command_delay = 0.0
        self.ignore_interrupts = False
        self.interrupted = threading.Event()
        self.busy = False
        self.overlaps: List[str] = []

    @property
    def columns(self) -> List[ColumnInfo]:
        return list(self.initialized_columns or [])

    @property
    def rows(self) -> List[list]:
        return [row for batch in self.batches for row in batch]

    def initialize(self, columns: Sequence[ColumnInfo]) -> None:
        self.events.append("initialize")
        self.initialized_columns = list(columns)

    def write_batch(self, rows: Sequence[Sequence[Any]]) -> None:
        self.events.append("write")
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        self.batches.append([list(row) for row in rows])

    def complete(self) -> None:
        self.events.append("complete")

    def execute_command(self, command: str) -> None:
        if self.busy:
            self.overlaps.append(command)
        self.busy = True
        try:
            self.events.append(f"command:{command}")
            self.commands.append(command)
            if self.command_delay:
                if self.ignore_interrupts:
                    time.sleep(self.command_delay)
                elif self.interrupted.wait(self.command_delay):
                    self.interrupted.clear()
                    raise RuntimeError(f"command interrupted: {command}")
            if command == self.failing_command:
                raise RuntimeError(f"command failed: {command}")
        finally:
            self.busy = False

    def interrupt(self) -> None:
        self.events.append("interrupt")
        self.interrupted.set()

    def close(self) -> None:
        if self.busy:
            self.overlaps.append("close")
        self.events.append("close")
        self.closed = True


@pytest.fixture
def recording_writer() -> RecordingWriter:
    """Return a writer that records batches, hooks and lifecycle calls."""
    return RecordingWriter()


@pytest.fixture
def id_name_columns() -> List[ColumnInfo]:
    return [
        ColumnInfo("id", SemanticType.INTEGER, nullable=False),
        ColumnInfo("name", SemanticType.STRING),
    ]


@pytest.fixture
def make_reader() -> Callable[[int], MemoryReader]:
    """Factory for a two-column reader holding ``count`` sequential rows."""

    def _make(count: int) -> MemoryReader:
        columns = [ColumnInfo("id", SemanticType.LONG), ColumnInfo("name", SemanticType.STRING)]
        rows = [[i, f"row-{i}"] for i in range(count)]
        return MemoryReader(columns, rows)

    return _make


@pytest.fixture
def duckdb_path(tmp_path) -> str:
    return str(tmp_path / "target.duckdb")


@pytest.fixture
def sqlite_path(tmp_path) -> str:
    return str(tmp_path / "target.db")


@pytest.fixture
def writer_factory() -> Callable[[], RecordingWriter]:
    return RecordingWriter
