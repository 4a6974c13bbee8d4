"""Progress reporting and run metrics."""

import json
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from tablepipe.logging import get_logger

logger = get_logger(__name__)


class ProgressSink(Protocol):
    """Receives monotonically increasing counters while a pipeline runs."""

    def on_rows_read(self, total: int) -> None:
        ...

    def on_rows_transformed(self, transformer: str, total: int) -> None:
        ...

    def on_rows_written(self, total: int) -> None:
        ...


class LoggingProgressSink:
    """Logs counters at INFO whenever a multiple of ``every`` rows is crossed."""

    def __init__(self, every: int = 100_000):
        self.every = every
        self._last_read = 0
        self._last_written = 0

    def on_rows_read(self, total: int) -> None:
        if total // self.every > self._last_read // self.every:
            logger.info(f"Read {total:,} rows")
        self._last_read = total

    def on_rows_transformed(self, transformer: str, total: int) -> None:
        pass

    def on_rows_written(self, total: int) -> None:
        if total // self.every > self._last_written // self.every:
            logger.info(f"Wrote {total:,} rows")
        self._last_written = total


@dataclass
class PipelineMetrics:
    """Counters and timings of one pipeline run."""

    rows_read: int = 0
    rows_written: int = 0
    batches_written: int = 0
    transformer_rows: Dict[str, int] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    sinks: List[Any] = field(default_factory=list, repr=False)
    _start_clock: float = field(default=0.0, repr=False)
    _end_clock: float = field(default=0.0, repr=False)

    def start(self) -> None:
        self.started_at = datetime.now(timezone.utc)
        self._start_clock = time.perf_counter()

    def finish(self, error: Optional[BaseException] = None) -> None:
        self.finished_at = datetime.now(timezone.utc)
        self._end_clock = time.perf_counter()
        self.success = error is None
        if error is not None:
            self.error = f"{type(error).__name__}: {error}"

    def add_read(self, count: int) -> None:
        self.rows_read += count
        for sink in self.sinks:
            sink.on_rows_read(self.rows_read)

    def add_transformed(self, transformer: str, count: int) -> None:
        total = self.transformer_rows.get(transformer, 0) + count
        self.transformer_rows[transformer] = total
        for sink in self.sinks:
            sink.on_rows_transformed(transformer, total)

    def add_written(self, count: int) -> None:
        self.rows_written += count
        self.batches_written += 1
        for sink in self.sinks:
            sink.on_rows_written(self.rows_written)

    @property
    def duration_seconds(self) -> float:
        if not self._start_clock:
            return 0.0
        end = self._end_clock or time.perf_counter()
        return end - self._start_clock

    @property
    def rows_per_second(self) -> float:
        duration = self.duration_seconds
        return self.rows_written / duration if duration > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "rows_read": self.rows_read,
            "rows_written": self.rows_written,
            "batches_written": self.batches_written,
            "rows_per_second": round(self.rows_per_second, 1),
            "transformers": dict(self.transformer_rows),
            "success": self.success,
            "error": self.error,
        }

    def save(self, path: str) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Metrics written to {path}")
