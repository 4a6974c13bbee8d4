"""Tests for the streaming pipeline engine."""

import asyncio
import json
import math
import threading
import time

import pytest

from tablepipe.config import PipelineOptions
from tablepipe.core.engine import PipelineEngine, run_pipeline
from tablepipe.core.errors import ConfigurationError, HookError
from tablepipe.core.models import ColumnInfo, SemanticType
from tablepipe.readers.base import SourceReader
from tablepipe.transformers.base import RowTransformer


def _run(engine, reader, writer, transformers=None):
    return asyncio.run(engine.run(reader, transformers or [], writer))


class UpperCaseName(RowTransformer):
    name = "upper"

    def transform(self, row):
        return [row[0], row[1].upper()]


class DropOdd(RowTransformer):
    name = "drop_odd"

    def transform(self, row):
        return row if row[0] % 2 == 0 else None


class AddFlag(RowTransformer):
    name = "add_flag"

    def initialize(self, columns):
        super().initialize(columns)
        self.output_columns = list(columns) + [ColumnInfo("flag", SemanticType.BOOLEAN)]
        return list(self.output_columns)

    def transform(self, row):
        return list(row) + [True]


class PairUp(RowTransformer):
    """Buffers rows and emits them in pairs; the odd one out comes from flush."""

    name = "pair_up"

    def __init__(self):
        super().__init__()
        self.pending = []

    def transform_many(self, row):
        self.pending.append(row)
        if len(self.pending) == 2:
            out, self.pending = self.pending, []
            return out
        return ()

    def flush(self):
        out, self.pending = self.pending, []
        return out


class FailingReader(SourceReader):
    """Yields one batch, then fails."""

    def _discover_columns(self):
        return [ColumnInfo("id", SemanticType.LONG)]

    def read_batches(self, batch_size):
        yield [[i] for i in range(15)]
        raise IOError("disk vanished")


class TestStreaming:
    def test_row_order_is_preserved(self, make_reader, recording_writer):
        engine = PipelineEngine(
            PipelineOptions(batch_size=64, read_queue_capacity=7, write_queue_capacity=5)
        )
        reader = make_reader(1000)

        _run(engine, reader, recording_writer)

        assert recording_writer.rows == [[i, f"row-{i}"] for i in range(1000)]

    @pytest.mark.parametrize("count,batch_size", [(1000, 64), (10, 10), (1, 50), (0, 10)])
    def test_batch_count_is_ceiling_of_rows_over_batch_size(
        self, make_reader, recording_writer, count, batch_size
    ):
        engine = PipelineEngine(PipelineOptions(batch_size=batch_size))

        metrics = _run(engine, make_reader(count), recording_writer)

        sizes = [len(b) for b in recording_writer.batches]
        assert len(sizes) == math.ceil(count / batch_size)
        assert all(size == batch_size for size in sizes[:-1])
        assert sum(sizes) == count
        assert metrics.rows_written == count
        assert metrics.batches_written == len(sizes)

    def test_slow_writer_blocks_the_producer(self, make_reader, recording_writer):
        options = PipelineOptions(batch_size=10, read_queue_capacity=10, write_queue_capacity=10)
        engine = PipelineEngine(options)
        reader = make_reader(2000)
        recording_writer.gate = threading.Event()

        async def scenario():
            task = asyncio.ensure_future(engine.run(reader, [], recording_writer))
            await asyncio.sleep(0.3)
            served_while_blocked = reader.batches_served
            recording_writer.gate.set()
            await task
            return served_while_blocked

        served = asyncio.run(scenario())

        # Two queues of 10 rows, one batch in the writer, one in the producer
        assert served <= 6
        assert len(recording_writer.rows) == 2000

    def test_lifecycle_order(self, make_reader, recording_writer):
        _run(PipelineEngine(PipelineOptions(batch_size=5)), make_reader(10), recording_writer)

        assert recording_writer.events == [
            "initialize",
            "write",
            "write",
            "complete",
            "close",
        ]


class TestSamplingAndLimit:
    def _sampled(self, make_reader, writer_factory, rate, seed):
        writer = writer_factory()
        options = PipelineOptions(batch_size=100, sampling_rate=rate, sampling_seed=seed)
        _run(PipelineEngine(options), make_reader(1000), writer)
        return [row[0] for row in writer.rows]

    def test_same_seed_selects_same_rows(self, make_reader, writer_factory):
        first = self._sampled(make_reader, writer_factory, 0.3, 42)
        second = self._sampled(make_reader, writer_factory, 0.3, 42)

        assert first == second
        assert 0 < len(first) < 1000
        assert first == sorted(first)

    def test_rate_one_includes_all_and_rate_zero_none(self, make_reader, writer_factory):
        assert len(self._sampled(make_reader, writer_factory, 1.0, None)) == 1000
        assert self._sampled(make_reader, writer_factory, 0.0, 7) == []

    def test_limit_stops_early(self, make_reader, recording_writer):
        reader = make_reader(1000)
        options = PipelineOptions(batch_size=10, limit=25)

        metrics = _run(PipelineEngine(options), reader, recording_writer)

        assert [row[0] for row in recording_writer.rows] == list(range(25))
        assert reader.batches_served == 3
        assert metrics.success is True

    def test_invalid_options_fail_before_anything_runs(self, make_reader, recording_writer):
        with pytest.raises(ConfigurationError):
            _run(PipelineEngine(PipelineOptions(batch_size=0)), make_reader(5), recording_writer)
        assert recording_writer.events == []


class TestTransformers:
    def test_chain_is_applied_in_order(self, make_reader, recording_writer):
        chain = [DropOdd(), UpperCaseName(), AddFlag()]

        metrics = _run(
            PipelineEngine(PipelineOptions(batch_size=3)), make_reader(6), recording_writer, chain
        )

        assert recording_writer.rows == [[0, "ROW-0", True], [2, "ROW-2", True], [4, "ROW-4", True]]
        assert [c.name for c in recording_writer.initialized_columns] == ["id", "name", "flag"]
        assert metrics.transformer_rows == {"drop_odd": 3, "upper": 3, "add_flag": 3}

    def test_flushed_rows_continue_through_the_chain(self, make_reader, recording_writer):
        chain = [PairUp(), UpperCaseName()]

        _run(PipelineEngine(PipelineOptions(batch_size=100)), make_reader(5), recording_writer, chain)

        assert [row[1] for row in recording_writer.rows] == [f"ROW-{i}" for i in range(5)]


class TestFailures:
    def test_writer_failure_propagates_and_runs_cleanup_hooks(self, make_reader, recording_writer):
        recording_writer.failures = [ValueError("bad value")]
        options = PipelineOptions(
            batch_size=10,
            post_exec="post",
            on_error_exec="on-error",
            finally_exec="finally",
        )

        with pytest.raises(ValueError, match="bad value"):
            _run(PipelineEngine(options), make_reader(100), recording_writer)

        assert recording_writer.commands == ["on-error", "finally"]
        assert recording_writer.closed

    def test_transient_failures_are_retried(self, make_reader, recording_writer):
        recording_writer.failures = [ConnectionError("connection reset by peer")]
        options = PipelineOptions(batch_size=10, max_retries=2, retry_delay=0)

        metrics = _run(PipelineEngine(options), make_reader(30), recording_writer)

        assert len(recording_writer.rows) == 30
        assert metrics.batches_written == 3

    def test_retries_exhausted(self, make_reader, recording_writer):
        recording_writer.failures = [TimeoutError("timed out")] * 3
        options = PipelineOptions(batch_size=10, max_retries=1, retry_delay=0)

        with pytest.raises(TimeoutError):
            _run(PipelineEngine(options), make_reader(30), recording_writer)

    def test_source_failure_skips_trailing_partial_batch(self, recording_writer):
        options = PipelineOptions(batch_size=10)

        with pytest.raises(IOError, match="disk vanished"):
            _run(PipelineEngine(options), FailingReader(), recording_writer)

        assert len(recording_writer.rows) in (0, 10)
        assert "complete" not in recording_writer.events

    def test_failing_pre_hook_aborts_before_initialize(self, make_reader, recording_writer):
        recording_writer.failing_command = "pre"
        options = PipelineOptions(pre_exec="pre", finally_exec="finally")

        with pytest.raises(HookError) as exc_info:
            _run(PipelineEngine(options), make_reader(5), recording_writer)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "initialize" not in recording_writer.events
        assert recording_writer.commands == ["pre", "finally"]

    def test_failing_finally_hook_is_not_fatal(self, make_reader, recording_writer):
        recording_writer.failing_command = "finally"
        options = PipelineOptions(post_exec="post", finally_exec="finally")

        metrics = _run(PipelineEngine(options), make_reader(5), recording_writer)

        assert metrics.success is True
        assert recording_writer.commands == ["post", "finally"]

    def test_timed_out_hook_is_interrupted_before_the_next_step(
        self, make_reader, recording_writer
    ):
        recording_writer.failures = [ValueError("bad value")]
        recording_writer.command_delay = 5.0
        options = PipelineOptions(
            batch_size=10,
            hook_timeout=0.1,
            on_error_exec="on-error",
            finally_exec="finally",
        )

        started = time.monotonic()
        with pytest.raises(ValueError, match="bad value"):
            _run(PipelineEngine(options), make_reader(20), recording_writer)

        assert time.monotonic() - started < 4
        assert recording_writer.overlaps == []
        assert recording_writer.events[-5:] == [
            "command:on-error",
            "interrupt",
            "command:finally",
            "interrupt",
            "close",
        ]

    def test_hook_ignoring_interrupt_is_waited_for(self, make_reader, recording_writer):
        recording_writer.command_delay = 0.3
        recording_writer.ignore_interrupts = True
        options = PipelineOptions(hook_timeout=0.05, finally_exec="finally")

        metrics = _run(PipelineEngine(options), make_reader(5), recording_writer)

        assert metrics.success is True
        assert recording_writer.overlaps == []
        assert recording_writer.events[-3:] == ["command:finally", "interrupt", "close"]

    def test_timed_out_pre_hook_aborts_the_run(self, make_reader, recording_writer):
        recording_writer.command_delay = 5.0
        options = PipelineOptions(pre_exec="pre", hook_timeout=0.1)

        with pytest.raises(HookError, match="timed out"):
            _run(PipelineEngine(options), make_reader(5), recording_writer)

        assert "initialize" not in recording_writer.events
        assert recording_writer.overlaps == []

    def test_caller_cancellation_waits_for_in_flight_write(self, make_reader, recording_writer):
        recording_writer.delay = 0.2
        engine = PipelineEngine(PipelineOptions(batch_size=10))

        async def scenario():
            task = asyncio.ensure_future(engine.run(make_reader(1000), [], recording_writer))
            await asyncio.sleep(0.1)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert recording_writer.events[-1] == "close"
        assert "complete" not in recording_writer.events


def test_metrics_are_saved(tmp_path, make_reader, recording_writer):
    path = tmp_path / "out" / "metrics.json"
    options = PipelineOptions(batch_size=4, metrics_path=str(path))

    asyncio.run(run_pipeline(make_reader(10), recording_writer, options=options))

    saved = json.loads(path.read_text())
    assert saved["rows_read"] == 10
    assert saved["rows_written"] == 10
    assert saved["batches_written"] == 3
    assert saved["success"] is True
