"""Streaming pipeline engine.

A run reads from a source, threads the rows through a transformer chain and
writes them to a target. Three stages run concurrently on the event loop:

    producer --(read channel)--> transform --(write channel)--> consumer

Both channels are bounded, so a slow target blocks the producer instead of
growing an in-memory buffer. Blocking source and target calls run in the
loop's default executor.
"""

import asyncio
import random
from typing import Any, Callable, Iterable, List, Optional, Sequence

from tablepipe.config import PipelineOptions
from tablepipe.core.channel import Channel
from tablepipe.core.hooks import run_hook
from tablepipe.core.models import Row
from tablepipe.core.progress import PipelineMetrics, ProgressSink
from tablepipe.core.retry import RetryConfig, RetryPolicy
from tablepipe.core.validation import validate_and_migrate
from tablepipe.logging import get_logger
from tablepipe.readers.base import SourceReader
from tablepipe.transformers.base import RowTransformer
from tablepipe.writers.base import DataWriter

logger = get_logger(__name__)

_EXHAUSTED = object()


async def call_blocking(func: Callable[..., Any], *args: Any) -> Any:
    """Run a blocking call in the worker pool.

    If the awaiting task is cancelled, the cancellation is delivered only
    after the call has returned, so the caller never closes a resource that
    a worker thread is still using.
    """
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, func, *args)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait([future])
        if not future.cancelled() and future.exception() is not None:
            logger.debug(f"Call interrupted by cancellation failed: {future.exception()}")
        raise


class PipelineEngine:
    """Runs source -> transformers -> writer pipelines.

    Args:
    ----
        options: Pipeline options; defaults are used when omitted
        progress_sinks: Receivers of the read/transformed/written counters

    """

    def __init__(
        self,
        options: Optional[PipelineOptions] = None,
        progress_sinks: Optional[Sequence[ProgressSink]] = None,
    ):
        self.options = options or PipelineOptions()
        self.progress_sinks = list(progress_sinks or [])

    async def run(
        self,
        source: SourceReader,
        transformers: Optional[Iterable[RowTransformer]],
        writer: DataWriter,
    ) -> PipelineMetrics:
        """Execute one pipeline run end to end.

        The writer and the source are always closed. Post-failure and final
        hooks run with their own time limit and never mask the original
        error.
        """
        options = self.options
        options.validate()
        chain = list(transformers or [])
        metrics = PipelineMetrics(sinks=list(self.progress_sinks))
        metrics.start()
        error: Optional[BaseException] = None

        try:
            await call_blocking(source.open)
            columns = source.columns
            logger.info(f"Source opened with {len(columns)} columns")
            for transformer in chain:
                columns = transformer.initialize(columns)
                logger.debug(f"Transformer '{transformer.name}' yields {len(columns)} columns")

            await run_hook(writer, "pre", options.pre_exec, options.hook_timeout, fatal=True)
            await call_blocking(writer.initialize, columns)
            await call_blocking(validate_and_migrate, writer, options)

            await self._stream(source, chain, writer, metrics)

            await call_blocking(writer.complete)
            await run_hook(writer, "post", options.post_exec, options.hook_timeout, fatal=True)
        except BaseException as e:
            error = e
            logger.error(f"Pipeline failed: {type(e).__name__}: {e}")
            await run_hook(
                writer, "on-error", options.on_error_exec, options.hook_timeout, fatal=False
            )
            raise
        finally:
            await run_hook(
                writer, "finally", options.finally_exec, options.hook_timeout, fatal=False
            )
            metrics.finish(error)
            self._close_quietly(writer, "writer")
            self._close_quietly(source, "source")
            if options.metrics_path:
                try:
                    metrics.save(options.metrics_path)
                except OSError as e:
                    logger.warning(f"Could not write metrics to {options.metrics_path}: {e}")

        logger.info(
            f"Pipeline completed: {metrics.rows_written:,} rows written in "
            f"{metrics.batches_written} batches, {metrics.duration_seconds:.2f}s"
        )
        return metrics

    async def _stream(
        self,
        source: SourceReader,
        chain: List[RowTransformer],
        writer: DataWriter,
        metrics: PipelineMetrics,
    ) -> None:
        read_channel: Channel[Row] = Channel(self.options.read_queue_capacity, "read")
        write_channel: Channel[Row] = Channel(self.options.write_queue_capacity, "write")
        tasks = [
            asyncio.ensure_future(self._produce(source, read_channel, metrics)),
            asyncio.ensure_future(
                self._transform(chain, read_channel, write_channel, metrics)
            ),
            asyncio.ensure_future(self._consume(writer, write_channel, metrics)),
        ]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failed = [t for t in tasks if t in done and not t.cancelled() and t.exception()]
        if failed:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise failed[0].exception()

    def _make_sampler(self) -> Optional[Callable[[], bool]]:
        rate = self.options.sampling_rate
        if rate >= 1.0:
            return None
        if rate <= 0.0:
            return lambda: False
        rng = random.Random(self.options.sampling_seed)
        return lambda: rng.random() < rate

    async def _produce(
        self, source: SourceReader, out: Channel, metrics: PipelineMetrics
    ) -> None:
        limit = self.options.limit
        sample = self._make_sampler()
        emitted = 0
        faulted = True
        batches = source.read_batches(self.options.batch_size)
        try:
            while not (limit and emitted >= limit):
                batch = await call_blocking(next, batches, _EXHAUSTED)
                if batch is _EXHAUSTED:
                    break
                metrics.add_read(len(batch))
                for row in batch:
                    if sample is not None and not sample():
                        continue
                    await out.put(row)
                    emitted += 1
                    if limit and emitted >= limit:
                        logger.info(f"Row limit of {limit:,} reached")
                        break
            faulted = False
        finally:
            out.close(faulted=faulted)
            close = getattr(batches, "close", None)
            if close is not None:
                close()

    def _apply_chain(
        self,
        chain: List[RowTransformer],
        start: int,
        row: Row,
        metrics: PipelineMetrics,
    ) -> List[Row]:
        rows = [row]
        for transformer in chain[start:]:
            produced: List[Row] = []
            for item in rows:
                produced.extend(transformer.transform_many(item))
            if produced:
                metrics.add_transformed(transformer.name, len(produced))
            rows = produced
            if not rows:
                break
        return rows

    async def _transform(
        self,
        chain: List[RowTransformer],
        inp: Channel,
        out: Channel,
        metrics: PipelineMetrics,
    ) -> None:
        faulted = True
        try:
            async for row in inp:
                for result in self._apply_chain(chain, 0, row, metrics):
                    await out.put(result)
            if not inp.faulted:
                for index, transformer in enumerate(chain):
                    flushed = list(transformer.flush())
                    if flushed:
                        metrics.add_transformed(transformer.name, len(flushed))
                    for row in flushed:
                        for result in self._apply_chain(chain, index + 1, row, metrics):
                            await out.put(result)
            faulted = inp.faulted
        finally:
            out.close(faulted=faulted)

    async def _consume(self, writer: DataWriter, inp: Channel, metrics: PipelineMetrics) -> None:
        policy = RetryPolicy(
            RetryConfig(
                max_retries=self.options.max_retries,
                initial_delay=self.options.retry_delay,
            ),
            name="batch write",
        )
        batch_size = self.options.batch_size
        batch: List[Row] = []
        async for row in inp:
            batch.append(row)
            if len(batch) >= batch_size:
                await self._write(writer, batch, policy, metrics)
                batch = []
        if batch and not inp.faulted:
            await self._write(writer, batch, policy, metrics)

    async def _write(
        self,
        writer: DataWriter,
        batch: List[Row],
        policy: RetryPolicy,
        metrics: PipelineMetrics,
    ) -> None:
        await policy.execute(lambda: call_blocking(writer.write_batch, batch))
        metrics.add_written(len(batch))
        logger.debug(f"Wrote batch of {len(batch)} rows ({metrics.rows_written:,} total)")

    @staticmethod
    def _close_quietly(resource: Any, label: str) -> None:
        try:
            resource.close()
        except Exception as e:
            logger.warning(f"Error while closing {label}: {e}")


async def run_pipeline(
    source: SourceReader,
    writer: DataWriter,
    transformers: Optional[Iterable[RowTransformer]] = None,
    options: Optional[PipelineOptions] = None,
    progress_sinks: Optional[Sequence[ProgressSink]] = None,
) -> PipelineMetrics:
    """Convenience wrapper around ``PipelineEngine(...).run``."""
    engine = PipelineEngine(options, progress_sinks)
    return await engine.run(source, transformers, writer)
