"""Bounded single-producer/single-consumer channel between pipeline stages."""

import asyncio
from typing import Any, Generic, TypeVar

T = TypeVar("T")

_END = object()


class ChannelClosedError(RuntimeError):
    """Raised when putting into a channel that was already closed."""


class Channel(Generic[T]):
    """FIFO queue with a fixed capacity and an explicit end of stream.

    ``put`` suspends while the channel is full. ``close`` never blocks, so a
    stage can always close its output from a ``finally`` block, even when it
    is being cancelled while the queue is full. A channel closed with
    ``faulted=True`` tells the reader that the stream ended abnormally.
    """

    def __init__(self, capacity: int, name: str = "channel"):
        if capacity <= 0:
            raise ValueError(f"Channel capacity must be positive, got {capacity}")
        self.name = name
        self.capacity = capacity
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self.faulted = False
        self.high_water = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, item: T) -> None:
        if self._closed:
            raise ChannelClosedError(f"Channel '{self.name}' is closed")
        await self._queue.put(item)
        size = self._queue.qsize()
        if size > self.high_water:
            self.high_water = size

    def close(self, faulted: bool = False) -> None:
        if self._closed:
            return
        self._closed = True
        self.faulted = faulted
        try:
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            # The reader sees the end once it drains the queue
            pass

    async def get(self) -> Any:
        """Return the next item, or the end marker once closed and drained."""
        if self._closed and self._queue.empty():
            return _END
        return await self._queue.get()

    def __aiter__(self) -> "Channel[T]":
        return self

    async def __anext__(self) -> T:
        item = await self.get()
        if item is _END:
            raise StopAsyncIteration
        return item
