"""
Shared message stream

Bounded single-producer / single-consumer channel between a video's poll
loop and its message router. put() blocks while the channel is full, which
is what throttles the poll loop when the router falls behind. close() never
blocks, so a cancelled poll loop can always signal the router.
"""

import asyncio
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

_CLOSED = object()


class StreamClosed(Exception):
    """Raised by put() once the stream has been closed."""


class MessageStream(Generic[T]):
    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue()
        self._slots = asyncio.Semaphore(capacity)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        # Once closed the end marker always sits in the queue
        return self._queue.qsize() - (1 if self._closed else 0)

    async def put(self, item: T) -> None:
        if self._closed:
            raise StreamClosed("stream is closed")
        await self._slots.acquire()
        if self._closed:
            self._slots.release()
            raise StreamClosed("stream is closed")
        self._queue.put_nowait(item)

    def close(self) -> None:
        """Mark the stream closed; items already queued are still delivered."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[T]:
        """Next item in put order, or None once the stream is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any later get() call
            self._queue.put_nowait(_CLOSED)
            return None
        self._slots.release()
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item
