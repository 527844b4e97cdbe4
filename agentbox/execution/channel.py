"""Unbounded single-consumer channel used by streaming execution."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Generic, TypeVar

T = TypeVar("T")

_CLOSED = object()


class StreamChannel(Generic[T]):
    """Producer pushes, consumer awaits and pops; ``close`` ends iteration.

    Pushing never blocks, so a slow consumer cannot cause events to be
    dropped. Events pushed after ``close`` are ignored.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item: T) -> None:
        if self._closed:
            return
        self._queue.put_nowait(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
