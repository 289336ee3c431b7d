# site_mirror/crawler/limiter.py
"""
Concurrency limiter: runs at most N coroutine factories at a time, FIFO.
"""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Set, Tuple, TypeVar

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[Any]]


class ConcurrencyLimiter:
    """Bounded executor for zero-argument coroutine factories.

    ``run()`` never blocks: it enqueues the factory and returns a future that
    settles with the factory's result or exception. A failing task only
    fails its own future. Nothing is retried here.
    """

    def __init__(self, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self._queue: Deque[Tuple[TaskFactory, asyncio.Future]] = deque()
        self._running: Set[asyncio.Task] = set()
        self._active = 0
        self.peak = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._queue)

    def run(self, factory: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.append((factory, future))
        self._next()
        return future

    def clear(self) -> int:
        """Cancel every queued task that has not started yet."""
        dropped = 0
        while self._queue:
            _, future = self._queue.popleft()
            if future.cancel():
                dropped += 1
        return dropped

    def _next(self) -> None:
        while self._queue and self._active < self.concurrency:
            factory, future = self._queue.popleft()
            if future.done():
                continue
            self._active += 1
            self.peak = max(self.peak, self._active)
            task = asyncio.ensure_future(self._execute(factory, future))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _execute(self, factory: TaskFactory, future: asyncio.Future) -> None:
        try:
            result = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._active -= 1
            self._next()
