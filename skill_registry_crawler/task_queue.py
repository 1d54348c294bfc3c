"""Bounded-concurrency task queue with a start-rate cap."""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

T = TypeVar("T")


class TaskQueue:
    """Runs coroutine factories with at most `concurrency` in flight.

    Independently of concurrency, no more than `interval_cap` tasks start in
    any `interval` second window.
    """

    def __init__(
        self,
        concurrency: int = 5,
        interval_cap: int = 10,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.interval_cap = interval_cap
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._semaphore: asyncio.Semaphore | None = None
        self._gate: asyncio.Lock | None = None
        self._starts: deque[float] = deque()
        self.pending = 0
        self.started = 0

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "TaskQueue":
        return cls(settings.concurrency, settings.interval_cap, settings.interval, **kwargs)

    def _primitives(self) -> tuple[asyncio.Semaphore, asyncio.Lock]:
        # Created lazily so the queue binds to the running event loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._gate = asyncio.Lock()
        return self._semaphore, self._gate

    async def _wait_for_slot(self, gate: asyncio.Lock) -> None:
        if not self.interval_cap or self.interval <= 0:
            return
        async with gate:
            while True:
                now = self._clock()
                while self._starts and now - self._starts[0] >= self.interval:
                    self._starts.popleft()
                if len(self._starts) < self.interval_cap:
                    self._starts.append(now)
                    return
                await self._sleep(self.interval - (now - self._starts[0]))

    async def add(self, task: Callable[[], Awaitable[T]]) -> T:
        semaphore, gate = self._primitives()
        self.pending += 1
        try:
            async with semaphore:
                await self._wait_for_slot(gate)
                self.started += 1
                return await task()
        finally:
            self.pending -= 1

    async def add_all(self, tasks: Iterable[Callable[[], Awaitable[T]]]) -> list[T]:
        """Run every task, returning results in submission order."""
        return list(await asyncio.gather(*(self.add(task) for task in tasks)))
