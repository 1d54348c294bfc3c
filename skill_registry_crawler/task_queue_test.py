"""Unit tests for the bounded task queue."""

import asyncio

import pytest

from .task_queue import TaskQueue


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def describe_TaskQueue():
    def it_rejects_zero_concurrency():
        with pytest.raises(ValueError):
            TaskQueue(concurrency=0)

    def it_returns_results_in_submission_order():
        queue = TaskQueue(concurrency=3, interval_cap=0)

        async def work(i):
            await asyncio.sleep(0.001 * (5 - i))
            return i

        results = asyncio.run(queue.add_all((lambda i=i: work(i)) for i in range(5)))

        assert results == [0, 1, 2, 3, 4]
        assert queue.started == 5
        assert queue.pending == 0

    def it_bounds_concurrency():
        queue = TaskQueue(concurrency=2, interval_cap=0)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.001)
            running -= 1

        asyncio.run(queue.add_all(work for _ in range(6)))

        assert peak == 2

    def it_caps_starts_per_interval():
        clock = FakeClock()
        queue = TaskQueue(concurrency=10, interval_cap=3, interval=1.0, clock=clock, sleep=clock.sleep)
        starts = []

        async def work():
            starts.append(clock.now)

        asyncio.run(queue.add_all(work for _ in range(7)))

        assert len(starts) == 7
        for i in range(len(starts) - 3):
            assert starts[i + 3] - starts[i] >= 1.0

    def it_propagates_task_errors():
        queue = TaskQueue()

        async def boom():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            asyncio.run(queue.add(boom))
        assert queue.pending == 0
