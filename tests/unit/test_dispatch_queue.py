"""Unit tests for the rate-limited dispatch queue.

This test suite covers:
    - FIFO admission order
    - Admission-to-admission spacing (fake clock and wall clock)
    - Exclusivity: one task running at a time
    - Error propagation
    - Abandoned submitters
    - Close semantics
"""

import asyncio
import gc
import time

import pytest

from erp_gateway.core.dispatch_queue import DispatchQueue
from erp_gateway.exceptions import QueueClosedError


class FakeClock:
    """Monotonic clock advanced only by the queue's own sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.mark.asyncio
async def test_rejects_negative_interval() -> None:
    with pytest.raises(ValueError):
        DispatchQueue(interval_seconds=-1)


@pytest.mark.asyncio
async def test_returns_task_result() -> None:
    queue = DispatchQueue(interval_seconds=0)

    async def task() -> str:
        return "done"

    assert await queue.submit(task) == "done"
    assert queue.admissions == 1
    await queue.close()


@pytest.mark.asyncio
async def test_fifo_order(clock: FakeClock) -> None:
    queue = DispatchQueue(interval_seconds=5.0, clock=clock, sleep=clock.sleep)
    order: list[int] = []

    def make_task(i: int):
        async def task() -> int:
            order.append(i)
            return i

        return task

    results = await asyncio.gather(*(queue.submit(make_task(i)) for i in range(5)))

    assert order == [0, 1, 2, 3, 4]
    assert results == [0, 1, 2, 3, 4]
    await queue.close()


@pytest.mark.asyncio
async def test_admissions_spaced_by_interval(clock: FakeClock) -> None:
    queue = DispatchQueue(interval_seconds=5.0, clock=clock, sleep=clock.sleep)
    started: list[float] = []

    async def task() -> None:
        started.append(clock())

    await asyncio.gather(*(queue.submit(task) for _ in range(4)))

    assert started == [0.0, 5.0, 10.0, 15.0]
    await queue.close()


@pytest.mark.asyncio
async def test_first_admission_is_immediate(clock: FakeClock) -> None:
    queue = DispatchQueue(interval_seconds=5.0, clock=clock, sleep=clock.sleep)

    async def task() -> None:
        return None

    await queue.submit(task)

    assert clock.sleeps == []
    await queue.close()


@pytest.mark.asyncio
async def test_spacing_measured_from_admission(clock: FakeClock) -> None:
    """A task that runs longer than the interval delays only itself."""
    queue = DispatchQueue(interval_seconds=5.0, clock=clock, sleep=clock.sleep)
    started: list[float] = []

    async def slow() -> None:
        started.append(clock())
        clock.now += 7.0

    async def fast() -> None:
        started.append(clock())

    await asyncio.gather(queue.submit(slow), queue.submit(fast))

    # The slot opened at t=5 while the slow task was still running
    assert started == [0.0, 7.0]
    await queue.close()


@pytest.mark.asyncio
async def test_idle_queue_admits_immediately(clock: FakeClock) -> None:
    queue = DispatchQueue(interval_seconds=5.0, clock=clock, sleep=clock.sleep)

    async def task() -> None:
        return None

    await queue.submit(task)
    clock.now += 60.0
    await queue.submit(task)

    assert clock.sleeps == []
    await queue.close()


@pytest.mark.asyncio
async def test_wall_clock_spacing() -> None:
    interval = 0.05
    queue = DispatchQueue(interval_seconds=interval)
    started: list[float] = []

    async def task() -> None:
        started.append(time.monotonic())

    begin = time.monotonic()
    await asyncio.gather(*(queue.submit(task) for _ in range(4)))

    assert started[-1] - begin >= 3 * interval
    await queue.close()


@pytest.mark.asyncio
async def test_one_task_at_a_time() -> None:
    queue = DispatchQueue(interval_seconds=0)
    running = 0
    max_running = 0

    async def task() -> None:
        nonlocal running, max_running
        running += 1
        max_running = max(max_running, running)
        await asyncio.sleep(0.01)
        running -= 1

    await asyncio.gather(*(queue.submit(task) for _ in range(5)))

    assert max_running == 1
    await queue.close()


@pytest.mark.asyncio
async def test_task_error_propagates_and_queue_continues() -> None:
    queue = DispatchQueue(interval_seconds=0)

    async def boom() -> None:
        raise RuntimeError("upstream exploded")

    async def ok() -> str:
        return "ok"

    with pytest.raises(RuntimeError, match="upstream exploded"):
        await queue.submit(boom)
    assert await queue.submit(ok) == "ok"
    await queue.close()


@pytest.mark.asyncio
async def test_abandoned_submission_still_runs() -> None:
    queue = DispatchQueue(interval_seconds=0)
    release = asyncio.Event()
    ran: list[str] = []

    async def blocker() -> None:
        await release.wait()

    async def abandoned() -> None:
        ran.append("abandoned")

    first = asyncio.create_task(queue.submit(blocker))
    second = asyncio.create_task(queue.submit(abandoned))
    await asyncio.sleep(0.01)

    second.cancel()
    with pytest.raises(asyncio.CancelledError):
        await second

    release.set()
    await first
    # The worker picks the abandoned task up after the blocker
    for _ in range(10):
        if ran:
            break
        await asyncio.sleep(0.01)

    assert ran == ["abandoned"]
    await queue.close()


@pytest.mark.asyncio
async def test_abandoned_failing_submission_leaves_no_unretrieved_error() -> None:
    loop = asyncio.get_running_loop()
    reports: list[dict] = []
    previous = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: reports.append(context))

    queue = DispatchQueue(interval_seconds=0)
    release = asyncio.Event()

    async def blocker() -> None:
        await release.wait()

    async def failing() -> None:
        raise RuntimeError("upstream exploded")

    async def ok() -> str:
        return "ok"

    try:
        first = asyncio.create_task(queue.submit(blocker))
        abandoned = asyncio.create_task(queue.submit(failing))
        await asyncio.sleep(0.01)
        abandoned.cancel()
        with pytest.raises(asyncio.CancelledError):
            await abandoned

        release.set()
        await first
        # Runs after the failing task, so the worker drops its last reference
        assert await queue.submit(ok) == "ok"
        await queue.close()
        del first, abandoned
        gc.collect()
        await asyncio.sleep(0)
    finally:
        loop.set_exception_handler(previous)

    assert not [r for r in reports if "never retrieved" in str(r.get("message", ""))]


@pytest.mark.asyncio
async def test_depth_counts_waiting_tasks() -> None:
    queue = DispatchQueue(interval_seconds=0)
    release = asyncio.Event()

    async def blocker() -> None:
        await release.wait()

    submissions = [asyncio.create_task(queue.submit(blocker)) for _ in range(3)]
    await asyncio.sleep(0.01)

    assert queue.depth == 2

    release.set()
    await asyncio.gather(*submissions)
    assert queue.depth == 0
    await queue.close()


@pytest.mark.asyncio
async def test_submit_after_close_raises() -> None:
    queue = DispatchQueue(interval_seconds=0)
    await queue.close()

    async def task() -> None:
        return None

    assert queue.closed
    with pytest.raises(QueueClosedError):
        await queue.submit(task)


@pytest.mark.asyncio
async def test_close_lets_running_task_finish_and_rejects_pending() -> None:
    queue = DispatchQueue(interval_seconds=0)
    started = asyncio.Event()
    release = asyncio.Event()
    ran: list[str] = []

    async def running() -> str:
        started.set()
        await release.wait()
        return "finished"

    async def pending() -> None:
        ran.append("pending")

    first = asyncio.create_task(queue.submit(running))
    second = asyncio.create_task(queue.submit(pending))
    await started.wait()

    closing = asyncio.create_task(queue.close())
    await asyncio.sleep(0.01)
    release.set()
    await closing

    assert await first == "finished"
    with pytest.raises(QueueClosedError):
        await second
    assert ran == []


@pytest.mark.asyncio
async def test_close_while_waiting_for_slot() -> None:
    queue = DispatchQueue(interval_seconds=60)

    async def task() -> str:
        return "ran"

    assert await queue.submit(task) == "ran"
    waiting = asyncio.create_task(queue.submit(task))
    await asyncio.sleep(0.01)

    await queue.close()

    with pytest.raises(QueueClosedError):
        await waiting


@pytest.mark.asyncio
async def test_close_is_idempotent() -> None:
    queue = DispatchQueue(interval_seconds=0)
    await queue.close()
    await queue.close()
    assert queue.closed
