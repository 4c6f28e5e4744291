"""Single-lane, rate-limited dispatch queue.

Every upstream round trip goes through one DispatchQueue. A single worker
coroutine takes submissions in FIFO order and admits them one at a time:

- at most one task runs at any instant
- consecutive admissions are at least ``interval_seconds`` apart, measured
  from admission to admission, so a task that overruns the interval only
  delays the next admission until it finishes
- pending submissions are unbounded

A caller that stops waiting (its await is cancelled) does not withdraw its
task: once submitted, the task is admitted and run regardless, because an
upstream write cannot be safely aborted half way.

Examples:
    >>> queue = DispatchQueue(interval_seconds=5.0)
    >>> outcome = await queue.submit(lambda: caller.attempt(request))
    >>> await queue.close()
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from erp_gateway.exceptions import QueueClosedError
from erp_gateway.observability.logging import get_logger
from erp_gateway.observability.metrics import set_queue_depth

logger = get_logger(__name__)

T = TypeVar("T")

Task = Callable[[], Awaitable[Any]]


class DispatchQueue:
    """FIFO queue granting one admission slot per fixed interval.

    Attributes:
        interval_seconds: Minimum time between two admissions.
        admissions: Number of tasks admitted so far.
        last_admission: Clock reading of the latest admission, or None.
    """

    def __init__(
        self,
        interval_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize an idle queue.

        The worker is started lazily on the first submission so the queue
        can be built before an event loop is running.

        Args:
            interval_seconds: Minimum spacing between admissions (>= 0).
            clock: Monotonic clock in seconds.
            sleep: Coroutine used to wait for the next slot.
        """
        if interval_seconds < 0:
            raise ValueError(f"interval_seconds must be >= 0, got {interval_seconds}")
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._pending: asyncio.Queue[tuple[Task, asyncio.Future[Any]]] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self._in_flight = False
        self.admissions = 0
        self.last_admission: float | None = None

    @property
    def depth(self) -> int:
        """Number of submissions still waiting for a slot."""
        return self._pending.qsize() if self._pending is not None else 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def submit(self, task: Callable[[], Awaitable[T]]) -> T:
        """Queue ``task`` and wait for its result.

        Args:
            task: Zero-argument coroutine function run with exclusivity.

        Returns:
            Whatever ``task`` returns. Exceptions raised by ``task`` are
            re-raised here.

        Raises:
            QueueClosedError: If the queue is closed, or closes before the
                task is admitted.
        """
        if self._closed:
            raise QueueClosedError("Dispatch queue is closed")

        self._ensure_worker()
        assert self._pending is not None

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._pending.put_nowait((task, future))
        set_queue_depth(self.depth)

        # Shielded so an abandoned caller leaves the task queued
        return await asyncio.shield(future)

    def _ensure_worker(self) -> None:
        if self._pending is None:
            self._pending = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="erp-gateway-dispatch")

    async def _run(self) -> None:
        assert self._pending is not None
        while not self._closed:
            task, future = await self._pending.get()
            try:
                await self._wait_for_slot()
            except asyncio.CancelledError:
                self._reject(future)
                raise

            self._admit()
            self._in_flight = True
            try:
                result = await task()
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
                    # The submitter may have stopped waiting
                    future.exception()
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._in_flight = False
                set_queue_depth(self.depth)

    async def _wait_for_slot(self) -> None:
        if self.last_admission is None:
            return
        # Loop: timers may fire marginally before the clock reaches the slot
        while (delay := self.last_admission + self.interval_seconds - self._clock()) > 0:
            await self._sleep(delay)

    def _admit(self) -> None:
        self.last_admission = self._clock()
        self.admissions += 1
        logger.debug(
            "queue.admitted",
            admissions=self.admissions,
            depth=self.depth,
        )

    async def close(self) -> None:
        """Stop admitting tasks.

        The task currently running (if any) is allowed to finish. Tasks
        still waiting for a slot fail with QueueClosedError.
        """
        if self._closed:
            return
        self._closed = True

        worker = self._worker
        if worker is not None and not worker.done():
            if self._in_flight:
                # The worker exits on its own once the admitted task returns
                await worker
            else:
                worker.cancel()
                try:
                    await worker
                except asyncio.CancelledError:
                    logger.debug("queue.worker_stopped")

        abandoned = 0
        if self._pending is not None:
            while not self._pending.empty():
                _, future = self._pending.get_nowait()
                self._reject(future)
                abandoned += 1
        set_queue_depth(0)
        logger.info("queue.closed", abandoned=abandoned, admissions=self.admissions)

    @staticmethod
    def _reject(future: asyncio.Future[Any]) -> None:
        if not future.done():
            future.set_exception(QueueClosedError("Dispatch queue closed before admission"))
            # The submitter may have stopped waiting
            future.exception()
