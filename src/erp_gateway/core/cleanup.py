"""Background sweeper for expired deduplication entries.

The memory store already hides expired entries from reads and drops them
when it runs out of room. The sweeper reclaims their memory in between,
reports each sweep through metrics and logs, and keeps running if a sweep
fails.

Examples:
    Run alongside the HTTP surface::

        sweeper = DedupSweeper(store, interval_seconds=300)
        sweeper.start()
        ...
        await sweeper.stop()
"""

import asyncio

from erp_gateway.observability.logging import get_logger
from erp_gateway.observability.metrics import record_cleanup
from erp_gateway.storage.base import DedupStore

logger = get_logger(__name__)


async def sweep_once(store: DedupStore) -> int:
    """Remove expired entries from ``store`` and report the sweep.

    Returns:
        Number of entries removed.
    """
    removed = await store.cleanup_expired()
    record_cleanup(removed)
    if removed:
        logger.info("cleanup.completed", records_removed=removed)
    else:
        logger.debug("cleanup.completed", records_removed=0)
    return removed


class DedupSweeper:
    """Periodically sweeps a DedupStore until stopped.

    Attributes:
        store: Store to sweep.
        interval_seconds: Time between sweeps.
        sweeps: Number of sweeps attempted, failed ones included.
    """

    def __init__(self, store: DedupStore, interval_seconds: float = 300) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self.store = store
        self.interval_seconds = interval_seconds
        self.sweeps = 0
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Start sweeping on the running event loop (idempotent)."""
        if self._task is None or self._task.done():
            self._stop_event = asyncio.Event()
            self._task = asyncio.create_task(self._loop(self._stop_event), name="erp-gateway-sweeper")
        return self._task

    async def _loop(self, stop_event: asyncio.Event) -> None:
        logger.info("cleanup.started", interval_seconds=self.interval_seconds)

        while not stop_event.is_set():
            self.sweeps += 1
            try:
                await sweep_once(self.store)
            except Exception as e:
                logger.error(
                    "cleanup.failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

        logger.info("cleanup.stopped", sweeps=self.sweeps)

    async def stop(self, timeout: float = 5.0) -> None:
        """Signal the loop to stop and wait for it, cancelling after ``timeout``."""
        task = self._task
        if task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()

        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("cleanup.stop_timeout", timeout=timeout)
        finally:
            self._task = None
