"""Idempotency cache: at most one upstream side effect per deduplication key.

``get_or_compute(key, compute)`` resolves a call in one of four ways:

    no key           -> run compute, remember nothing
    key remembered   -> return the remembered result, compute is not run
    key in flight    -> wait for the running computation, share its result
    key unseen       -> run compute once; remember the result if it succeeded

Failed results are handed to everyone waiting on that computation but are
never remembered, so a caller can retry with the same key after a
transient failure.

The computation runs in its own task. A caller that gives up waiting does
not cancel it: the upstream write may already be on the wire, and its
result is still remembered for the next retry with the same key.

Examples:
    >>> cache = IdempotencyCache(MemoryDedupStore(ttl_seconds=86400))
    >>> result = await cache.get_or_compute(
    ...     "order-2024-0001",
    ...     lambda: caller.call(request),
    ... )
"""

import asyncio
from collections.abc import Awaitable, Callable

from erp_gateway.exceptions import InvalidDedupKeyError
from erp_gateway.models import DispatchResult
from erp_gateway.observability.logging import get_logger
from erp_gateway.storage.base import DedupStore

logger = get_logger(__name__)

Compute = Callable[[], Awaitable[DispatchResult]]


class IdempotencyCache:
    """Deduplicates computations by key and collapses concurrent duplicates.

    Attributes:
        store: Where successful results are remembered.
        max_key_length: Longest accepted key.
    """

    def __init__(self, store: DedupStore, max_key_length: int = 255) -> None:
        self.store = store
        self.max_key_length = max_key_length
        self._in_flight: dict[str, asyncio.Task[DispatchResult]] = {}
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> int:
        """Number of keyed computations currently running."""
        return len(self._in_flight)

    async def get_or_compute(self, key: str | None, compute: Compute) -> DispatchResult:
        """Return the result for ``key``, computing it at most once.

        Args:
            key: Deduplication key. None or empty disables deduplication.
            compute: Produces the result; called at most once per live key.

        Returns:
            The remembered, shared or freshly computed result.

        Raises:
            InvalidDedupKeyError: If the key is longer than allowed.
            Exception: Whatever ``compute`` raised, for its owner and for
                every collapsed waiter. Nothing is remembered in that case.
        """
        if not key:
            return await compute()

        self._validate_key(key)

        async with self._lock:
            entry = await self.store.get(key)
            if entry is not None:
                logger.info("dedup.replay", key=key, recorded_at=entry.recorded_at.isoformat())
                return entry.result

            task = self._in_flight.get(key)
            if task is None:
                task = asyncio.create_task(self._compute_and_remember(key, compute))
                task.add_done_callback(self._report_failure)
                self._in_flight[key] = task
                logger.debug("dedup.computing", key=key)
            else:
                logger.info("dedup.collapsed", key=key)

        return await asyncio.shield(task)

    async def _compute_and_remember(self, key: str, compute: Compute) -> DispatchResult:
        try:
            result = await compute()
            if result.ok:
                await self.store.put(key, result)
            else:
                logger.info(
                    "dedup.not_remembered",
                    key=key,
                    kind=result.failure.kind.value if result.failure else None,
                )
            return result
        finally:
            # Stored before leaving the in-flight table, so the key is never unguarded
            self._in_flight.pop(key, None)

    @staticmethod
    def _report_failure(task: asyncio.Task[DispatchResult]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "dedup.compute_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )

    def _validate_key(self, key: str) -> None:
        if len(key) > self.max_key_length:
            raise InvalidDedupKeyError(
                f"Deduplication key exceeds maximum length of {self.max_key_length} characters",
                key_length=len(key),
                max_length=self.max_key_length,
            )
