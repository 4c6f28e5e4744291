"""Gateway facade: the single entry point used by the inbound route layer.

``Gateway.dispatch`` wraps the upstream caller in the idempotency cache:

1. Build the immutable UpstreamRequest (query params for GET, JSON body
   for POST); the payload itself is not inspected
2. Return the remembered or in-flight result if the dedup key is known
3. Otherwise forward upstream through the dispatch queue with retries
4. Hand back the DispatchResult, failure kind untouched

The queue, the cache and the caller are explicitly owned objects passed in
at construction; ``build_gateway`` wires a default set from a
GatewayConfig.

Examples:
    Wiring and using the gateway::

        from erp_gateway.config import GatewayConfig
        from erp_gateway.core.gateway import build_gateway

        gateway = build_gateway(GatewayConfig.from_env())
        gateway.start()

        result = await gateway.dispatch(
            "/pedido/nuevopedido",
            "POST",
            {"clienteId": 42, "items": [...]},
            dedup_key="pedido-42-0001",
        )
        if not result.ok:
            print(result.failure.kind, result.failure.detail)

        await gateway.aclose()
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from erp_gateway.config import GatewayConfig
from erp_gateway.core.cleanup import DedupSweeper
from erp_gateway.core.dispatch_queue import DispatchQueue
from erp_gateway.core.idempotency import IdempotencyCache
from erp_gateway.core.upstream import UpstreamCaller
from erp_gateway.models import DispatchResult, UpstreamRequest
from erp_gateway.observability.logging import get_logger
from erp_gateway.observability.metrics import record_dispatch
from erp_gateway.storage.memory import MemoryDedupStore

logger = get_logger(__name__)


class Gateway:
    """Composes the idempotency cache around the upstream caller.

    Attributes:
        caller: Upstream caller (owns the retry loop).
        cache: Idempotency cache (owns the dedup table).
        queue: Dispatch queue shared by every upstream attempt.
        sweeper: Optional background sweeper for expired dedup entries.
    """

    def __init__(
        self,
        caller: UpstreamCaller,
        cache: IdempotencyCache,
        sweeper: DedupSweeper | None = None,
    ) -> None:
        self.caller = caller
        self.cache = cache
        self.queue = caller.queue
        self.sweeper = sweeper

    async def dispatch(
        self,
        path: str,
        method: str = "GET",
        payload: Any = None,
        dedup_key: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> DispatchResult:
        """Forward one operation upstream, at most once per dedup key.

        Args:
            path: Upstream path relative to the configured base URL.
            method: GET (payload sent as query parameters) or POST (payload
                sent as the JSON body).
            payload: Query mapping or JSON body; opaque to the gateway.
            dedup_key: Optional deduplication key.
            headers: Extra upstream headers for this call.

        Returns:
            DispatchResult with the decoded body or a typed failure.

        Raises:
            InvalidDedupKeyError: If ``dedup_key`` is too long.
            QueueClosedError: If the gateway has been closed.
        """
        method = method.upper()
        request = UpstreamRequest(
            path=path,
            method=method,
            params=dict(payload) if method == "GET" and payload else None,
            body=payload if method == "POST" else None,
            headers=headers or {},
        )

        computed = False

        async def compute() -> DispatchResult:
            nonlocal computed
            computed = True
            return await self.caller.call(request)

        result = await self.cache.get_or_compute(dedup_key, compute)

        if not result.ok:
            assert result.failure is not None
            record_dispatch("failed", result.failure.kind.value)
        else:
            record_dispatch("new" if computed else "replay")

        logger.info(
            "gateway.dispatched",
            method=request.method,
            path=request.path,
            dedup_key=dedup_key,
            ok=result.ok,
            replayed=not computed,
            attempts=result.attempts,
            kind=result.failure.kind.value if result.failure else None,
        )
        return result

    def start(self) -> None:
        """Start background work (the dedup sweeper) on the running loop."""
        if self.sweeper is not None:
            self.sweeper.start()

    async def aclose(self) -> None:
        """Stop the sweeper, close the queue and release the HTTP client."""
        if self.sweeper is not None:
            await self.sweeper.stop()
        await self.queue.close()
        await self.caller.aclose()


def build_gateway(
    config: GatewayConfig,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Gateway:
    """Build a gateway with its own queue, dedup table and sweeper.

    Args:
        config: Gateway configuration.
        transport: Optional httpx transport for the upstream client.
        sleep: Coroutine used for backoff delays.
    """
    queue = DispatchQueue(interval_seconds=config.dispatch_interval_seconds)
    caller = UpstreamCaller(config, queue, transport=transport, sleep=sleep)
    store = MemoryDedupStore(
        ttl_seconds=config.dedup_ttl_seconds,
        max_entries=config.dedup_max_entries,
    )
    cache = IdempotencyCache(store, max_key_length=config.dedup_key_max_length)
    sweeper = DedupSweeper(store, interval_seconds=config.cleanup_interval_seconds)
    return Gateway(caller, cache, sweeper)
