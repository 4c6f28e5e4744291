"""Deduplication store protocol.

The idempotency cache keeps successful results in a DedupStore. The store
only remembers finished results; collapsing of concurrent in-flight calls
is the cache's job, not the store's.

Contract every implementation must honour:

    1. **Expiry**: entries past their ``expires_at`` are invisible to get()
       even before cleanup_expired() removes them.

    2. **Bounded size**: a store may evict entries to stay within its
       capacity. Eviction only ever makes a key unseen again; it never
       returns a wrong result.

    3. **Immutability**: an entry is never changed after insertion. A put()
       for a key that already holds a live entry keeps the original.

Examples:
    Implementing a custom store::

        class RedisDedupStore:
            async def get(self, key: str) -> DedupEntry | None:
                data = await self.redis.get(f"dedup:{key}")
                return DedupEntry.model_validate_json(data) if data else None

            async def put(self, key: str, result: DispatchResult) -> DedupEntry:
                entry = DedupEntry(...)
                await self.redis.set(f"dedup:{key}", entry.model_dump_json(),
                                     ex=self.ttl_seconds, nx=True)
                return entry
"""

from typing import Protocol, runtime_checkable

from erp_gateway.models import DedupEntry, DispatchResult


@runtime_checkable
class DedupStore(Protocol):
    """Protocol for deduplication result stores."""

    async def get(self, key: str) -> DedupEntry | None:
        """Return the live entry for ``key``, or None if unseen or expired."""
        ...

    async def put(self, key: str, result: DispatchResult) -> DedupEntry:
        """Remember ``result`` for ``key``.

        Returns:
            The stored entry: the new one, or the live entry already held
            for ``key``.
        """
        ...

    async def cleanup_expired(self) -> int:
        """Remove expired entries.

        Returns:
            The number of entries removed.
        """
        ...

    async def size(self) -> int:
        """Number of entries currently held, expired ones included."""
        ...
