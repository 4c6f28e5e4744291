"""In-memory deduplication store with TTL and capacity eviction.

Entries live for ``ttl_seconds`` and the table never holds more than
``max_entries``. When full, expired entries are dropped first, then the
oldest live entry. Process-lifetime only; nothing is persisted.

Concurrency:
    Methods never await while touching the table, so each call is atomic
    with respect to other coroutines on the same event loop.

Examples:
    >>> store = MemoryDedupStore(ttl_seconds=3600, max_entries=1000)
    >>> entry = await store.put("order-77", DispatchResult.success({"id": 77}))
    >>> (await store.get("order-77")).result.body
    {'id': 77}
"""

from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from erp_gateway.models import DedupEntry, DispatchResult
from erp_gateway.observability.logging import get_logger
from erp_gateway.observability.metrics import set_dedup_entries
from erp_gateway.storage.base import DedupStore

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryDedupStore(DedupStore):
    """Insertion-ordered dictionary of deduplication entries.

    Attributes:
        ttl_seconds: Lifetime of an entry.
        max_entries: Capacity of the table.
        evictions: Number of live entries evicted to make room.
    """

    def __init__(
        self,
        ttl_seconds: int = 86400,
        max_entries: int = 10000,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if ttl_seconds < 1:
            raise ValueError(f"ttl_seconds must be >= 1, got {ttl_seconds}")
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.evictions = 0
        self._clock = clock
        self._entries: OrderedDict[str, DedupEntry] = OrderedDict()

    async def get(self, key: str) -> DedupEntry | None:
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    async def put(self, key: str, result: DispatchResult) -> DedupEntry:
        now = self._clock()

        existing = self._entries.get(key)
        if existing is not None:
            if not existing.is_expired(now):
                return existing
            del self._entries[key]

        if len(self._entries) >= self.max_entries:
            self._make_room(now)

        entry = DedupEntry(
            key=key,
            result=result,
            recorded_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        self._entries[key] = entry
        set_dedup_entries(len(self._entries))
        return entry

    def _make_room(self, now: datetime) -> None:
        self._remove_expired(now)
        while len(self._entries) >= self.max_entries:
            key, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug("dedup.evicted", key=key, capacity=self.max_entries)

    def _remove_expired(self, now: datetime) -> int:
        expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]
        return len(expired_keys)

    async def cleanup_expired(self) -> int:
        removed = self._remove_expired(self._clock())
        set_dedup_entries(len(self._entries))
        return removed

    async def size(self) -> int:
        return len(self._entries)
