"""Deduplication stores for the ERP gateway.

All stores implement the DedupStore protocol defined in base.py.

Available Stores:
    - MemoryDedupStore: process-local table with TTL and capacity eviction
"""

from erp_gateway.storage.base import DedupStore
from erp_gateway.storage.memory import MemoryDedupStore

__all__ = [
    "DedupStore",
    "MemoryDedupStore",
]
