"""Cache of keyword queries known to match nothing."""

import time
from collections import OrderedDict
from typing import Hashable

from loguru import logger

from ...schema import CacheStats


class NegativeResultCache:
    """LRU set of zero-result query keys with a per-entry TTL.

    One instance belongs to one memory manager. It must be cleared whenever
    the indexed content changes, otherwise a query could keep missing text
    that has since been added. Expired and overflowing entries both count as
    evictions; `clear()` does not.
    """

    def __init__(self, max_entries: int = 256, ttl_seconds: float = 300.0):
        self.max_entries = max(1, max_entries)
        self.ttl_seconds = ttl_seconds
        self._entries: OrderedDict[Hashable, float] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def contains(self, key: Hashable) -> bool:
        """True if `key` is a known miss that has not expired."""
        expires_at = self._entries.get(key)
        if expires_at is None:
            self.misses += 1
            return False
        if expires_at <= time.monotonic():
            del self._entries[key]
            self.evictions += 1
            self.misses += 1
            return False
        self._entries.move_to_end(key)
        self.hits += 1
        return True

    def add(self, key: Hashable) -> None:
        self._entries[key] = time.monotonic() + self.ttl_seconds
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.evictions += 1

    def clear(self) -> None:
        if self._entries:
            logger.debug(f"Clearing {len(self._entries)} negative keyword cache entries")
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats.from_counts(len(self._entries), self.hits, self.misses, self.evictions)
