"""In-process LRU of query embeddings."""

from collections import OrderedDict

from ...schema import CacheStats


class QueryEmbeddingCache:
    """Most recently used query vectors, keyed by the exact query text.

    Repeated searches skip the embedding provider. Only successful,
    non-empty vectors are stored. The key space is per manager, so a change
    of provider or model never serves a stale vector.
    """

    def __init__(self, max_entries: int = 128):
        self.max_entries = max_entries
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @property
    def enabled(self) -> bool:
        return self.max_entries > 0

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, query: str) -> list[float] | None:
        if not self.enabled:
            return None
        if query in self._cache:
            self._cache.move_to_end(query)
            self.hits += 1
            return self._cache[query]
        self.misses += 1
        return None

    def put(self, query: str, embedding: list[float]) -> None:
        if not self.enabled or not embedding:
            return
        self._cache[query] = embedding
        self._cache.move_to_end(query)
        while len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)
            self.evictions += 1

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> CacheStats:
        return CacheStats.from_counts(len(self._cache), self.hits, self.misses, self.evictions)
