"""Tests for the in-process query embedding LRU."""

import pytest

from hybridmem.core.memory_manager.search import QueryEmbeddingCache


def test_lru_eviction_and_counters():
    cache = QueryEmbeddingCache(max_entries=2)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    assert cache.get("a") == [1.0]
    cache.put("c", [3.0])

    assert cache.get("b") is None
    assert cache.get("c") == [3.0]

    stats = cache.stats()
    assert (stats.entries, stats.hits, stats.misses, stats.evictions) == (2, 2, 1, 1)
    assert stats.hit_rate == pytest.approx(2 / 3)


def test_empty_vectors_are_not_stored():
    cache = QueryEmbeddingCache()
    cache.put("q", [])

    assert cache.get("q") is None
    assert len(cache) == 0


def test_zero_size_disables_cache():
    cache = QueryEmbeddingCache(max_entries=0)
    cache.put("q", [1.0])

    assert not cache.enabled
    assert cache.get("q") is None
    assert cache.stats().misses == 0
