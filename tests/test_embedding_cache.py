"""Tests for the content-hash embedding cache."""

import threading
import time

import pytest

from hybridmem.core.memory_manager.memory_storage import EmbeddingCache


def make_cache(conn, **kwargs) -> EmbeddingCache:
    params = dict(provider="fake", model="fake-embed", provider_key="key-1", base_delay=0.0)
    params.update(kwargs)
    return EmbeddingCache(conn, "embedding_cache", **params)


def test_upsert_then_load(conn):
    cache = make_cache(conn)
    cache.upsert({"h1": [0.1, 0.2], "h2": [0.3, 0.4], "empty": []})

    found = cache.load(["h1", "h2", "missing", "h1"])

    assert found == {"h1": pytest.approx([0.1, 0.2]), "h2": pytest.approx([0.3, 0.4])}
    assert cache.count() == 2


def test_upsert_overwrites_existing_entry(conn):
    cache = make_cache(conn)
    cache.upsert({"h1": [1.0, 0.0]})
    cache.upsert({"h1": [0.0, 1.0, 0.0]})

    entry = cache.get("h1")

    assert entry.embedding == [0.0, 1.0, 0.0]
    assert entry.dims == 3
    assert cache.count() == 1


def test_entries_are_scoped_to_provider_identity(conn):
    """The same text hash under another model or provider key is a miss."""
    make_cache(conn).upsert({"h1": [1.0, 0.0]})

    assert make_cache(conn, model="other-model").load(["h1"]) == {}
    assert make_cache(conn, provider_key="key-2").load(["h1"]) == {}
    assert make_cache(conn).get("h1") is not None


def test_disabled_cache_stores_nothing(conn):
    cache = make_cache(conn, enabled=False)
    cache.upsert({"h1": [1.0]})

    assert cache.load(["h1"]) == {}
    assert cache.get("h1") is None
    assert cache.count() == 0


def test_load_handles_more_hashes_than_one_batch(conn):
    cache = make_cache(conn)
    cache.upsert({f"h{i}": [float(i)] for i in range(950)})

    found = cache.load([f"h{i}" for i in range(1000)])

    assert len(found) == 950
    assert found["h949"] == [949.0]


def test_prune_removes_oldest_rows(conn):
    cache = make_cache(conn, max_entries=2)
    for i, hash_val in enumerate(["old", "middle", "new"]):
        cache.upsert({hash_val: [float(i)]})
        conn.execute("UPDATE embedding_cache SET updated_at = ? WHERE hash = ?", (i, hash_val))

    assert cache.prune() == 1
    assert cache.count() == 2
    assert cache.get("old") is None
    assert cache.get("new") is not None


def test_prune_without_bound_is_noop(conn):
    cache = make_cache(conn)
    cache.upsert({f"h{i}": [1.0] for i in range(5)})

    assert cache.prune() == 0
    assert cache.count() == 5


@pytest.mark.asyncio
async def test_forced_resync_reuses_cached_embeddings(manager, workspace, fake_embedding):
    (workspace / "memory" / "notes.md").write_text("# Notes\n\nThe deploy key rotates every month.\n")
    await manager.sync()
    calls_after_first_sync = fake_embedding.calls
    assert calls_after_first_sync > 0

    await manager.sync(force=True)

    assert fake_embedding.calls == calls_after_first_sync
    assert manager.status().cache.entries == manager.status().chunks


def test_stats_count_hits_misses_and_evictions(conn):
    cache = make_cache(conn, max_entries=1)
    cache.upsert({"h1": [1.0]})
    cache.load(["h1", "h2", "h1"])
    cache.upsert({"h2": [2.0]})
    conn.execute("UPDATE embedding_cache SET updated_at = 0 WHERE hash = 'h1'")
    cache.prune()

    stats = cache.stats()

    assert (stats.entries, stats.hits, stats.misses, stats.evictions) == (1, 1, 1, 1)
    assert stats.hit_rate == pytest.approx(0.5)
    assert stats.enabled is True
    assert stats.max_entries == 1


def test_statements_run_under_the_shared_lock(conn):
    """While another thread holds the connection lock, cache reads wait for it."""
    lock = threading.RLock()
    cache = make_cache(conn, lock=lock)
    cache.upsert({"h1": [1.0]})
    held = threading.Event()
    order = []

    def _hold():
        with lock:
            held.set()
            time.sleep(0.1)
            order.append("released")

    worker = threading.Thread(target=_hold)
    worker.start()
    held.wait(timeout=5)
    assert cache.count() == 1
    order.append("counted")
    worker.join(timeout=5)

    assert order == ["released", "counted"]


@pytest.mark.asyncio
async def test_status_reports_cache_counters(manager, workspace):
    (workspace / "memory" / "notes.md").write_text("# Notes\n\nThe deploy key rotates every month.\n")
    await manager.sync()
    await manager.sync(force=True)

    cache = manager.status().cache

    assert cache.misses >= 1
    assert cache.hits == cache.misses
    assert cache.hit_rate == pytest.approx(0.5)
