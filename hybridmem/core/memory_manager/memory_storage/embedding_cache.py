"""Content-hash addressed cache of embedding vectors."""

import json
import sqlite3
import threading
import time

from loguru import logger

from .memory_schema import validate_table_name
from ...schema import CacheStatus, EmbeddingCacheEntry
from ...utils.common_utils import parse_embedding
from ...utils.retry_utils import DB_RETRY_BASE_DELAY, DB_RETRY_MAX_RETRIES, with_retry

# Stays below SQLite's default host parameter limit together with the key columns
LOAD_BATCH_SIZE = 400


class EmbeddingCache:
    """Embeddings keyed by (provider, model, provider_key, text hash).

    Identical text under the same provider configuration is embedded once.
    Growth is unbounded unless `max_entries` is set, in which case `prune()`
    drops the least recently written rows. Hit, miss and eviction counters
    cover the lifetime of this instance.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        table: str,
        provider: str,
        model: str,
        provider_key: str,
        enabled: bool = True,
        max_entries: int | None = None,
        max_retries: int = DB_RETRY_MAX_RETRIES,
        base_delay: float = DB_RETRY_BASE_DELAY,
        lock=None,
    ):
        self.conn = conn
        self.lock = lock or threading.RLock()
        self.table = validate_table_name(table)
        self.provider = provider
        self.model = model
        self.provider_key = provider_key
        self.enabled = enabled
        self.max_entries = max_entries
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def _retry(self, fn):
        with self.lock:
            return with_retry(fn, max_retries=self.max_retries, base_delay=self.base_delay)

    def load(self, hashes: list[str]) -> dict[str, list[float]]:
        """Cached vectors for the given text hashes; misses are simply absent."""
        if not self.enabled or not hashes:
            return {}

        unique = list(dict.fromkeys(hashes))
        found: dict[str, list[float]] = {}
        for start in range(0, len(unique), LOAD_BATCH_SIZE):
            batch = unique[start : start + LOAD_BATCH_SIZE]
            placeholders = ", ".join("?" for _ in batch)
            rows = self._retry(
                lambda: self.conn.execute(
                    f"""
                    SELECT hash, embedding FROM {self.table}
                     WHERE provider = ? AND model = ? AND provider_key = ? AND hash IN ({placeholders})
                    """,
                    (self.provider, self.model, self.provider_key, *batch),
                ).fetchall(),
            )
            for hash_val, raw in rows:
                embedding = parse_embedding(raw)
                if embedding:
                    found[hash_val] = embedding

        self.hits += len(found)
        self.misses += len(unique) - len(found)
        logger.debug(f"Embedding cache: {len(found)}/{len(unique)} hits")
        return found

    def upsert(self, entries: dict[str, list[float]]) -> None:
        """Store vectors keyed by text hash. Empty vectors are skipped."""
        if not self.enabled:
            return
        now = int(time.time() * 1000)
        rows = [
            (self.provider, self.model, self.provider_key, hash_val, json.dumps(emb), len(emb), now)
            for hash_val, emb in entries.items()
            if emb
        ]
        if not rows:
            return

        def _write():
            cursor = self.conn.cursor()
            try:
                cursor.execute("BEGIN")
                cursor.executemany(
                    f"""
                    INSERT INTO {self.table} (provider, model, provider_key, hash, embedding, dims, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(provider, model, provider_key, hash) DO UPDATE SET
                        embedding = excluded.embedding,
                        dims = excluded.dims,
                        updated_at = excluded.updated_at
                    """,
                    rows,
                )
                cursor.execute("COMMIT")
            except Exception:
                if self.conn.in_transaction:
                    cursor.execute("ROLLBACK")
                raise
            finally:
                cursor.close()

        self._retry(_write)

    def get(self, hash_val: str) -> EmbeddingCacheEntry | None:
        """Full cache row for one hash."""
        if not self.enabled:
            return None
        row = self._retry(
            lambda: self.conn.execute(
                f"""
                SELECT embedding, dims, updated_at FROM {self.table}
                 WHERE provider = ? AND model = ? AND provider_key = ? AND hash = ?
                """,
                (self.provider, self.model, self.provider_key, hash_val),
            ).fetchone(),
        )
        if not row:
            return None
        return EmbeddingCacheEntry(
            provider=self.provider,
            model=self.model,
            provider_key=self.provider_key,
            hash=hash_val,
            embedding=parse_embedding(row[0]),
            dims=row[1],
            updated_at=row[2],
        )

    def count(self) -> int:
        return self._retry(lambda: self.conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0])

    def prune(self) -> int:
        """Delete the oldest rows beyond `max_entries`. Returns the number removed."""
        if not self.enabled or not self.max_entries or self.max_entries <= 0:
            return 0
        excess = self.count() - self.max_entries
        if excess <= 0:
            return 0

        self._retry(
            lambda: self.conn.execute(
                f"""
                DELETE FROM {self.table} WHERE rowid IN (
                    SELECT rowid FROM {self.table} ORDER BY updated_at ASC LIMIT ?
                )
                """,
                (excess,),
            ),
        )
        self.evictions += excess
        logger.info(f"Pruned {excess} embedding cache entries (max_entries={self.max_entries})")
        return excess

    def stats(self) -> CacheStatus:
        return CacheStatus.from_counts(
            entries=self.count() if self.enabled else 0,
            hits=self.hits,
            misses=self.misses,
            evictions=self.evictions,
            enabled=self.enabled,
            max_entries=self.max_entries,
        )
