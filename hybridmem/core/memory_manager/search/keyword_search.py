"""BM25 keyword search over the FTS5 mirror of the chunks table."""

import math
import sqlite3
from typing import Callable

from loguru import logger

from .fts_query import WORST_RANK
from .negative_cache import NegativeResultCache
from ..memory_storage.filters import SqlFilter
from ...schema import ChunkMetadata, MemorySearchResult
from ...utils.common_utils import truncate_snippet
from ...utils.retry_utils import DB_RETRY_BASE_DELAY, DB_RETRY_MAX_RETRIES, with_retry


async def search_keyword(
    conn: sqlite3.Connection,
    fts_table: str,
    provider_model: str,
    query: str,
    limit: int,
    snippet_max_chars: int,
    source_filter: SqlFilter,
    build_fts_query: Callable[[str], str | None],
    bm25_rank_to_score: Callable[[float], float],
    negative_cache: NegativeResultCache | None = None,
    overfetch_factor: int = 3,
    max_fetch_rounds: int = 3,
    max_retries: int = DB_RETRY_MAX_RETRIES,
    base_delay: float = DB_RETRY_BASE_DELAY,
) -> list[MemorySearchResult]:
    """Rank chunks matching `query` by BM25.

    The FTS table is queried on its own first for `(id, rank)` pairs, then the
    matching chunk rows are fetched with the model and source filters applied.
    Joining the FTS table to `chunks` directly would make SQLite scan the
    unindexed FTS columns. Since filtering happens in the second step, each
    page of candidates is `limit * overfetch_factor` long, and further pages
    are read while too few candidates survive the filters.
    """
    if limit <= 0:
        return []
    fts_query = build_fts_query(query)
    if not fts_query:
        return []

    cache_key = (fts_query, provider_model, *source_filter.cache_key(), limit)
    if negative_cache is not None and negative_cache.contains(cache_key):
        logger.debug(f"Negative cache hit for {fts_query!r}")
        return []

    def _retry(fn):
        return with_retry(fn, max_retries=max_retries, base_delay=base_delay)

    page_size = limit * max(1, overfetch_factor)
    ranks: dict[str, float] = {}
    rows: list[tuple] = []

    for page in range(max(1, max_fetch_rounds)):
        fts_rows = _retry(
            lambda: conn.execute(
                f"""
                SELECT id, bm25({fts_table}) AS rank
                  FROM {fts_table}
                 WHERE {fts_table} MATCH ?
                 ORDER BY rank ASC
                 LIMIT ? OFFSET ?
                """,
                (fts_query, page_size, page * page_size),
            ).fetchall(),
        )
        logger.debug(f"FTS page {page}: {len(fts_rows)} candidates for {fts_query!r}")
        if not fts_rows:
            break

        ids = [r[0] for r in fts_rows if r[0] not in ranks]
        for chunk_id, rank in fts_rows:
            ranks.setdefault(chunk_id, rank if rank is not None and math.isfinite(rank) else WORST_RANK)

        if ids:
            placeholders = ", ".join("?" for _ in ids)
            rows.extend(
                _retry(
                    lambda: conn.execute(
                        f"""
                        SELECT c.id, c.path, c.source, c.start_line, c.end_line, c.text, c.metadata
                          FROM chunks c
                         WHERE c.id IN ({placeholders}) AND c.model = ?{source_filter.sql}
                        """,
                        (*ids, provider_model, *source_filter.params),
                    ).fetchall(),
                ),
            )

        if len(rows) >= limit or len(fts_rows) < page_size:
            break

    if not rows:
        if negative_cache is not None:
            negative_cache.add(cache_key)
        return []

    rows.sort(key=lambda r: ranks.get(r[0], 0.0))
    results = []
    for chunk_id, path, source, start, end, text, metadata in rows[:limit]:
        text_score = bm25_rank_to_score(ranks.get(chunk_id, 0.0))
        results.append(
            MemorySearchResult(
                id=chunk_id,
                path=path,
                start_line=start,
                end_line=end,
                score=text_score,
                text_score=text_score,
                snippet=truncate_snippet(text, snippet_max_chars),
                source=source,
                metadata=ChunkMetadata.from_raw(metadata),
            ),
        )
    logger.debug(f"Keyword search returned {len(results)} results")
    return results
