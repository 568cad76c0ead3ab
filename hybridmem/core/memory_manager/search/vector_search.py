"""Nearest-neighbour search over chunk embeddings."""

import asyncio
import sqlite3
from typing import Awaitable, Callable

import numpy as np
from loguru import logger

from ..memory_storage.filters import SqlFilter
from ..memory_storage.sqlite_memory_store import list_chunks
from ...exceptions import TransientLockError
from ...schema import ChunkMetadata, MemorySearchResult
from ...utils.common_utils import batch_cosine_similarity, truncate_snippet, vector_to_blob
from ...utils.retry_utils import DB_RETRY_BASE_DELAY, DB_RETRY_MAX_RETRIES, with_retry

VECTOR_READY_TIMEOUT = 5.0  # seconds


async def _check_ready(
    ensure_vector_ready: Callable[[int], Awaitable[bool]],
    dims: int,
    timeout: float,
) -> bool:
    try:
        return bool(await asyncio.wait_for(ensure_vector_ready(dims), timeout=timeout))
    except asyncio.TimeoutError:
        logger.warning(f"Vector index not ready after {timeout}s, using brute-force search")
    except Exception as e:
        logger.warning(f"Vector readiness check failed, using brute-force search: {e}")
    return False


async def search_vector(
    conn: sqlite3.Connection,
    vector_table: str,
    provider_model: str,
    query_vec: list[float],
    limit: int,
    snippet_max_chars: int,
    ensure_vector_ready: Callable[[int], Awaitable[bool]],
    source_filter_vec: SqlFilter,
    source_filter_chunks: SqlFilter,
    ready_timeout: float = VECTOR_READY_TIMEOUT,
    max_retries: int = DB_RETRY_MAX_RETRIES,
    base_delay: float = DB_RETRY_BASE_DELAY,
) -> list[MemorySearchResult]:
    """Return the `limit` chunks closest to `query_vec` by cosine similarity.

    When the sqlite-vec table is usable the distance is computed in SQL.
    Otherwise every candidate row is scored in process, which gives the same
    ordering. The readiness check is bounded by `ready_timeout`, so a stuck
    extension can only delay a search, never hang it.

    `source_filter_vec` must be built with the `c` alias for the joined
    query, `source_filter_chunks` without an alias.
    """
    if not query_vec or limit <= 0:
        return []

    if await _check_ready(ensure_vector_ready, len(query_vec), ready_timeout):
        try:
            rows = with_retry(
                lambda: conn.execute(
                    f"""
                    SELECT c.id, c.path, c.start_line, c.end_line, c.text, c.source, c.metadata,
                           vec_distance_cosine(v.embedding, ?) AS dist
                      FROM {vector_table} v
                      JOIN chunks c ON c.id = v.id
                     WHERE c.model = ?{source_filter_vec.sql}
                     ORDER BY dist ASC
                     LIMIT ?
                    """,
                    (vector_to_blob(query_vec), provider_model, *source_filter_vec.params, limit),
                ).fetchall(),
                max_retries=max_retries,
                base_delay=base_delay,
            )
            return [
                MemorySearchResult(
                    id=chunk_id,
                    path=path,
                    start_line=start,
                    end_line=end,
                    score=1.0 - dist,
                    vector_score=1.0 - dist,
                    snippet=truncate_snippet(text, snippet_max_chars),
                    source=source,
                    metadata=ChunkMetadata.from_raw(metadata),
                )
                for chunk_id, path, start, end, text, source, metadata, dist in rows
                if dist is not None
            ]
        except TransientLockError:
            raise
        except sqlite3.Error as e:
            logger.warning(f"Vector query failed, using brute-force search: {e}")

    return _search_brute_force(
        conn,
        provider_model,
        query_vec,
        limit,
        snippet_max_chars,
        source_filter_chunks,
        max_retries,
        base_delay,
    )


def _search_brute_force(
    conn: sqlite3.Connection,
    provider_model: str,
    query_vec: list[float],
    limit: int,
    snippet_max_chars: int,
    source_filter: SqlFilter,
    max_retries: int,
    base_delay: float,
) -> list[MemorySearchResult]:
    dims = len(query_vec)
    candidates = [
        chunk
        for chunk in list_chunks(conn, provider_model, source_filter, max_retries=max_retries, base_delay=base_delay)
        if chunk.embedding and len(chunk.embedding) == dims
    ]
    if not candidates:
        return []

    matrix = np.asarray([chunk.embedding for chunk in candidates], dtype=np.float64)
    query = np.asarray([query_vec], dtype=np.float64)
    with np.errstate(invalid="ignore", over="ignore"):
        scores = batch_cosine_similarity(query, matrix)[0]

    scored = [(float(score), chunk) for score, chunk in zip(scores, candidates) if np.isfinite(score)]
    scored.sort(key=lambda item: item[0], reverse=True)
    logger.debug(f"Brute-force vector search scored {len(scored)}/{len(candidates)} chunks")

    return [
        MemorySearchResult(
            id=chunk.id,
            path=chunk.path,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            score=score,
            vector_score=score,
            snippet=truncate_snippet(chunk.text, snippet_max_chars),
            source=chunk.source,
            metadata=chunk.metadata,
        )
        for score, chunk in scored[:limit]
    ]
