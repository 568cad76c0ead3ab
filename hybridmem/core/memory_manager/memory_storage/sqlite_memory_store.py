"""SQLite chunk store for the memory index."""

import json
import math
import sqlite3
import threading
import time
from typing import Callable, TypeVar

from loguru import logger

from .filters import SqlFilter
from .memory_schema import ensure_vector_table, validate_table_name
from ...schema import ChunkMetadata, FileMetadata, MemoryChunk, MemoryIndexMeta
from ...utils.common_utils import parse_embedding, vector_to_blob
from ...utils.retry_utils import DB_RETRY_BASE_DELAY, DB_RETRY_MAX_RETRIES, with_retry

T = TypeVar("T")

META_KEY = "memory_index_meta"


def list_chunks(
    conn: sqlite3.Connection,
    provider_model: str,
    source_filter: SqlFilter,
    max_retries: int = DB_RETRY_MAX_RETRIES,
    base_delay: float = DB_RETRY_BASE_DELAY,
) -> list[MemoryChunk]:
    """All chunks embedded with `provider_model` that pass `source_filter`."""

    def _query():
        return conn.execute(
            f"""
            SELECT id, path, source, start_line, end_line, text, hash, model, embedding, updated_at, metadata
              FROM chunks
             WHERE model = ?{source_filter.sql}
            """,
            (provider_model, *source_filter.params),
        ).fetchall()

    rows = with_retry(_query, max_retries=max_retries, base_delay=base_delay)
    return [_row_to_chunk(row) for row in rows]


def _row_to_chunk(row) -> MemoryChunk:
    chunk_id, path, source, start, end, text, hash_val, model, emb_str, updated_at, metadata = row
    return MemoryChunk(
        id=chunk_id,
        path=path,
        source=source,
        start_line=start,
        end_line=end,
        text=text,
        hash=hash_val,
        model=model,
        embedding=parse_embedding(emb_str),
        updated_at=updated_at,
        metadata=ChunkMetadata.from_raw(metadata),
    )


class SqliteMemoryStore:
    """Row-level access to `files`, `chunks` and the mirrored FTS/vector tables.

    The connection is owned by the memory manager; the store never opens or
    closes it. Every statement goes through the lock retry wrapper, and
    multi-statement writes run in one explicit transaction. `lock` serializes
    access to the shared connection across threads; pass the same lock to
    every other user of the connection.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        fts_table: str = "chunks_fts",
        vector_table: str = "chunks_vec",
        fts_available: bool = False,
        vector_enabled: bool = False,
        max_retries: int = DB_RETRY_MAX_RETRIES,
        base_delay: float = DB_RETRY_BASE_DELAY,
        lock=None,
    ):
        self.conn = conn
        self.lock = lock or threading.RLock()
        self.fts_table = validate_table_name(fts_table)
        self.vector_table = validate_table_name(vector_table)
        self.fts_available = fts_available
        self.vector_enabled = vector_enabled
        self.vector_dims: int | None = None
        self.max_retries = max_retries
        self.base_delay = base_delay

    def _retry(self, fn: Callable[[], T]) -> T:
        with self.lock:
            return with_retry(fn, max_retries=self.max_retries, base_delay=self.base_delay)

    def _transaction(self, fn: Callable[[sqlite3.Cursor], T]) -> T:
        def _run():
            cursor = self.conn.cursor()
            try:
                cursor.execute("BEGIN")
                result = fn(cursor)
                cursor.execute("COMMIT")
                return result
            except Exception:
                if self.conn.in_transaction:
                    cursor.execute("ROLLBACK")
                raise
            finally:
                cursor.close()

        return self._retry(_run)

    @property
    def vector_ready(self) -> bool:
        return self.vector_enabled and self.vector_dims is not None

    def ensure_vector_ready(self, dims: int) -> bool:
        """Make sure the vec0 table exists for `dims`-dimensional vectors.

        Chunks written while the vector table was missing (vector search was
        disabled, or the table was dropped for a dimension change) already
        carry their embeddings in `chunks`; those are copied into the new
        table so accelerated search sees the same rows as the fallback scan.
        """
        if not self.vector_enabled or dims <= 0:
            return False
        with self.lock:
            if self.vector_dims == dims:
                return True
            if not self._retry(lambda: ensure_vector_table(self.conn, self.vector_table, dims)):
                self.vector_enabled = False
                return False
            self.vector_dims = dims
            added = self._transaction(lambda cursor: self._backfill_vectors(cursor, dims))
        logger.info(f"Vector table {self.vector_table} ready (dims={dims}, backfilled={added})")
        return True

    def _backfill_vectors(self, cursor: sqlite3.Cursor, dims: int) -> int:
        cursor.execute(f"DELETE FROM {self.vector_table} WHERE id NOT IN (SELECT id FROM chunks)")
        rows = cursor.execute(
            f"SELECT id, embedding FROM chunks WHERE id NOT IN (SELECT id FROM {self.vector_table})",
        ).fetchall()
        added = 0
        for chunk_id, raw in rows:
            embedding = parse_embedding(raw)
            if len(embedding) != dims or not all(math.isfinite(v) for v in embedding):
                continue
            cursor.execute(
                f"INSERT INTO {self.vector_table} (id, embedding) VALUES (?, ?)",
                (chunk_id, vector_to_blob(embedding)),
            )
            added += 1
        return added

    async def upsert_file(self, file_meta: FileMetadata, chunks: list[MemoryChunk]) -> None:
        """Replace everything stored for `file_meta.path` with `chunks`."""
        if chunks and self.vector_enabled:
            dims = next((len(c.embedding) for c in chunks if c.embedding), 0)
            if dims:
                self.ensure_vector_ready(dims)

        def _write(cursor: sqlite3.Cursor):
            self._delete_file_internal(cursor, file_meta.path, file_meta.source)
            cursor.execute(
                """
                INSERT OR REPLACE INTO files (path, source, hash, mtime, size, external)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    file_meta.path,
                    file_meta.source,
                    file_meta.hash,
                    int(file_meta.mtime_ms),
                    file_meta.size,
                    int(file_meta.external),
                ),
            )

            now = int(time.time() * 1000)
            for chunk in chunks:
                metadata_json = chunk.metadata.to_json()
                cursor.execute(
                    """
                    INSERT OR REPLACE INTO chunks (
                        id, path, source, start_line, end_line,
                        hash, model, text, embedding, updated_at, metadata
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        chunk.id,
                        file_meta.path,
                        file_meta.source,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.hash,
                        chunk.model,
                        chunk.text,
                        json.dumps(chunk.embedding or []),
                        now,
                        metadata_json,
                    ),
                )

                if self.vector_ready and chunk.embedding and len(chunk.embedding) == self.vector_dims:
                    cursor.execute(f"DELETE FROM {self.vector_table} WHERE id = ?", (chunk.id,))
                    cursor.execute(
                        f"INSERT INTO {self.vector_table} (id, embedding) VALUES (?, ?)",
                        (chunk.id, vector_to_blob(chunk.embedding)),
                    )

                if self.fts_available:
                    cursor.execute(
                        f"""
                        INSERT INTO {self.fts_table} (
                            text, id, path, source, model, start_line, end_line, metadata
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            chunk.text,
                            chunk.id,
                            file_meta.path,
                            file_meta.source,
                            chunk.model,
                            chunk.start_line,
                            chunk.end_line,
                            metadata_json,
                        ),
                    )

        self._transaction(_write)

    async def delete_file(self, path: str, source: str) -> None:
        """Delete a file row and all of its chunks."""
        self._transaction(lambda cursor: self._delete_file_internal(cursor, path, source))

    def _delete_file_internal(self, cursor: sqlite3.Cursor, path: str, source: str) -> None:
        if self.vector_ready:
            cursor.execute(
                f"DELETE FROM {self.vector_table} WHERE id IN (SELECT id FROM chunks WHERE path = ? AND source = ?)",
                (path, source),
            )
        if self.fts_available:
            cursor.execute(
                f"DELETE FROM {self.fts_table} WHERE id IN (SELECT id FROM chunks WHERE path = ? AND source = ?)",
                (path, source),
            )
        cursor.execute("DELETE FROM chunks WHERE path = ? AND source = ?", (path, source))
        cursor.execute("DELETE FROM files WHERE path = ?", (path,))

    async def get_file_hash(self, path: str, source: str) -> str | None:
        """Stored content hash of a file, None if it was never indexed."""
        row = self._retry(
            lambda: self.conn.execute(
                "SELECT hash FROM files WHERE path = ? AND source = ?",
                (path, source),
            ).fetchone(),
        )
        return row[0] if row else None

    async def get_file_source(self, path: str) -> str | None:
        """Source tag a path was indexed under, None if unknown."""
        row = self._retry(lambda: self.conn.execute("SELECT source FROM files WHERE path = ?", (path,)).fetchone())
        return row[0] if row else None

    async def get_file_metadata(self, path: str, source: str) -> FileMetadata | None:
        """Get file metadata with chunk count."""

        def _query():
            row = self.conn.execute(
                "SELECT hash, mtime, size, external FROM files WHERE path = ? AND source = ?",
                (path, source),
            ).fetchone()
            if not row:
                return None
            count = self.conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE path = ? AND source = ?",
                (path, source),
            ).fetchone()[0]
            return row, count

        result = self._retry(_query)
        if result is None:
            return None
        (hash_val, mtime, size, external), chunk_count = result
        return FileMetadata(
            path=path,
            source=source,
            hash=hash_val,
            mtime_ms=mtime,
            size=size,
            external=bool(external),
            chunk_count=chunk_count,
        )

    async def list_files(self, source: str, include_external: bool = True) -> list[str]:
        """Paths of every indexed file from `source`.

        With `include_external=False`, files added through `ingest_files` are
        left out; those have no file on disk for a sync to compare against.
        """
        sql = "SELECT path FROM files WHERE source = ?"
        if not include_external:
            sql += " AND external = 0"
        rows = self._retry(lambda: self.conn.execute(sql, (source,)).fetchall())
        return [row[0] for row in rows]

    async def get_chunks(self, path: str, source: str) -> list[MemoryChunk]:
        """Get all chunks for a file, in line order."""
        rows = self._retry(
            lambda: self.conn.execute(
                """
                SELECT id, path, source, start_line, end_line, text, hash, model, embedding, updated_at, metadata
                  FROM chunks
                 WHERE path = ? AND source = ?
                 ORDER BY start_line
                """,
                (path, source),
            ).fetchall(),
        )
        return [_row_to_chunk(row) for row in rows]

    def count_files(self) -> int:
        return self._retry(lambda: self.conn.execute("SELECT COUNT(*) FROM files").fetchone()[0])

    def count_chunks(self) -> int:
        return self._retry(lambda: self.conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0])

    async def read_meta(self, key: str = META_KEY) -> MemoryIndexMeta | None:
        """Read the stored index settings; unreadable values count as missing."""
        row = self._retry(lambda: self.conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone())
        if not row:
            return None
        try:
            return MemoryIndexMeta(**json.loads(row[0]))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable index meta: {e}")
            return None

    async def write_meta(self, value: MemoryIndexMeta | dict, key: str = META_KEY) -> None:
        """Write metadata value."""
        data = value.model_dump() if isinstance(value, MemoryIndexMeta) else value
        self._retry(
            lambda: self.conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                (key, json.dumps(data)),
            ),
        )

    async def clear_all(self) -> None:
        """Clear all indexed data."""

        def _clear(cursor: sqlite3.Cursor):
            cursor.execute("DELETE FROM files")
            cursor.execute("DELETE FROM chunks")
            if self.vector_ready:
                cursor.execute(f"DELETE FROM {self.vector_table}")
            if self.fts_available:
                cursor.execute(f"DELETE FROM {self.fts_table}")

        self._transaction(_clear)
        logger.info("Cleared memory index")
