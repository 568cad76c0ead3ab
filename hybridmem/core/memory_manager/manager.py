"""Memory Index Manager - Main coordination layer.

This module provides the MemoryIndexManager class that owns the SQLite
handle of one agent workspace and coordinates schema setup, file syncing,
embedding, and hybrid vector + keyword search over memory files and session
transcripts.
"""

import asyncio
import json
import math
import os
import re
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable

import sqlite_vec
from loguru import logger
from watchfiles import awatch

from .config import MemorySearchConfig
from .ingestion.chunking import chunk_markdown
from .memory_storage.embedding_cache import EmbeddingCache
from .memory_storage.filters import build_source_filter
from .memory_storage.memory_schema import ensure_memory_index_schema
from .memory_storage.sqlite_memory_store import SqliteMemoryStore
from .search.fts_query import bm25_rank_to_score, build_fts_query
from .search.hybrid import merge_hybrid_results
from .search.keyword_search import search_keyword
from .search.negative_cache import NegativeResultCache
from .search.query_embedding_cache import QueryEmbeddingCache
from .search.vector_search import search_vector
from ..embedding import BaseEmbeddingModel, OpenAIEmbeddingModel
from ..enumeration import MemorySource
from ..exceptions import MemoryConfigError
from ..schema import (
    CacheStatus,
    FileMetadata,
    FtsStatus,
    MemoryChunk,
    MemoryIndexMeta,
    MemoryIndexStatus,
    MemorySearchResult,
    MemorySyncProgressUpdate,
    VectorStatus,
)
from ..utils.common_utils import hash_text
from ..utils.frontmatter import parse_frontmatter

FTS_ONLY_MODEL = "fts-only"
MAX_SEARCH_CANDIDATES = 200
SESSION_DIRTY_DEBOUNCE_MS = 5000

ProgressCallback = Callable[[MemorySyncProgressUpdate], None]


class SyncProgress:
    """Running completed/total counters forwarded to an optional callback."""

    def __init__(self, report: ProgressCallback | None = None):
        self.report = report
        self.completed = 0
        self.total = 0

    def _emit(self, label: str | None = None):
        if self.report:
            self.report(MemorySyncProgressUpdate(completed=self.completed, total=self.total, label=label))

    def add(self, count: int, label: str):
        self.total += count
        self._emit(label)

    def advance(self):
        self.completed += 1
        self._emit()


# Started managers, keyed by agent, workspace and database path
INDEX_CACHE: dict[str, "MemoryIndexManager"] = {}


class MemoryIndexManager:
    """Facade over one memory index database.

    `search()` never raises for operational failures: an unavailable
    embedding provider degrades to keyword-only results, and storage errors
    in either search path yield empty results for that path. It raises only
    for invalid arguments or when called on a closed manager.
    """

    # ============================================================================
    # Initialization and Lifecycle
    # ============================================================================

    def __init__(
        self,
        agent_id: str,
        workspace_dir: str,
        settings: MemorySearchConfig | None = None,
        embedding_model: BaseEmbeddingModel | None = None,
    ):
        self.agent_id = agent_id
        self.workspace_dir = os.path.abspath(workspace_dir)
        self.settings = settings or MemorySearchConfig()
        self.db_path = self.settings.resolve_store_path(self.workspace_dir)

        self.embedding_model = embedding_model
        self._owns_embedding_model = False
        if self.embedding_model is None and self.settings.embedding_provider == "openai":
            self.embedding_model = OpenAIEmbeddingModel(
                model_name=self.settings.model,
                dimensions=self.settings.embedding_dimensions,
                base_url=self.settings.embedding_base_url,
                max_batch_size=self.settings.embedding_batch_size,
            )
            self._owns_embedding_model = True

        self.sources = self.settings.source_values
        self.conn: sqlite3.Connection | None = None
        self.store: SqliteMemoryStore | None = None
        self.embedding_cache: EmbeddingCache | None = None
        self.negative_cache = NegativeResultCache(
            max_entries=self.settings.negative_cache_max_entries,
            ttl_seconds=self.settings.negative_cache_ttl_seconds,
        )
        self.query_cache = QueryEmbeddingCache(max_entries=self.settings.query_cache_max_entries)
        self._executor: ThreadPoolExecutor | None = None
        # One connection shared by the event loop and the vector setup thread
        self._db_lock = threading.RLock()

        self.fts_available = False
        self.fts_error: str | None = None
        self.vector_load_error: str | None = None
        self.vector_available: bool | None = None

        # State tracking
        self.started = False
        self.closed = False
        self.dirty = MemorySource.MEMORY.value in self.sources
        self.sessions_dirty = MemorySource.SESSIONS.value in self.sources
        self.needs_full_reindex = False
        self.session_warm: set[str] = set()

        # Sync control
        self.syncing: asyncio.Task | None = None
        self.watch_task: asyncio.Task | None = None
        self.session_watch_task: asyncio.Task | None = None
        self.interval_task: asyncio.Task | None = None

    @property
    def provider_id(self) -> str:
        return self.embedding_model.provider_id if self.embedding_model else "none"

    @property
    def provider_model(self) -> str:
        """Model tag written on chunks; only chunks with this tag are searchable."""
        return self.embedding_model.model_name if self.embedding_model else FTS_ONLY_MODEL

    @property
    def provider_key(self) -> str:
        return self.embedding_model.provider_key if self.embedding_model else ""

    async def start(self) -> "MemoryIndexManager":
        """Open the database, ensure the schema, and start background sync tasks."""
        if self.closed:
            raise RuntimeError("Memory index manager is closed")
        if self.started:
            return self

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode: the store issues its own BEGIN/COMMIT
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        vector_enabled = self._load_vector_extension()

        report = ensure_memory_index_schema(
            self.conn,
            embedding_cache_table=self.settings.embedding_cache_table,
            fts_table=self.settings.fts_table,
            fts_enabled=self.settings.fts_enabled,
        )
        self.fts_available = report.fts_available
        self.fts_error = report.fts_error

        self.store = SqliteMemoryStore(
            self.conn,
            fts_table=self.settings.fts_table,
            vector_table=self.settings.vector_table,
            fts_available=self.fts_available,
            vector_enabled=vector_enabled,
            max_retries=self.settings.db_retry_max_retries,
            base_delay=self.settings.db_retry_base_delay,
            lock=self._db_lock,
        )
        self.embedding_cache = EmbeddingCache(
            self.conn,
            table=self.settings.embedding_cache_table,
            provider=self.provider_id,
            model=self.provider_model,
            provider_key=self.provider_key,
            enabled=self.settings.cache_enabled and self.embedding_model is not None,
            max_entries=self.settings.cache_max_entries,
            max_retries=self.settings.db_retry_max_retries,
            base_delay=self.settings.db_retry_base_delay,
            lock=self._db_lock,
        )
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="hybridmem-vec")

        stored_meta = await self.store.read_meta()
        if not self._index_meta().same_index(stored_meta):
            logger.info(f"Index settings changed for agent {self.agent_id}, full reindex scheduled")
            self.needs_full_reindex = True
            self.dirty = MemorySource.MEMORY.value in self.sources
            self.sessions_dirty = MemorySource.SESSIONS.value in self.sources
        elif stored_meta.vector_dims and vector_enabled:
            self.store.ensure_vector_ready(stored_meta.vector_dims)

        self.started = True
        self._start_watchers()
        logger.info(
            f"Memory index ready: db={self.db_path} provider={self.provider_id} "
            f"model={self.provider_model} fts={self.fts_available} vector={vector_enabled}",
        )
        return self

    def _load_vector_extension(self) -> bool:
        if not self.settings.vector_enabled:
            return False
        try:
            self.conn.enable_load_extension(True)
            try:
                if self.settings.vector_extension_path:
                    self.conn.load_extension(self.settings.vector_extension_path)
                else:
                    sqlite_vec.load(self.conn)
            finally:
                self.conn.enable_load_extension(False)
        except (AttributeError, sqlite3.Error) as e:
            # AttributeError: interpreter built without extension loading
            self.vector_load_error = str(e)
            logger.warning(f"sqlite-vec not available, falling back to brute-force: {e}")
            return False
        logger.info("Loaded sqlite-vec")
        return True

    async def close(self) -> None:
        """Close the manager and release resources. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True

        tasks = [t for t in (self.watch_task, self.session_watch_task, self.interval_task, self.syncing) if t]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.negative_cache.clear()
        self.query_cache.clear()
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
        if self.conn:
            with self._db_lock:
                self.conn.close()
            self.conn = None
        if self._owns_embedding_model and self.embedding_model:
            await self.embedding_model.close()

        for key, manager in list(INDEX_CACHE.items()):
            if manager is self:
                del INDEX_CACHE[key]
        logger.info(f"Closed memory index {self.db_path}")

    def _ensure_open(self):
        if self.closed:
            raise RuntimeError("Memory index manager is closed")
        if not self.started:
            raise RuntimeError("Memory index manager is not started")

    def _index_meta(self) -> MemoryIndexMeta:
        return MemoryIndexMeta(
            model=self.provider_model,
            provider=self.provider_id,
            provider_key=self.provider_key,
            chunk_tokens=self.settings.chunk_tokens,
            chunk_overlap=self.settings.chunk_overlap,
            vector_dims=self.store.vector_dims if self.store else None,
        )

    # ============================================================================
    # Public API Methods
    # ============================================================================

    async def warm_session(self, session_key: str | None = None):
        """Pre-sync memory once per session key."""
        if not self.settings.sync_on_session_start:
            return

        key = (session_key or "").strip()
        if key and key in self.session_warm:
            return

        await self.sync(reason="session-start")

        if key:
            self.session_warm.add(key)

    async def sync(
        self,
        force: bool = False,
        reason: str | None = None,
        progress: ProgressCallback | None = None,
    ):
        """Bring the index in line with the memory files and session transcripts.

        Concurrent callers wait for the sync already in flight.
        """
        self._ensure_open()
        if self.syncing:
            await asyncio.shield(self.syncing)
            return

        self.syncing = asyncio.create_task(self._run_sync(reason, force, progress))
        try:
            await self.syncing
        finally:
            self.syncing = None

    async def search(
        self,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
        namespace: str | None = None,
        session_key: str | None = None,
        sources: list[MemorySource | str] | None = None,
    ) -> list[MemorySearchResult]:
        """Search indexed memory with hybrid vector + keyword search.

        Args:
            query: Search query text
            max_results: Maximum number of results to return
            min_score: Minimum relevance score threshold
            namespace: Only return chunks whose metadata namespace equals this
            session_key: Only return chunks of this session; also warms it
            sources: Restrict to these source tags (default: configured sources)

        Returns:
            List of search results sorted by relevance
        """
        self._ensure_open()
        if max_results is not None and max_results < 0:
            raise MemoryConfigError(f"max_results must not be negative, got {max_results}")

        try:
            await self.warm_session(session_key)
            if self.settings.sync_on_search and (self.dirty or self.sessions_dirty):
                await self.sync(reason="search")
        except Exception as e:
            logger.warning(f"memory sync failed (search): {e}")

        cleaned = (query or "").strip()
        if not cleaned:
            return []

        min_score = min_score if min_score is not None else self.settings.query_min_score
        max_results = max_results if max_results is not None else self.settings.query_max_results
        if max_results == 0:
            return []

        candidates = min(MAX_SEARCH_CANDIDATES, max(1, int(max_results * self.settings.hybrid_candidate_multiplier)))
        source_values = [s.value if isinstance(s, MemorySource) else str(s) for s in (sources or self.sources)]
        filter_chunks = build_source_filter(source_values, namespace=namespace, session_id=session_key)
        filter_vec = build_source_filter(source_values, namespace=namespace, session_id=session_key, alias="c")

        query_vec = await self._embed_query(cleaned)
        use_keyword = self.fts_available and (self.settings.hybrid_enabled or not query_vec)

        vector_results, keyword_results = await asyncio.gather(
            self._search_vector(query_vec, candidates, filter_vec, filter_chunks),
            self._search_keyword(cleaned, candidates, filter_chunks) if use_keyword else _no_results(),
        )

        if not query_vec:
            # Keyword-only: keep the raw text score
            results = keyword_results
        elif not self.settings.hybrid_enabled:
            results = vector_results
        else:
            results = merge_hybrid_results(
                vector_results,
                keyword_results,
                vector_weight=self.settings.hybrid_vector_weight,
                text_weight=self.settings.hybrid_text_weight,
            )

        return [r for r in results if r.score >= min_score][:max_results]

    async def ingest_files(
        self,
        files: list[FileMetadata],
        removed: list[str] | None = None,
    ) -> int:
        """Index externally supplied file records and drop removed paths.

        Each record needs `path` and either `content` or a readable
        `abs_path`. Records whose hash matches the stored one are skipped.
        Ingested files are flagged as external, so a later sync of the
        workspace does not delete them for lack of a file on disk.
        Returns the number of files (re)indexed.
        """
        self._ensure_open()
        for file_meta in files:
            if not file_meta.path:
                raise MemoryConfigError("ingested files need a path")

        if self.needs_full_reindex:
            # Stale settings: start from an empty index, disk files follow on the next sync
            await self.store.clear_all()
            self.needs_full_reindex = False
            self.dirty = MemorySource.MEMORY.value in self.sources
            self.sessions_dirty = MemorySource.SESSIONS.value in self.sources

        indexed = 0
        for file_meta in files:
            file_meta = file_meta.model_copy(update={"external": True})
            content = file_meta.content
            if content is None:
                if not file_meta.abs_path:
                    raise MemoryConfigError(f"{file_meta.path}: content or abs_path required")
                content = Path(file_meta.abs_path).read_text(encoding="utf-8")

            metadata: dict[str, Any] = {}
            line_offset = 0
            if file_meta.path.endswith(".md"):
                metadata, content, line_offset = parse_frontmatter(content)
            metadata.update(file_meta.metadata)

            if await self._index_file(file_meta, content, metadata, line_offset, force=False):
                indexed += 1

        for path in removed or []:
            source = await self.store.get_file_source(path)
            if source is not None:
                await self.store.delete_file(path, source)

        await self._after_write()
        return indexed

    async def clear_all(self):
        """Drop every indexed file and chunk; the next sync rebuilds them."""
        self._ensure_open()
        await self.store.clear_all()
        self.negative_cache.clear()
        self.dirty = MemorySource.MEMORY.value in self.sources
        self.sessions_dirty = MemorySource.SESSIONS.value in self.sources

    def status(self) -> MemoryIndexStatus:
        """Index health snapshot."""
        files = chunks = 0
        cache = CacheStatus(max_entries=self.settings.cache_max_entries)
        if self.store and not self.closed:
            files = self.store.count_files()
            chunks = self.store.count_chunks()
            if self.embedding_cache:
                cache = self.embedding_cache.stats()

        return MemoryIndexStatus(
            db_path=self.db_path,
            agent_id=self.agent_id,
            workspace_dir=self.workspace_dir,
            provider=self.provider_id,
            model=self.provider_model,
            sources=list(self.sources),
            files=files,
            chunks=chunks,
            dirty=self.dirty or self.sessions_dirty,
            fts=FtsStatus(
                enabled=self.settings.fts_enabled,
                available=self.fts_available,
                error=self.fts_error,
            ),
            vector=VectorStatus(
                enabled=self.settings.vector_enabled,
                available=self.vector_available,
                dims=self.store.vector_dims if self.store else None,
                load_error=self.vector_load_error,
            ),
            cache=cache,
            query_cache=self.query_cache.stats(),
            negative_cache=self.negative_cache.stats(),
        )

    # ============================================================================
    # Search Methods
    # ============================================================================

    async def _embed_query(self, query: str) -> list[float]:
        """Query embedding, or [] when there is no provider or it fails."""
        if self.embedding_model is None:
            return []
        cached = self.query_cache.get(query)
        if cached is not None:
            return list(cached)
        try:
            vec = await asyncio.wait_for(
                self.embedding_model.embed_query(query),
                timeout=self.settings.query_embedding_timeout,
            )
        except Exception as e:
            logger.warning(f"Query embedding failed, using keyword search only: {e!r}")
            return []
        if not vec or not all(math.isfinite(v) for v in vec):
            return []
        vec = list(vec)
        self.query_cache.put(query, vec)
        return vec

    async def _ensure_vector_ready(self, dims: int) -> bool:
        loop = asyncio.get_running_loop()
        ready = await loop.run_in_executor(self._executor, self.store.ensure_vector_ready, dims)
        self.vector_available = ready
        return ready

    async def _search_vector(self, query_vec, limit, filter_vec, filter_chunks) -> list[MemorySearchResult]:
        if not query_vec:
            return []
        try:
            return await search_vector(
                self.conn,
                vector_table=self.settings.vector_table,
                provider_model=self.provider_model,
                query_vec=query_vec,
                limit=limit,
                snippet_max_chars=self.settings.snippet_max_chars,
                ensure_vector_ready=self._ensure_vector_ready,
                source_filter_vec=filter_vec,
                source_filter_chunks=filter_chunks,
                ready_timeout=self.settings.vector_ready_timeout,
                max_retries=self.settings.db_retry_max_retries,
                base_delay=self.settings.db_retry_base_delay,
            )
        except sqlite3.Error as e:
            logger.warning(f"Vector search failed: {e}")
            return []

    async def _search_keyword(self, query, limit, filter_chunks) -> list[MemorySearchResult]:
        try:
            return await search_keyword(
                self.conn,
                fts_table=self.settings.fts_table,
                provider_model=self.provider_model,
                query=query,
                limit=limit,
                snippet_max_chars=self.settings.snippet_max_chars,
                source_filter=filter_chunks,
                build_fts_query=build_fts_query,
                bm25_rank_to_score=bm25_rank_to_score,
                negative_cache=self.negative_cache,
                overfetch_factor=self.settings.keyword_overfetch_factor,
                max_fetch_rounds=self.settings.keyword_max_fetch_rounds,
                max_retries=self.settings.db_retry_max_retries,
                base_delay=self.settings.db_retry_base_delay,
            )
        except sqlite3.Error as e:
            logger.warning(f"Keyword search failed: {e}")
            return []

    # ============================================================================
    # Sync Logic
    # ============================================================================

    async def _run_sync(self, reason: str | None, force: bool, progress_callback: ProgressCallback | None):
        """Execute sync operation."""
        progress = SyncProgress(progress_callback)
        full = force or self.needs_full_reindex
        if self.needs_full_reindex:
            await self.store.clear_all()

        synced = False
        if MemorySource.MEMORY.value in self.sources and (full or self.dirty):
            await self._sync_memory_files(progress, full)
            self.dirty = False
            synced = True

        if MemorySource.SESSIONS.value in self.sources and (full or self.sessions_dirty):
            await self._sync_session_files(progress, full)
            self.sessions_dirty = False
            synced = True

        self.needs_full_reindex = False
        if not synced:
            return
        await self._after_write()
        logger.info(
            f"Memory sync done (reason={reason}, force={force}): "
            f"{self.store.count_files()} files, {self.store.count_chunks()} chunks",
        )

    async def _after_write(self):
        await self.store.write_meta(self._index_meta())
        self.negative_cache.clear()
        if self.embedding_cache:
            self.embedding_cache.prune()

    async def _sync_memory_files(self, progress: SyncProgress, full: bool):
        """Sync memory markdown files."""
        files = self._list_memory_files()
        logger.debug(f"memory sync: indexing {len(files)} memory files")
        progress.add(len(files), "Indexing memory files...")

        for abs_path in files:
            raw = Path(abs_path).read_text(encoding="utf-8")
            file_meta = self._build_file_entry(abs_path, raw, MemorySource.MEMORY.value)
            metadata, body, line_offset = parse_frontmatter(raw)
            await self._index_file(file_meta, body, metadata, line_offset, force=full)
            progress.advance()

        active = {self._rel_path(p) for p in files}
        await self._delete_stale(MemorySource.MEMORY.value, active)

    async def _sync_session_files(self, progress: SyncProgress, full: bool):
        """Sync session transcript files."""
        files = self._list_session_files()
        logger.debug(f"memory sync: indexing {len(files)} session files")
        progress.add(len(files), "Indexing session files...")

        for abs_path in files:
            raw = Path(abs_path).read_text(encoding="utf-8")
            content = self._session_text(raw)
            file_meta = self._build_file_entry(abs_path, content, MemorySource.SESSIONS.value)
            session_id = Path(abs_path).stem
            await self._index_file(file_meta, content, {"session_id": session_id}, 0, force=full)
            progress.advance()

        active = {self._rel_path(p) for p in files}
        await self._delete_stale(MemorySource.SESSIONS.value, active)

    async def _delete_stale(self, source: str, active_paths: set[str]):
        for stale_path in await self.store.list_files(source, include_external=False):
            if stale_path not in active_paths:
                logger.debug(f"Removing stale {source} file {stale_path}")
                await self.store.delete_file(stale_path, source)

    # ============================================================================
    # File Indexing
    # ============================================================================

    async def _index_file(
        self,
        file_meta: FileMetadata,
        content: str,
        metadata: dict[str, Any],
        line_offset: int,
        force: bool,
    ) -> bool:
        """Re-chunk and re-embed one file unless its stored hash is current."""
        if not force:
            existing_hash = await self.store.get_file_hash(file_meta.path, file_meta.source)
            if existing_hash == file_meta.hash:
                return False

        chunks = chunk_markdown(
            content,
            file_meta.path,
            file_meta.source,
            model=self.provider_model,
            chunk_tokens=self.settings.chunk_tokens,
            overlap=self.settings.chunk_overlap,
            line_offset=line_offset,
            metadata=metadata,
        )
        chunks = await self._embed_chunks(chunks)
        await self.store.upsert_file(file_meta, chunks)
        logger.debug(f"Indexed {file_meta.path} ({len(chunks)} chunks)")
        return True

    async def _embed_chunks(self, chunks: list[MemoryChunk]) -> list[MemoryChunk]:
        """Attach embeddings, reusing cached vectors for known text hashes."""
        if not chunks or self.embedding_model is None:
            return chunks

        cached = self.embedding_cache.load([c.hash for c in chunks])
        missing = [c for c in chunks if c.hash not in cached]
        for chunk in chunks:
            if chunk.hash in cached:
                chunk.embedding = cached[chunk.hash]

        if missing:
            await self.embedding_model.embed_chunks(missing)
            self.embedding_cache.upsert({c.hash: c.embedding for c in missing if c.embedding})
        return chunks

    # ============================================================================
    # File Listing and Building
    # ============================================================================

    def _rel_path(self, abs_path: str) -> str:
        rel = os.path.relpath(abs_path, self.workspace_dir)
        if rel.startswith(".."):
            rel = abs_path
        return rel.replace("\\", "/")

    def _list_memory_files(self) -> list[str]:
        """MEMORY.md, memory.md, memory/**/*.md and configured extra paths."""
        roots = [
            os.path.join(self.workspace_dir, "MEMORY.md"),
            os.path.join(self.workspace_dir, "memory.md"),
            os.path.join(self.workspace_dir, "memory"),
            *self.settings.extra_paths,
        ]

        seen: dict[str, None] = {}
        for root in roots:
            if os.path.isfile(root) and root.endswith(".md"):
                seen[os.path.abspath(root)] = None
            elif os.path.isdir(root):
                for dirpath, _, filenames in sorted(os.walk(root)):
                    for filename in sorted(filenames):
                        if filename.endswith(".md"):
                            seen[os.path.abspath(os.path.join(dirpath, filename))] = None
        return list(seen)

    def _sessions_dir(self) -> str:
        return os.path.join(self.workspace_dir, "sessions", self.agent_id)

    def _list_session_files(self) -> list[str]:
        sessions_dir = self._sessions_dir()
        if not os.path.isdir(sessions_dir):
            return []
        return [os.path.join(sessions_dir, name) for name in sorted(os.listdir(sessions_dir)) if name.endswith(".jsonl")]

    def _build_file_entry(self, abs_path: str, content: str, source: str) -> FileMetadata:
        stat = os.stat(abs_path)
        return FileMetadata(
            hash=hash_text(content),
            mtime_ms=stat.st_mtime * 1000,
            size=stat.st_size,
            path=self._rel_path(abs_path),
            source=source,
            abs_path=abs_path,
        )

    # ============================================================================
    # Session Processing Helpers
    # ============================================================================

    def _session_text(self, raw: str) -> str:
        """User and assistant messages of a JSONL transcript, one per line."""
        collected = []
        for line in raw.split("\n"):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(record, dict) or record.get("type") != "message":
                continue

            message = record.get("message") or {}
            role = message.get("role")
            if role not in ("user", "assistant"):
                continue

            text = self._extract_session_text(message.get("content"))
            if text:
                label = "User" if role == "user" else "Assistant"
                collected.append(f"{label}: {text}")
        return "\n".join(collected)

    def _extract_session_text(self, content: Any) -> str | None:
        if isinstance(content, str):
            return self._normalize_session_text(content) or None
        if not isinstance(content, list):
            return None

        parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                normalized = self._normalize_session_text(block["text"])
                if normalized:
                    parts.append(normalized)
        return " ".join(parts) if parts else None

    @staticmethod
    def _normalize_session_text(text: str) -> str:
        return re.sub(r"\s+", " ", text).strip()

    # ============================================================================
    # File Watchers
    # ============================================================================

    def _start_watchers(self):
        if self.settings.watch_enabled and MemorySource.MEMORY.value in self.sources:
            self.watch_task = asyncio.create_task(self._watch_memory_files())
        if self.settings.watch_enabled and MemorySource.SESSIONS.value in self.sources:
            self.session_watch_task = asyncio.create_task(self._watch_session_files())
        if self.settings.interval_minutes > 0:
            self.interval_task = asyncio.create_task(self._interval_sync())

    async def _watch_memory_files(self) -> None:
        watch_paths = [
            p
            for p in (
                os.path.join(self.workspace_dir, "MEMORY.md"),
                os.path.join(self.workspace_dir, "memory.md"),
                os.path.join(self.workspace_dir, "memory"),
                *self.settings.extra_paths,
            )
            if os.path.exists(p)
        ]
        if not watch_paths:
            return

        async for changes in awatch(*watch_paths, debounce=self.settings.watch_debounce_ms):
            if self.closed:
                break
            if any(path.endswith(".md") for _, path in changes):
                self.dirty = True
                try:
                    await self.sync(reason="watch")
                except Exception as e:
                    logger.exception(f"memory sync failed (watch): {e}")

    async def _watch_session_files(self) -> None:
        sessions_dir = self._sessions_dir()
        if not os.path.isdir(sessions_dir):
            return

        async for changes in awatch(sessions_dir, debounce=SESSION_DIRTY_DEBOUNCE_MS):
            if self.closed:
                break
            if any(path.endswith(".jsonl") for _, path in changes):
                self.sessions_dirty = True
                try:
                    await self.sync(reason="session-delta")
                except Exception as e:
                    logger.warning(f"memory sync failed (session-delta): {e}")

    async def _interval_sync(self) -> None:
        while not self.closed:
            await asyncio.sleep(self.settings.interval_minutes * 60)
            if not self.closed:
                try:
                    await self.sync(reason="interval")
                except Exception as e:
                    logger.warning(f"memory sync failed (interval): {e}")


async def _no_results() -> list[MemorySearchResult]:
    return []


async def get_memory_index_manager(
    agent_id: str,
    workspace_dir: str,
    settings: MemorySearchConfig | None = None,
    embedding_model: BaseEmbeddingModel | None = None,
) -> MemoryIndexManager:
    """Return the started manager for this agent workspace, creating it on first use."""
    settings = settings or MemorySearchConfig()
    workspace_dir = os.path.abspath(workspace_dir)
    key = f"{agent_id}:{workspace_dir}:{settings.resolve_store_path(workspace_dir)}"

    manager = INDEX_CACHE.get(key)
    if manager is not None and not manager.closed:
        return manager

    manager = MemoryIndexManager(agent_id, workspace_dir, settings, embedding_model=embedding_model)
    await manager.start()
    INDEX_CACHE[key] = manager
    return manager
