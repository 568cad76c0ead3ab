"""Memory search configuration."""

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..enumeration import MemorySource
from ..exceptions import MemoryConfigError
from .memory_storage.memory_schema import validate_table_name

ENV_PREFIX = "HYBRIDMEM_"


class MemorySearchConfig(BaseModel):
    """Configuration for memory indexing and search."""

    model_config = ConfigDict(extra="allow")

    # Embedding provider
    embedding_provider: str = Field(default="none", description="'openai' or 'none' for keyword-only search")
    model: str = Field(default="text-embedding-3-small", description="Model name for embeddings")
    embedding_dimensions: int | None = Field(default=None, description="Requested embedding dimensions")
    embedding_base_url: str | None = Field(default=None, description="Base URL of an OpenAI-compatible endpoint")
    embedding_batch_size: int = Field(default=10, description="Texts per embedding request")
    query_embedding_timeout: float = Field(default=60.0, description="Seconds to wait for a query embedding")

    # Sources
    sources: list[MemorySource | str] = Field(
        default_factory=lambda: [MemorySource.MEMORY],
        description="Sources to index and search",
    )
    extra_paths: list[str] = Field(default_factory=list, description="Additional markdown files or directories")

    # Storage
    store_path: str = Field(default="memory.db", description="SQLite file, relative to the workspace if not absolute")
    embedding_cache_table: str = Field(default="embedding_cache", description="Embedding cache table name")
    fts_table: str = Field(default="chunks_fts", description="FTS5 table name")
    vector_table: str = Field(default="chunks_vec", description="sqlite-vec table name")
    vector_enabled: bool = Field(default=True, description="Whether to load sqlite-vec")
    vector_extension_path: str | None = Field(default=None, description="Explicit path to the vec0 extension")
    vector_ready_timeout: float = Field(default=5.0, description="Seconds the vector readiness check may take")
    fts_enabled: bool = Field(default=True, description="Whether to enable full-text search")
    cache_enabled: bool = Field(default=True, description="Whether to reuse embeddings by content hash")
    cache_max_entries: int | None = Field(default=None, description="Embedding cache bound, None for unbounded")
    db_retry_max_retries: int = Field(default=3, description="Extra attempts for a locked database")
    db_retry_base_delay: float = Field(default=0.05, description="First backoff delay in seconds")

    # Chunking
    chunk_tokens: int = Field(default=400, description="Number of tokens per chunk")
    chunk_overlap: int = Field(default=80, description="Number of overlapping tokens between chunks")

    # Sync triggers
    watch_enabled: bool = Field(default=False, description="Whether to watch memory files")
    watch_debounce_ms: int = Field(default=1000, description="Debounce time for file watcher in milliseconds")
    interval_minutes: int = Field(default=0, description="Minutes between automatic syncs (0 to disable)")
    sync_on_search: bool = Field(default=True, description="Whether to sync a dirty index before searching")
    sync_on_session_start: bool = Field(default=True, description="Whether to sync when a session starts")

    # Query
    query_min_score: float = Field(default=0.0, description="Minimum relevance score for search results")
    query_max_results: int = Field(default=10, description="Maximum number of search results to return")
    hybrid_enabled: bool = Field(default=True, description="Whether to merge vector and keyword results")
    hybrid_vector_weight: float = Field(default=0.5, description="Weight of the vector score")
    hybrid_text_weight: float = Field(default=0.5, description="Weight of the keyword score")
    hybrid_candidate_multiplier: float = Field(default=4.0, description="Candidates fetched per requested result")
    snippet_max_chars: int = Field(default=700, description="Maximum snippet length in characters")
    keyword_overfetch_factor: int = Field(default=3, description="FTS candidates per result before filtering")
    keyword_max_fetch_rounds: int = Field(default=3, description="FTS pages read while filters drop candidates")
    negative_cache_ttl_seconds: float = Field(default=300.0, description="Lifetime of a cached zero-result query")
    negative_cache_max_entries: int = Field(default=256, description="Zero-result queries remembered")
    query_cache_max_entries: int = Field(default=128, description="Query embeddings kept in memory, 0 disables")

    @field_validator("hybrid_vector_weight", "hybrid_text_weight")
    @classmethod
    def _check_weight(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise MemoryConfigError(f"hybrid weights must be within [0, 1], got {value}")
        return value

    @field_validator("embedding_cache_table", "fts_table", "vector_table")
    @classmethod
    def _check_table(cls, value: str) -> str:
        return validate_table_name(value)

    @field_validator(
        "chunk_tokens",
        "query_max_results",
        "snippet_max_chars",
        "keyword_overfetch_factor",
        "keyword_max_fetch_rounds",
        "negative_cache_max_entries",
        "embedding_batch_size",
    )
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value <= 0:
            raise MemoryConfigError(f"value must be positive, got {value}")
        return value

    @field_validator("query_cache_max_entries")
    @classmethod
    def _check_non_negative(cls, value: int) -> int:
        if value < 0:
            raise MemoryConfigError(f"value must not be negative, got {value}")
        return value

    @field_validator("sources")
    @classmethod
    def _normalize_sources(cls, value: list[MemorySource | str]) -> list[MemorySource | str]:
        normalized = []
        for source in value:
            try:
                normalized.append(MemorySource(source))
            except ValueError:
                normalized.append(str(source))
        return normalized

    @model_validator(mode="after")
    def _check_overlap(self) -> "MemorySearchConfig":
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_tokens:
            raise MemoryConfigError(
                f"chunk_overlap must be in [0, chunk_tokens), got {self.chunk_overlap}/{self.chunk_tokens}",
            )
        return self

    @property
    def source_values(self) -> list[str]:
        return [s.value if isinstance(s, MemorySource) else s for s in self.sources]

    def resolve_store_path(self, workspace_dir: str) -> str:
        if self.store_path == ":memory:" or os.path.isabs(self.store_path):
            return self.store_path
        return os.path.join(workspace_dir, self.store_path)


def _load_file(path: str) -> dict[str, Any]:
    text = Path(path).read_text(encoding="utf-8")
    if path.endswith(".json"):
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MemoryConfigError(f"Config file {path} must contain a mapping")
    # Accept either a bare mapping or one nested under `memory_search`
    return dict(data.get("memory_search", data))


def load_memory_search_config(path: str | None = None, **overrides) -> MemorySearchConfig:
    """Build a config from an optional YAML/JSON file, the environment and keyword overrides.

    Later layers win: file, then `HYBRIDMEM_STORE_PATH`,
    `HYBRIDMEM_EMBEDDING_PROVIDER` and `HYBRIDMEM_EMBEDDING_MODEL`, then `overrides`.
    """
    data: dict[str, Any] = _load_file(path) if path else {}

    env_fields = {
        "STORE_PATH": "store_path",
        "EMBEDDING_PROVIDER": "embedding_provider",
        "EMBEDDING_MODEL": "model",
    }
    for env_suffix, field_name in env_fields.items():
        value = os.getenv(ENV_PREFIX + env_suffix)
        if value:
            data[field_name] = value

    data.update(overrides)
    return MemorySearchConfig(**data)
