"""Index health report schema."""

from pydantic import BaseModel, Field


class FtsStatus(BaseModel):
    """Full-text index state."""

    enabled: bool = Field(default=False)
    available: bool = Field(default=False)
    error: str | None = Field(default=None)


class VectorStatus(BaseModel):
    """Accelerated vector index state."""

    enabled: bool = Field(default=False)
    available: bool | None = Field(default=None, description="None until the first readiness check")
    dims: int | None = Field(default=None)
    load_error: str | None = Field(default=None)


class CacheStats(BaseModel):
    """Hit, miss and eviction counters of one cache."""

    entries: int = Field(default=0)
    hits: int = Field(default=0)
    misses: int = Field(default=0)
    evictions: int = Field(default=0)
    hit_rate: float = Field(default=0.0, description="hits / (hits + misses), 0 before the first lookup")

    @classmethod
    def from_counts(cls, entries: int, hits: int, misses: int, evictions: int, **kwargs) -> "CacheStats":
        total = hits + misses
        return cls(
            entries=entries,
            hits=hits,
            misses=misses,
            evictions=evictions,
            hit_rate=hits / total if total else 0.0,
            **kwargs,
        )


class CacheStatus(CacheStats):
    """Embedding cache state."""

    enabled: bool = Field(default=False)
    max_entries: int | None = Field(default=None)


class MemoryIndexStatus(BaseModel):
    """Snapshot polled by health reporting."""

    db_path: str = Field(..., description="Path of the SQLite database file")
    agent_id: str = Field(...)
    workspace_dir: str = Field(...)
    provider: str = Field(..., description="Embedding provider id, 'none' when FTS-only")
    model: str = Field(..., description="Embedding model chunks are written with")
    sources: list[str] = Field(default_factory=list)
    files: int = Field(default=0)
    chunks: int = Field(default=0)
    dirty: bool = Field(default=False)
    fts: FtsStatus = Field(default_factory=FtsStatus)
    vector: VectorStatus = Field(default_factory=VectorStatus)
    cache: CacheStatus = Field(default_factory=CacheStatus)
    query_cache: CacheStats = Field(default_factory=CacheStats, description="In-process query embedding LRU")
    negative_cache: CacheStats = Field(default_factory=CacheStats, description="Zero-result keyword queries")
