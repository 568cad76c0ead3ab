"""Embedding cache entry schema."""

from pydantic import BaseModel, Field


class EmbeddingCacheEntry(BaseModel):
    """A memoized embedding addressed by provider identity and content hash."""

    provider: str = Field(..., description="Embedding provider id")
    model: str = Field(..., description="Embedding model name")
    provider_key: str = Field(..., description="Hash of the provider configuration")
    hash: str = Field(..., description="Hash of the embedded text")
    embedding: list[float] = Field(..., description="Embedding vector")
    dims: int | None = Field(default=None, description="Vector dimensionality")
    updated_at: int = Field(default=0, description="Last write time in epoch milliseconds")
