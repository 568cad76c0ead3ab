"""Memory index metadata schema."""

from typing import Optional

from pydantic import BaseModel, Field


class MemoryIndexMeta(BaseModel):
    """Settings the stored chunks were produced with; a mismatch forces a full reindex."""

    model: str = Field(..., description="Name of the embedding model")
    provider: str = Field(default="none", description="Embedding provider id")
    provider_key: str = Field(default="", description="Hash of the provider configuration")
    chunk_tokens: int = Field(..., description="Maximum tokens per chunk")
    chunk_overlap: int = Field(..., description="Number of overlapping tokens between chunks")
    vector_dims: Optional[int] = Field(default=None, description="Vector embedding dimensions")

    def same_index(self, other: "MemoryIndexMeta | None") -> bool:
        """Whether chunks written under `other` are still valid under these settings."""
        if other is None:
            return False
        return (
            self.model == other.model
            and self.provider == other.provider
            and self.provider_key == other.provider_key
            and self.chunk_tokens == other.chunk_tokens
            and self.chunk_overlap == other.chunk_overlap
        )
