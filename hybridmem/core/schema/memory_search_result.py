"""Memory search result schema."""

from pydantic import BaseModel, Field

from .memory_chunk import ChunkMetadata


class MemorySearchResult(BaseModel):
    """Search result from memory index."""

    id: str = Field(..., description="Chunk id")
    path: str = Field(..., description="File path relative to workspace")
    start_line: int = Field(..., description="Starting line number of the match")
    end_line: int = Field(..., description="Ending line number of the match")
    score: float = Field(..., description="Relevance score of the search result")
    snippet: str = Field(..., description="Text snippet from the matched content")
    source: str = Field(..., description="Source of the memory data")
    vector_score: float | None = Field(default=None, description="Cosine similarity, if vector matched")
    text_score: float | None = Field(default=None, description="Normalized BM25 score, if keyword matched")
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata, description="Typed chunk metadata")
