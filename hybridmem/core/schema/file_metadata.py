"""File metadata schema."""

from typing import Any

from pydantic import BaseModel, Field


class FileMetadata(BaseModel):
    """File bookkeeping row, also used as the ingestion record for a changed file."""

    # Core fields (always required)
    hash: str = Field(default=..., description="Hash of the file content")
    mtime_ms: float = Field(default=..., description="Last modification time in milliseconds")
    size: int = Field(default=..., description="File size in bytes")

    path: str | None = Field(default=None, description="Path relative to the workspace")
    source: str = Field(default="memory", description="Logical origin tag")
    external: bool = Field(default=False, description="Supplied through the ingestion API rather than found on disk")

    # Extended fields for ingestion
    abs_path: str | None = Field(default=None, description="Absolute path on disk")
    content: str | None = Field(default=None, description="Parsed content to chunk")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Metadata applied to every chunk")

    # Extended fields for statistics
    chunk_count: int | None = Field(default=None, description="Number of chunks in the file")
