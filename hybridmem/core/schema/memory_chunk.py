"""Memory chunk schema."""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChunkMetadata(BaseModel):
    """Typed projection of a chunk's JSON metadata column.

    `namespace` and `session_id` are the keys the index filters on; any other
    keys (e.g. frontmatter fields) are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    namespace: str | None = Field(default=None, description="Logical owner of the chunk (agent, workspace)")
    session_id: str | None = Field(default=None, description="Session transcript the chunk came from")

    @classmethod
    def from_raw(cls, raw: Any) -> "ChunkMetadata":
        """Build from a stored JSON string, a dict, or None. Never raises."""
        if raw is None or raw == "":
            return cls()
        if isinstance(raw, ChunkMetadata):
            return raw
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except (json.JSONDecodeError, TypeError, ValueError):
                return cls()
        if not isinstance(raw, dict):
            return cls()

        data = dict(raw)
        for key in ("namespace", "session_id"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                data[key] = str(value)
        try:
            return cls.model_validate(data)
        except ValueError:
            return cls()

    def to_json(self) -> str | None:
        """Serialize for the metadata column; empty metadata is stored as NULL."""
        data = self.model_dump(exclude_none=True)
        if not data:
            return None
        return json.dumps(data, ensure_ascii=False, default=str)


class MemoryChunk(BaseModel):
    """A chunk of memory content with metadata."""

    id: str = Field(..., description="Unique identifier for the chunk")
    path: str = Field(..., description="File path relative to workspace")
    source: str = Field(..., description="Logical origin tag of the memory data")
    start_line: int = Field(..., description="Starting line number in the source file")
    end_line: int = Field(..., description="Ending line number in the source file")
    text: str = Field(..., description="Text content of the chunk")
    hash: str = Field(..., description="Hash of the chunk content")
    model: str = Field(default="", description="Embedding model the vector was produced with")
    embedding: list[float] | None = Field(default=None, description="Vector embedding of the chunk")
    updated_at: int | None = Field(default=None, description="Last write time in epoch milliseconds")
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata, description="Typed chunk metadata")
