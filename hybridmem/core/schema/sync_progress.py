"""Sync progress schema."""

from pydantic import BaseModel, Field


class MemorySyncProgressUpdate(BaseModel):
    """Progress update for memory sync operations."""

    completed: int = Field(default=..., description="Number of items completed")
    total: int = Field(default=..., description="Total number of items to process")
    label: str | None = Field(default=None, description="Optional label for the progress operation")
