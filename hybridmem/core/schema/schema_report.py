"""Schema ensure result."""

from pydantic import BaseModel, Field


class SchemaReport(BaseModel):
    """Capability report returned by the schema manager."""

    fts_available: bool = Field(default=False, description="Whether the full-text table is usable")
    fts_error: str | None = Field(default=None, description="Why full-text creation or migration failed")
