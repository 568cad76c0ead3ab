"""ingestion"""

from .chunking import chunk_markdown, make_chunk_id

__all__ = [
    "chunk_markdown",
    "make_chunk_id",
]
