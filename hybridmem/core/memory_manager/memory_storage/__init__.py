"""memory_storage"""

from .embedding_cache import EmbeddingCache
from .filters import SqlFilter, build_source_filter
from .memory_schema import ensure_column, ensure_memory_index_schema, ensure_vector_table
from .sqlite_memory_store import SqliteMemoryStore, list_chunks

__all__ = [
    "EmbeddingCache",
    "SqlFilter",
    "SqliteMemoryStore",
    "build_source_filter",
    "ensure_column",
    "ensure_memory_index_schema",
    "ensure_vector_table",
    "list_chunks",
]
