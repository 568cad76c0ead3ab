"""schema"""

from .embedding_cache_entry import EmbeddingCacheEntry
from .file_metadata import FileMetadata
from .memory_chunk import ChunkMetadata, MemoryChunk
from .memory_index_meta import MemoryIndexMeta
from .memory_index_status import CacheStats, CacheStatus, FtsStatus, MemoryIndexStatus, VectorStatus
from .memory_search_result import MemorySearchResult
from .schema_report import SchemaReport
from .sync_progress import MemorySyncProgressUpdate

__all__ = [
    "CacheStats",
    "CacheStatus",
    "ChunkMetadata",
    "EmbeddingCacheEntry",
    "FileMetadata",
    "FtsStatus",
    "MemoryChunk",
    "MemoryIndexMeta",
    "MemoryIndexStatus",
    "MemorySearchResult",
    "MemorySyncProgressUpdate",
    "SchemaReport",
    "VectorStatus",
]
