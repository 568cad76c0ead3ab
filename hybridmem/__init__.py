"""hybridmem: persistent hybrid (vector + keyword) memory index for agents."""

from .core.embedding import BaseEmbeddingModel, OpenAIEmbeddingModel
from .core.enumeration import MemorySource
from .core.knowledge import KnowledgeCache, LazyEntryIndex
from .core.exceptions import KnowledgeNotFoundError, MemoryConfigError, TransientLockError
from .core.memory_manager import (
    MemoryIndexManager,
    MemorySearchConfig,
    get_memory_index_manager,
    load_memory_search_config,
)
from .core.schema import FileMetadata, MemoryChunk, MemorySearchResult
from .core.utils import init_logger

__version__ = "0.1.0"

__all__ = [
    "BaseEmbeddingModel",
    "FileMetadata",
    "KnowledgeCache",
    "KnowledgeNotFoundError",
    "LazyEntryIndex",
    "MemoryChunk",
    "MemoryConfigError",
    "MemoryIndexManager",
    "MemorySearchConfig",
    "MemorySearchResult",
    "MemorySource",
    "OpenAIEmbeddingModel",
    "TransientLockError",
    "get_memory_index_manager",
    "init_logger",
    "load_memory_search_config",
]
