"""memory_manager"""

from .config import MemorySearchConfig, load_memory_search_config
from .manager import MemoryIndexManager, get_memory_index_manager

__all__ = [
    "MemoryIndexManager",
    "MemorySearchConfig",
    "get_memory_index_manager",
    "load_memory_search_config",
]
