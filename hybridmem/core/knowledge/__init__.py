"""knowledge"""

from .knowledge_cache import KnowledgeCache, LazyEntry, LazyEntryIndex

__all__ = [
    "KnowledgeCache",
    "LazyEntry",
    "LazyEntryIndex",
]
