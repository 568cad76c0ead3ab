"""enumeration"""

from .memory_source import MemorySource

__all__ = [
    "MemorySource",
]
