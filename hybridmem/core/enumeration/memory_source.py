"""Memory source types."""

from enum import Enum


class MemorySource(str, Enum):
    """Source of memory data.

    Chunk rows store the plain string value, so callers may also pass
    arbitrary source tags (e.g. "workspace") wherever a source is accepted.
    """

    MEMORY = "memory"

    SESSIONS = "sessions"
