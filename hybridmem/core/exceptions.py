"""Exception types raised by the memory index."""

import sqlite3


class TransientLockError(sqlite3.OperationalError):
    """Storage contention that outlived the bounded lock retries.

    The message always carries the original lock marker
    (e.g. "database is locked" or "SQLITE_BUSY").
    """

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class KnowledgeNotFoundError(FileNotFoundError):
    """A knowledge document's backing file does not exist."""

    def __init__(self, path: str, message: str | None = None):
        super().__init__(message or f"Knowledge file not found: {path}")
        self.path = path


class MemoryConfigError(ValueError):
    """Invalid memory index configuration or call arguments."""
