"""Memoized loading of JSON knowledge documents."""

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel, Field

from ..exceptions import KnowledgeNotFoundError


def _read_json(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise KnowledgeNotFoundError(str(path)) from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse knowledge file {path}: {e}") from e


class KnowledgeCache:
    """Loads one JSON document on first use and keeps it in memory.

    A missing file is remembered for `negative_ttl` seconds: within that
    window `get()` re-raises the same `KnowledgeNotFoundError` instance
    without touching the filesystem. `clear_cache()` forgets both the
    document and the miss.
    """

    def __init__(
        self,
        path: str | Path,
        negative_ttl: float = 30.0,
        validator: Callable[[Any], None] | None = None,
    ):
        self.path = Path(path)
        self.negative_ttl = negative_ttl
        self.validator = validator
        self._value: Any = None
        self._loaded = False
        self._load_time: float | None = None
        self._not_found: KnowledgeNotFoundError | None = None
        self._not_found_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def load_time(self) -> float | None:
        return self._load_time

    async def get(self, force_reload: bool = False) -> Any:
        """Return the parsed document, loading it if needed."""
        async with self._lock:
            if self._not_found is not None and not force_reload:
                if time.monotonic() < self._not_found_until:
                    raise self._not_found
                self._not_found = None

            if self._loaded and not force_reload:
                return self._value

            try:
                value = await asyncio.to_thread(_read_json, self.path)
            except KnowledgeNotFoundError as e:
                self._not_found = e
                self._not_found_until = time.monotonic() + self.negative_ttl
                logger.warning(f"Knowledge file missing, retry in {self.negative_ttl}s: {self.path}")
                raise

            if self.validator:
                self.validator(value)

            self._value = value
            self._loaded = True
            self._not_found = None
            self._load_time = time.time()
            logger.info(f"Loaded knowledge from {self.path}")
            return value

    def clear_cache(self) -> None:
        self._value = None
        self._loaded = False
        self._load_time = None
        self._not_found = None
        self._not_found_until = 0.0


class LazyEntry(BaseModel):
    """Where an entry lives and, once read, its value."""

    location: str = Field(..., description="File holding the entry")
    loaded: bool = Field(default=False)
    cached_value: Any = Field(default=None)


class LazyEntryIndex:
    """Map of keys to JSON files that are only read when first requested."""

    def __init__(self, base_dir: str | Path, locations: dict[str, str] | None = None):
        self.base_dir = Path(base_dir)
        self.entries: dict[str, LazyEntry] = {
            key: LazyEntry(location=location) for key, location in (locations or {}).items()
        }

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def keys(self) -> list[str]:
        return list(self.entries)

    def register(self, key: str, location: str) -> None:
        self.entries[key] = LazyEntry(location=location)

    def get(self, key: str) -> Any:
        """Load and memoize the entry for `key`. Unknown keys raise KeyError."""
        entry = self.entries[key]
        if not entry.loaded:
            entry.cached_value = _read_json(self.base_dir / entry.location)
            entry.loaded = True
        return entry.cached_value

    def loaded_count(self) -> int:
        return sum(1 for entry in self.entries.values() if entry.loaded)
