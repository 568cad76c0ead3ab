"""Shared fixtures: a deterministic embedding model and started memory managers."""

import hashlib
import re
import sqlite3

import pytest
import pytest_asyncio

from hybridmem.core.embedding import BaseEmbeddingModel
from hybridmem.core.memory_manager import MemoryIndexManager, MemorySearchConfig
from hybridmem.core.memory_manager.memory_storage import ensure_memory_index_schema

WORD_RE = re.compile(r"\w+", re.UNICODE)


def embed_text(text: str, dims: int) -> list[float]:
    """Bag-of-words vector: each word adds 1.0 to a bucket chosen by its md5."""
    vec = [0.0] * dims
    for word in WORD_RE.findall(text.lower()):
        bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % dims
        vec[bucket] += 1.0
    return vec


class FakeEmbeddingModel(BaseEmbeddingModel):
    """In-process embedding provider that can be switched into an outage."""

    provider_id = "fake"

    def __init__(self, dimensions: int = 32, **kwargs):
        super().__init__(model_name="fake-embed", dimensions=dimensions, max_retries=1, **kwargs)
        self.fail = False
        self.calls = 0
        self.embedded_texts: list[str] = []

    async def _get_embeddings(self, input_text: list[str], **kwargs) -> list[list[float]]:
        self.calls += 1
        if self.fail:
            raise ConnectionError("embedding provider unavailable")
        self.embedded_texts.extend(input_text)
        return [embed_text(text, self.dimensions) for text in input_text]


@pytest.fixture
def fake_embedding() -> FakeEmbeddingModel:
    return FakeEmbeddingModel()


@pytest.fixture
def make_embedding_model():
    """Factory for extra fake models with custom settings."""
    return FakeEmbeddingModel


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "memory").mkdir()
    return tmp_path


@pytest.fixture
def settings() -> MemorySearchConfig:
    return MemorySearchConfig(
        store_path="index/memory.db",
        chunk_tokens=64,
        chunk_overlap=8,
        db_retry_base_delay=0.0,
    )


@pytest_asyncio.fixture
async def manager(workspace, settings, fake_embedding):
    mgr = MemoryIndexManager("agent-1", str(workspace), settings, embedding_model=fake_embedding)
    await mgr.start()
    yield mgr
    await mgr.close()


@pytest.fixture
def conn():
    """In-memory database with the full schema."""
    connection = sqlite3.connect(":memory:", isolation_level=None)
    ensure_memory_index_schema(connection, "embedding_cache", "chunks_fts", fts_enabled=True)
    yield connection
    connection.close()


def load_sqlite_vec(connection: sqlite3.Connection) -> bool:
    """Load sqlite-vec into `connection`, False when this interpreter cannot."""
    try:
        import sqlite_vec

        connection.enable_load_extension(True)
        sqlite_vec.load(connection)
        connection.enable_load_extension(False)
    except (ImportError, AttributeError, sqlite3.Error):
        return False
    return True


@pytest.fixture
def vec_conn():
    """Like `conn`, with sqlite-vec loaded; skips when the extension is unavailable."""
    connection = sqlite3.connect(":memory:", isolation_level=None)
    if not load_sqlite_vec(connection):
        connection.close()
        pytest.skip("sqlite-vec extension cannot be loaded")
    ensure_memory_index_schema(connection, "embedding_cache", "chunks_fts", fts_enabled=True)
    yield connection
    connection.close()
