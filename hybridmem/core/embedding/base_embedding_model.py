"""Base embedding model interface.

Defines the abstract base class and standard API for all embedding providers
the memory index can query.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod

from loguru import logger

from ..schema import MemoryChunk
from ..utils.common_utils import hash_text


class BaseEmbeddingModel(ABC):
    """Abstract base class for embedding model implementations.

    Provides a standard interface for text-to-vector generation with
    built-in batching, retry logic, and error handling. Subclasses only
    implement `_get_embeddings`.
    """

    provider_id: str = "base"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model_name: str = "",
        dimensions: int | None = 1024,
        max_batch_size: int = 10,
        max_retries: int = 3,
        raise_exception: bool = True,
        max_input_length: int = 8192,
        **kwargs,
    ):
        """Initialize model configuration and parameters.

        Args:
            api_key: API key for the embedding service
            base_url: Base URL for the embedding service
            model_name: Name of the embedding model
            dimensions: Vector dimensions of the embeddings
            max_batch_size: Maximum batch size for embedding requests
            max_retries: Maximum number of attempts per request
            raise_exception: Whether to raise exceptions on failure
            max_input_length: Maximum input text length
            **kwargs: Additional model-specific parameters
        """
        self._api_key: str | None = api_key
        self._base_url: str | None = base_url
        self.model_name = model_name
        self.dimensions = dimensions
        self.max_batch_size = max(1, max_batch_size)
        self.max_retries = max(1, max_retries)
        self.raise_exception = raise_exception
        self.max_input_length = max_input_length
        self.kwargs = kwargs

    @property
    def api_key(self) -> str | None:
        """Get API key, preferring the environment variable."""
        return os.getenv("HYBRIDMEM_EMBEDDING_API_KEY") or self._api_key

    @property
    def base_url(self) -> str | None:
        """Get base URL, preferring the environment variable."""
        return os.getenv("HYBRIDMEM_EMBEDDING_BASE_URL") or self._base_url

    @property
    def provider_key(self) -> str:
        """Stable hash of everything that changes the vectors this provider returns."""
        return hash_text(
            json.dumps(
                {
                    "provider": self.provider_id,
                    "base_url": self.base_url or "",
                    "model": self.model_name,
                    "dimensions": self.dimensions,
                },
                sort_keys=True,
            ),
        )

    def _truncate_text(self, text: str) -> str:
        """Truncate text to max_input_length if it exceeds the limit."""
        if len(text) > self.max_input_length:
            logger.warning(f"Text length {len(text)} exceeds {self.max_input_length}, truncating")
            return text[: self.max_input_length]
        return text

    @abstractmethod
    async def _get_embeddings(self, input_text: list[str], **kwargs) -> list[list[float]]:
        """Call the embedding API for one batch of inputs."""

    async def embed_query(self, input_text: str, **kwargs) -> list[float]:
        """Embed a single query string, retrying with backoff."""
        truncated_text = self._truncate_text(input_text)

        for i in range(self.max_retries):
            try:
                result = await self._get_embeddings([truncated_text], **kwargs)
                return result[0] if result else []
            except Exception as e:
                logger.error(f"Model {self.model_name} failed: {e}")
                if i == self.max_retries - 1:
                    if self.raise_exception:
                        raise
                    return []
                await asyncio.sleep(i + 1)
        return []

    async def embed_batch(self, input_text: list[str], **kwargs) -> list[list[float]]:
        """Embed many strings in `max_batch_size` batches, keeping input order.

        Inputs whose batch failed (with `raise_exception=False`) map to an
        empty vector so the result always lines up with the input.
        """
        truncated_texts = [self._truncate_text(text) for text in input_text]
        results: list[list[float]] = [[] for _ in truncated_texts]

        for start in range(0, len(truncated_texts), self.max_batch_size):
            batch_texts = truncated_texts[start : start + self.max_batch_size]

            for retry in range(self.max_retries):
                try:
                    batch_embeddings = await self._get_embeddings(batch_texts, **kwargs)
                    if len(batch_embeddings) != len(batch_texts):
                        logger.warning(
                            f"Mismatch: got {len(batch_embeddings)} vectors for {len(batch_texts)} texts",
                        )
                    for offset, embedding in enumerate(batch_embeddings[: len(batch_texts)]):
                        results[start + offset] = list(embedding or [])
                    break
                except Exception as e:
                    logger.error(f"Model {self.model_name} batch failed: {e}")
                    if retry == self.max_retries - 1:
                        if self.raise_exception:
                            raise
                    else:
                        await asyncio.sleep(retry + 1)

        return results

    async def embed_chunks(self, chunks: list[MemoryChunk], **kwargs) -> list[MemoryChunk]:
        """Populate the embedding field of each chunk in place."""
        embeddings = await self.embed_batch([chunk.text for chunk in chunks], **kwargs)
        for chunk, vec in zip(chunks, embeddings):
            chunk.embedding = vec
        return chunks

    async def close(self):
        """Release network resources."""
