"""OpenAI-compatible embedding model implementation."""

from typing import Literal

from openai import AsyncOpenAI

from .base_embedding_model import BaseEmbeddingModel


class OpenAIEmbeddingModel(BaseEmbeddingModel):
    """Asynchronous embedding model backed by any OpenAI-compatible endpoint."""

    provider_id = "openai"

    def __init__(self, encoding_format: Literal["float", "base64"] = "float", **kwargs):
        super().__init__(**kwargs)
        self.encoding_format = encoding_format
        self._client: AsyncOpenAI | None = None

    def _create_client(self) -> AsyncOpenAI:
        """Create and return an internal asynchronous OpenAI client instance."""
        return AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)

    @property
    def client(self) -> AsyncOpenAI:
        """Lazily created client, so constructing the model never needs credentials."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    async def _get_embeddings(self, input_text: list[str], **kwargs) -> list[list[float]]:
        """Fetch embeddings from the API for a batch of strings."""
        request = {
            "model": self.model_name,
            "input": input_text,
            "encoding_format": self.encoding_format,
            **self.kwargs,
            **kwargs,
        }
        if self.dimensions:
            request["dimensions"] = self.dimensions

        completion = await self.client.embeddings.create(**request)

        result_emb: list[list[float]] = [[] for _ in range(len(input_text))]
        for emb in completion.data:
            result_emb[emb.index] = emb.embedding
        return result_emb

    async def close(self):
        """Close the OpenAI client and release network resources."""
        if self._client is not None:
            await self._client.close()
            self._client = None
