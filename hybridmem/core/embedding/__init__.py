"""embedding"""

from .base_embedding_model import BaseEmbeddingModel
from .openai_embedding_model import OpenAIEmbeddingModel

__all__ = [
    "BaseEmbeddingModel",
    "OpenAIEmbeddingModel",
]
