"""utils"""

from .common_utils import (
    batch_cosine_similarity,
    cosine_similarity,
    hash_text,
    parse_embedding,
    truncate_snippet,
    vector_to_blob,
)
from .frontmatter import parse_frontmatter
from .logger_utils import init_logger
from .retry_utils import is_retryable, with_retry

__all__ = [
    "batch_cosine_similarity",
    "cosine_similarity",
    "hash_text",
    "init_logger",
    "is_retryable",
    "parse_embedding",
    "parse_frontmatter",
    "truncate_snippet",
    "vector_to_blob",
    "with_retry",
]
