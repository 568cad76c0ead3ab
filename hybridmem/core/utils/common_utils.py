"""Common utility functions"""

import hashlib
import json
import struct

import numpy as np


def hash_text(text: str) -> str:
    """Generate SHA-256 hash of text content.

    Args:
        text: Input text to hash

    Returns:
        Hexadecimal representation of the SHA-256 hash
    """
    return hashlib.sha256(text.encode("utf-8", errors="surrogatepass")).hexdigest()


def cosine_similarity(vec1: list[float], vec2: list[float]) -> float:
    """Calculate the cosine similarity between two numeric vectors."""
    if len(vec1) != len(vec2):
        raise ValueError(f"Vectors must have same length: {len(vec1)} != {len(vec2)}")

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    magnitude1 = sum(a * a for a in vec1) ** 0.5
    magnitude2 = sum(b * b for b in vec2) ** 0.5

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return dot_product / (magnitude1 * magnitude2)


def batch_cosine_similarity(nd_array1: np.ndarray, nd_array2: np.ndarray) -> np.ndarray:
    """Calculate cosine similarity matrix between two batches of vectors.

    Args:
        nd_array1: Matrix of shape (batch_size1, emb_size)
        nd_array2: Matrix of shape (batch_size2, emb_size)

    Returns:
        Similarity matrix of shape (batch_size1, batch_size2) where
        result[i, j] is the cosine similarity between nd_array1[i] and nd_array2[j]

    Raises:
        ValueError: If embedding dimensions don't match
    """
    if nd_array1.shape[1] != nd_array2.shape[1]:
        raise ValueError(f"Embedding dimensions must match: {nd_array1.shape[1]} != {nd_array2.shape[1]}")

    dot_products = np.dot(nd_array1, nd_array2.T)

    norms1 = np.linalg.norm(nd_array1, axis=1)
    norms2 = np.linalg.norm(nd_array2, axis=1)
    norm_products = np.outer(norms1, norms2)

    # Zero vectors score 0 instead of dividing by zero
    norm_products = np.where(norm_products == 0, 1e-10, norm_products)

    return dot_products / norm_products


def parse_embedding(raw: str | bytes | None) -> list[float]:
    """Decode an embedding stored as JSON text; malformed values become an empty vector."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError, ValueError):
        return []
    if not isinstance(value, list):
        return []
    try:
        return [float(v) for v in value]
    except (TypeError, ValueError):
        return []


def vector_to_blob(embedding: list[float]) -> bytes:
    """Convert vector to binary float32 blob for sqlite-vec."""
    return struct.pack(f"{len(embedding)}f", *embedding)


def truncate_snippet(text: str, max_chars: int) -> str:
    """Truncate text to at most `max_chars` characters without leaving half a surrogate pair."""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text

    truncated = text[:max_chars]
    # Strings decoded with surrogatepass can hold UTF-16 pairs as two code points
    if "\ud800" <= truncated[-1] <= "\udbff":
        truncated = truncated[:-1]
    return truncated
