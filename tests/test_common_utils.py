"""Tests for common utility functions."""

import math

import numpy as np
import pytest

from hybridmem.core.utils import (
    batch_cosine_similarity,
    cosine_similarity,
    hash_text,
    parse_embedding,
    truncate_snippet,
    vector_to_blob,
)


def test_hash_text_is_stable():
    """Hashes are hex SHA-256 and tolerate lone surrogates."""
    assert hash_text("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert len(hash_text("\ud83d")) == 64


def test_cosine_similarity():
    """Cosine similarity of parallel, orthogonal and zero vectors."""
    assert cosine_similarity([1.0, 2.0], [2.0, 4.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 2.0])


def test_batch_cosine_similarity_matches_scalar():
    """The numpy batch version agrees with the scalar one."""
    rows = [[1.0, 2.0, 3.0], [0.0, 1.0, 0.0], [-1.0, -2.0, -3.0]]
    query = [1.0, 1.0, 1.0]

    scores = batch_cosine_similarity(np.array([query]), np.array(rows))[0]

    for row, score in zip(rows, scores):
        assert score == pytest.approx(cosine_similarity(query, row))


def test_parse_embedding():
    """JSON vectors parse; anything malformed becomes an empty vector."""
    assert parse_embedding("[1, 2.5]") == [1.0, 2.5]
    assert parse_embedding(None) == []
    assert parse_embedding("") == []
    assert parse_embedding("not json") == []
    assert parse_embedding('{"a": 1}') == []
    assert parse_embedding('["x"]') == []
    assert math.isnan(parse_embedding("[NaN]")[0])


def test_vector_to_blob():
    """Vectors pack as float32 blobs, 4 bytes per value."""
    assert len(vector_to_blob([0.1, 0.2, 0.3])) == 12


def test_truncate_snippet():
    """Snippets are cut by characters and never end in half a surrogate pair."""
    assert truncate_snippet("hello", 10) == "hello"
    assert truncate_snippet("hello", 3) == "hel"
    assert truncate_snippet("hello", 0) == ""
    assert truncate_snippet("ab😀cd", 3) == "ab😀"

    # A surrogate pair kept as two code points, cut between them
    paired = "ab\ud83d\ude00cd"
    assert truncate_snippet(paired, 3) == "ab"
    assert truncate_snippet(paired, 4) == "ab\ud83d\ude00"
