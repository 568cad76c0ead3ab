"""Weighted merge of vector and keyword results."""

from ...exceptions import MemoryConfigError
from ...schema import MemorySearchResult


def merge_hybrid_results(
    vector: list[MemorySearchResult],
    keyword: list[MemorySearchResult],
    vector_weight: float = 0.5,
    text_weight: float = 0.5,
    limit: int | None = None,
) -> list[MemorySearchResult]:
    """Combine both result lists into one ranking keyed by chunk id.

    A chunk found by both searches scores
    `vector_weight * vector_score + text_weight * text_score`; a chunk found
    by one search only gets that search's weighted score. Inputs are not
    modified.
    """
    for name, weight in (("vector_weight", vector_weight), ("text_weight", text_weight)):
        if not 0.0 <= weight <= 1.0:
            raise MemoryConfigError(f"{name} must be within [0, 1], got {weight}")

    merged: dict[str, MemorySearchResult] = {}

    def _absorb(result: MemorySearchResult, is_vector: bool):
        entry = merged.get(result.id)
        if entry is None:
            entry = result.model_copy(update={"vector_score": None, "text_score": None})
            merged[result.id] = entry

        if is_vector:
            score = result.vector_score if result.vector_score is not None else result.score
            entry.vector_score = score if entry.vector_score is None else max(entry.vector_score, score)
        else:
            score = result.text_score if result.text_score is not None else result.score
            entry.text_score = score if entry.text_score is None else max(entry.text_score, score)

    for result in vector:
        _absorb(result, is_vector=True)
    for result in keyword:
        _absorb(result, is_vector=False)

    for entry in merged.values():
        entry.score = vector_weight * (entry.vector_score or 0.0) + text_weight * (entry.text_score or 0.0)

    ranked = sorted(merged.values(), key=lambda r: r.score, reverse=True)
    if limit is not None:
        ranked = ranked[: max(0, limit)]
    return ranked
