"""FTS5 query construction and BM25 score normalization."""

import math
import re

TOKEN_RE = re.compile(r"\w+", re.UNICODE)

# Rank used when SQLite hands back NaN or infinity
WORST_RANK = 999.0


def build_fts_query(raw: str) -> str | None:
    """Turn free text into an FTS5 query that requires every word.

    Each token is quoted so FTS5 operators in user input are treated as
    plain words. Returns None when no word characters remain.
    """
    tokens = [t.strip() for t in TOKEN_RE.findall(raw or "") if t.strip()]
    if not tokens:
        return None
    quoted = ['"' + t.replace('"', "") + '"' for t in tokens]
    return " AND ".join(quoted)


def bm25_rank_to_score(rank: float) -> float:
    """Map a BM25 rank (negative, lower is better) onto (0, 1]."""
    normalized = rank if math.isfinite(rank) else WORST_RANK
    return 1.0 / (1.0 + abs(normalized))
