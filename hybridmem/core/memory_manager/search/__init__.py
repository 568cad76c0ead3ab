"""search"""

from .fts_query import bm25_rank_to_score, build_fts_query
from .hybrid import merge_hybrid_results
from .keyword_search import search_keyword
from .negative_cache import NegativeResultCache
from .query_embedding_cache import QueryEmbeddingCache
from .vector_search import search_vector

__all__ = [
    "NegativeResultCache",
    "QueryEmbeddingCache",
    "bm25_rank_to_score",
    "build_fts_query",
    "merge_hybrid_results",
    "search_keyword",
    "search_vector",
]
