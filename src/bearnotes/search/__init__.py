"""
Query caching and ranking layer for the Bear notes MCP server.

This package contains the in-process search components:
- cache: LRU + TTL query cache
- analytics: query performance monitoring and recommendations
- ranking: relevance-ranked full-text scoring
- similarity: keyword-overlap similarity
"""

from .analytics import PerformanceMonitor, PerformanceReport, QuerySample
from .cache import CacheEntry, CacheStats, CacheStore, generate_query_key
from .ranking import RelevanceWeights, SingleDeletionVariants, TermVariantStrategy, rank_notes
from .similarity import extract_keywords, keyword_similarity, score_similar_notes

__all__ = [
    "CacheStore",
    "CacheEntry",
    "CacheStats",
    "generate_query_key",
    "PerformanceMonitor",
    "PerformanceReport",
    "QuerySample",
    "RelevanceWeights",
    "TermVariantStrategy",
    "SingleDeletionVariants",
    "rank_notes",
    "extract_keywords",
    "keyword_similarity",
    "score_similar_notes",
]
