"""
Search package for media-catalog.

Full-text and filtered asset search with optional semantic matching.
"""

from .engine import SearchService, SearchFilters, SearchResult, SearchMode, build_match_query

__all__ = [
    "SearchService",
    "SearchFilters",
    "SearchResult",
    "SearchMode",
    "build_match_query",
]
