"""
Embedding support for media-catalog.

Pluggable vector generation, similarity helpers and the shared on-disk
embedding cache.
"""

from .base import EmbeddingGenerator, DEFAULT_DIMENSIONS, is_valid_embedding, cosine_similarity, rank_by_similarity
from .shared import SharedEmbeddingStore

__all__ = [
    "EmbeddingGenerator",
    "DEFAULT_DIMENSIONS",
    "is_valid_embedding",
    "cosine_similarity",
    "rank_by_similarity",
    "SharedEmbeddingStore",
]
