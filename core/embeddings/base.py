"""
Embedding interface for media-catalog.

Embedding generation is an external collaborator: anything that turns text
(or an image path) into a fixed-size vector can be plugged in. Vectors are
compared with numpy.
"""

import logging
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)


DEFAULT_DIMENSIONS = 512


@runtime_checkable
class EmbeddingGenerator(Protocol):
    """Protocol for embedding providers"""

    @property
    def dimensions(self) -> int:
        """Dimensionality of the produced vectors"""
        ...

    async def generate_embedding(self, text: str) -> Optional[List[float]]:
        """
        Embed ``text``, which may be an absolute image path.

        Returns:
            The vector, or None when the input cannot be embedded
        """
        ...


def is_valid_embedding(vector: Optional[Sequence[float]], dimensions: int = DEFAULT_DIMENSIONS) -> bool:
    """True for a numeric vector of the expected size"""
    if vector is None:
        return False
    try:
        return len(vector) == dimensions and all(isinstance(v, (int, float)) for v in vector)
    except TypeError:
        return False


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    vec_a = np.asarray(a, dtype=np.float32)
    vec_b = np.asarray(b, dtype=np.float32)
    if vec_a.shape != vec_b.shape:
        return 0.0
    norm = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / norm)


def rank_by_similarity(
    query: Sequence[float],
    candidates: Sequence[Sequence[float]],
) -> List[float]:
    """
    Cosine similarity of ``query`` against each candidate, in candidate order.

    Candidates of a different size score 0.
    """
    if not candidates:
        return []

    query_vec = np.asarray(query, dtype=np.float32)
    query_norm = float(np.linalg.norm(query_vec))
    if query_norm == 0.0:
        return [0.0] * len(candidates)

    scores = []
    for candidate in candidates:
        vec = np.asarray(candidate, dtype=np.float32)
        if vec.shape != query_vec.shape:
            scores.append(0.0)
            continue
        norm = float(np.linalg.norm(vec))
        scores.append(float(np.dot(query_vec, vec) / (query_norm * norm)) if norm else 0.0)
    return scores
