"""Local vector math for embeddings.

Used by the in-memory test store and by callers that compare embeddings
without a round trip to the vector store.
"""

from __future__ import annotations

import math
from typing import Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine similarity of two vectors.

    Raises
    ------
    ValueError
        If the vectors have different dimensions.

    A zero-magnitude vector yields ``0.0`` rather than a division error.
    """
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def normalize_embedding(vector: Sequence[float]) -> list[float]:
    """Scale *vector* to unit length.  Zero vectors are returned unchanged."""
    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude == 0.0:
        return list(vector)
    return [v / magnitude for v in vector]


def find_most_similar(
    query: Sequence[float],
    candidates: Sequence[Sequence[float]],
    top_k: int = 5,
) -> list[tuple[int, float]]:
    """Rank *candidates* by cosine similarity to *query*.

    Returns ``(index, similarity)`` pairs, best first, at most *top_k* long.
    Ties keep candidate order.
    """
    scored = [(idx, cosine_similarity(query, cand)) for idx, cand in enumerate(candidates)]
    scored.sort(key=lambda pair: (-pair[1], pair[0]))
    return scored[:top_k]
