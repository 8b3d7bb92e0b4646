"""
Vector similarity for collaborative filtering.
Stateless; zero similarity means "no information", never an error.
"""
import math
from typing import Iterable, List, NamedTuple, Sequence, Tuple

import numpy as np


class Neighbor(NamedTuple):
    id: str
    similarity: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Dot product over the product of magnitudes.

    Returns 0.0 for empty, mismatched-length, all-zero or non-finite input.
    """
    if len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    dot = float(np.dot(va, vb))
    norm_a = float(np.dot(va, va))
    norm_b = float(np.dot(vb, vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = dot / math.sqrt(norm_a * norm_b)
    if not math.isfinite(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))


def find_nearest_neighbors(
    target: Sequence[float],
    candidates: Iterable[Tuple[str, Sequence[float]]],
    k: int,
    threshold: float,
) -> List[Neighbor]:
    """
    Candidates at or above ``threshold``, most similar first, at most ``k``.
    Ties are broken by ascending id so results are deterministic.
    """
    if k <= 0:
        return []

    neighbors = []
    for candidate_id, vector in candidates:
        similarity = cosine_similarity(target, vector)
        if similarity >= threshold:
            neighbors.append(Neighbor(candidate_id, similarity))

    neighbors.sort(key=lambda n: (-n.similarity, n.id))
    return neighbors[:k]
