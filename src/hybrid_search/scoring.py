"""Score helpers shared by the in-process search store and the query builder."""

import numpy as np


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Return 1 - cosine distance, clamped to [0, 1].

    Zero vectors and dimension mismatches score 0.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return clamp_unit(float(np.dot(va, vb) / norm))


def clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


def fuse_scores(
    text_rank: float | None,
    similarity: float | None,
    text_weight: float,
    vector_weight: float,
) -> float:
    """Weighted sum of the available components.

    A missing component contributes nothing, so a text-only match scores
    ``text_weight * text_rank`` and a vector-only match ``vector_weight * similarity``.
    """
    score = 0.0
    if text_rank is not None:
        score += text_weight * text_rank
    if similarity is not None:
        score += vector_weight * similarity
    return score
