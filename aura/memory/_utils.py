"""Shared helpers for the memory subsystem."""

from __future__ import annotations

import math
from typing import Optional, Sequence


def cosine_similarity(
    vec_a: Optional[Sequence[float]],
    vec_b: Optional[Sequence[float]],
) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector is missing, empty, of a different length,
    or has zero magnitude.
    """
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0
    dot = math.fsum(a * b for a, b in zip(vec_a, vec_b))
    magnitude_a = math.sqrt(math.fsum(a * a for a in vec_a))
    magnitude_b = math.sqrt(math.fsum(b * b for b in vec_b))
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0
    similarity = dot / (magnitude_a * magnitude_b)
    if not math.isfinite(similarity):
        return 0.0
    # Rounding can push a self-comparison a hair past 1.0.
    return max(-1.0, min(1.0, similarity))
