"""
Distance metrics for fingerprints and embedding vectors.
"""

from typing import Optional, Sequence

import numpy as np

from copyguard.errors import LengthMismatch


def hamming_distance(hash1: str, hash2: str) -> int:
    """Count the positions at which two equal-length fingerprints differ."""
    if len(hash1) != len(hash2):
        raise LengthMismatch(f"Fingerprint lengths differ: {len(hash1)} != {len(hash2)}")
    return sum(c1 != c2 for c1, c2 in zip(hash1, hash2))


def cosine_similarity(vec_a: Optional[Sequence[float]], vec_b: Optional[Sequence[float]]) -> float:
    """
    Cosine similarity in [-1, 1].

    Degenerate input (missing or empty vectors, differing lengths, a zero
    norm) yields 0.0 instead of an error, so one bad embedding never fails
    a whole assessment.
    """
    if vec_a is None or vec_b is None:
        return 0.0

    a = np.asarray(vec_a, dtype=np.float64).ravel()
    b = np.asarray(vec_b, dtype=np.float64).ravel()
    if a.size == 0 or a.shape != b.shape:
        return 0.0

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    if not np.isfinite(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))
