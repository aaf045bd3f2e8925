"""
Vector math for embedding comparison.

All persisted embeddings are unit length, so cosine similarity of two stored
vectors is just their dot product. The helpers still handle unnormalized and
zero vectors so that callers never need to special-case them:

- normalize(0) is 0 (no error)
- cosine_similarity(0, x) is 0.0, the neutral "no signal" value

Dimension is only checked for mismatch here. The exact embedding dimension and
unit norm are enforced where vectors enter the system (the embedding service
and the bucket cache).
"""

from typing import Optional, Sequence, Union

import numpy as np

from errors import DimensionMismatch


VectorLike = Union[Sequence[float], np.ndarray]


def as_vector(v: VectorLike) -> np.ndarray:
    """Coerce a list or array into a 1-D float64 array."""
    return np.asarray(v, dtype=np.float64).reshape(-1)


def normalize(v: VectorLike) -> list[float]:
    """
    Scale a vector to unit L2 norm.

    A zero vector is returned unchanged rather than raising.
    """
    arr = as_vector(v)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr.tolist()
    return (arr / norm).tolist()


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    Compute cosine similarity between two equal-length vectors.

    Returns a value in [-1, 1]. If either vector has zero norm the result is
    0.0. Raises DimensionMismatch when the lengths differ.
    """
    v1 = as_vector(a)
    v2 = as_vector(b)
    if v1.shape[0] != v2.shape[0]:
        raise DimensionMismatch(v1.shape[0], v2.shape[0])

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    similarity = float(np.dot(v1, v2) / (norm1 * norm2))
    # Float error can push identical vectors a hair past 1.0
    return max(-1.0, min(1.0, similarity))


def has_dimension(v: Optional[VectorLike], expected: int) -> bool:
    """True if v is present and has exactly `expected` components."""
    if v is None:
        return False
    try:
        return len(v) == expected
    except TypeError:
        return False


def is_unit(v: Optional[VectorLike], tolerance: float = 1e-6) -> bool:
    """True if v is present and its L2 norm is within `tolerance` of 1."""
    if v is None:
        return False
    try:
        norm = np.linalg.norm(as_vector(v))
    except (TypeError, ValueError):
        return False
    return bool(abs(norm - 1.0) <= tolerance)
