"""
Similarity metrics for vector comparisons.

Graph builders and searchers receive the similarity as a plain function
similarity(a, b) -> float (higher means more similar). This module provides the
cosine similarity used by default by the LSH builder, which hashes vectors with
random hyperplanes and therefore groups items by angle.

Vectors may be dense (numpy arrays or sequences of numbers) or sparse
(dict mapping dimension index to value, e.g. shingle counts).
"""

from typing import Dict, Union

import numpy as np
import numpy.typing as npt

Vector = npt.NDArray[np.float64]
SparseVector = Dict[int, float]


def cosine_similarity(
    v1: Union[Vector, SparseVector], v2: Union[Vector, SparseVector]
) -> float:
    """
    Compute cosine similarity between two vectors.

    Cosine similarity measures the cosine of the angle between two vectors.
    It ranges from -1 (opposite directions) to 1 (same direction).

    Args:
        v1: First vector (dense array/sequence or sparse dict)
        v2: Second vector (same representation as v1)

    Returns:
        Similarity score between -1 and 1 (higher means more similar)

    Example:
        >>> cosine_similarity(np.array([1.0, 0.0]), np.array([1.0, 0.0]))
        1.0
        >>> cosine_similarity({0: 1, 5: 2}, {5: 2})
        0.894...
    """
    if isinstance(v1, dict) and isinstance(v2, dict):
        return _sparse_cosine_similarity(v1, v2)

    v1 = np.asarray(v1, dtype=np.float64)
    v2 = np.asarray(v2, dtype=np.float64)

    dot_product = np.dot(v1, v2)
    norm_v1 = np.linalg.norm(v1)
    norm_v2 = np.linalg.norm(v2)

    # Zero vectors have no direction
    if norm_v1 == 0.0 or norm_v2 == 0.0:
        return 0.0

    return float(dot_product / (norm_v1 * norm_v2))


def _sparse_cosine_similarity(v1: SparseVector, v2: SparseVector) -> float:
    if len(v1) > len(v2):
        v1, v2 = v2, v1

    dot_product = sum(value * v2[index] for index, value in v1.items() if index in v2)
    norm_v1 = np.sqrt(sum(value * value for value in v1.values()))
    norm_v2 = np.sqrt(sum(value * value for value in v2.values()))

    if norm_v1 == 0.0 or norm_v2 == 0.0:
        return 0.0

    return float(dot_product / (norm_v1 * norm_v2))
