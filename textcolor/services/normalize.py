"""
Vector normalizer: rescale an embedding to unit length for cosine comparison.
Zero-norm and non-finite vectors are rejected with DegenerateVectorError.
"""

from collections.abc import Sequence

import numpy as np

from textcolor.services.errors import DegenerateVectorError

# Unit-norm tolerance used by loaders and tests.
UNIT_NORM_TOLERANCE = 1e-5


def normalize(v: np.ndarray | Sequence[float]) -> np.ndarray:
    """
    Return v scaled by 1/||v||_2 as a float32 vector.
    Raises DegenerateVectorError when the norm is zero or any component is not finite.
    """
    arr = np.asarray(v, dtype=np.float32).reshape(-1)
    if arr.size == 0 or not np.all(np.isfinite(arr)):
        raise DegenerateVectorError("embedding is empty or contains non-finite values")
    # Accumulate in float64 so tiny components do not underflow.
    norm = float(np.linalg.norm(arr.astype(np.float64)))
    if norm == 0.0:
        raise DegenerateVectorError("embedding has zero norm")
    return (arr.astype(np.float64) / norm).astype(np.float32)


def is_unit(v: np.ndarray, tolerance: float = UNIT_NORM_TOLERANCE) -> bool:
    """True when v has Euclidean norm within tolerance of 1."""
    return abs(float(np.linalg.norm(np.asarray(v, dtype=np.float64))) - 1.0) <= tolerance
