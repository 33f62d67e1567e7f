"""
Cosine similarity between two embeddings.
For unit-normalized vectors this is the dot product; the matcher relies on that.
"""

import numpy as np


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine of the angle between a and b, computed in float64.
    Returns 0.0 when either vector has zero norm.
    """
    x = np.asarray(a, dtype=np.float64).reshape(-1)
    y = np.asarray(b, dtype=np.float64).reshape(-1)
    if x.shape != y.shape:
        raise ValueError(f"dimension mismatch: {x.shape[0]} != {y.shape[0]}")
    norm_x = np.linalg.norm(x)
    norm_y = np.linalg.norm(y)
    if norm_x == 0.0 or norm_y == 0.0:
        return 0.0
    return float(np.dot(x, y) / (norm_x * norm_y))
