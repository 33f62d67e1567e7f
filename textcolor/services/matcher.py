"""
Matcher: find the reference entry most similar to a query embedding.
Cosine similarity of unit vectors is their dot product, so a linear scan is one matrix-vector product.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from textcolor.services.errors import NoMatchError
from textcolor.services.reference_store import Color, ReferenceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Best reference entry for a query."""

    label: str
    color: Color
    similarity: float
    index: int


class NearestNeighborIndex(Protocol):
    """Search structure over a store's unit-normalized matrix."""

    def best(self, query: np.ndarray) -> tuple[int, float]:
        """Return (position, similarity) of the best entry; first position wins ties."""
        ...


class LinearScanIndex:
    """
    Exact O(N*D) scan. Fine for reference sets up to LINEAR_SCAN_MAX_ENTRIES.
    Rows and query are unit vectors, so each score equals cosine_similarity(row, query).
    """

    def __init__(self, matrix: np.ndarray) -> None:
        self._matrix = matrix

    def best(self, query: np.ndarray) -> tuple[int, float]:
        if self._matrix.shape[0] == 0:
            raise NoMatchError("reference store is empty")
        scores = self._matrix @ np.asarray(query, dtype=np.float32)
        # argmax returns the first occurrence of the maximum.
        position = int(np.argmax(scores))
        return position, float(scores[position])


def match(
    query: np.ndarray,
    store: ReferenceStore,
    index: NearestNeighborIndex | None = None,
) -> MatchResult:
    """
    Return the entry with maximum cosine similarity to query (both unit-normalized).
    Ties resolve to the first entry in store order. NoMatchError if the store is empty.
    """
    if len(store) == 0:
        raise NoMatchError("reference store is empty")
    if index is None:
        index = LinearScanIndex(store.matrix)
    position, score = index.best(query)
    entry = store[position]
    logger.debug("matched %r (similarity=%.4f)", entry.label, score)
    return MatchResult(label=entry.label, color=entry.color, similarity=score, index=position)
