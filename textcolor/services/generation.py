"""
Offline generation of the reference store from a fixed (label, color) word list.
Reuses the serving pipeline's tokenize/embed/normalize so both sides share one vector space.
"""

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from textcolor.services.embedding import EmbeddingEngine
from textcolor.services.errors import CoreError
from textcolor.services.pipeline import embed_text
from textcolor.services.reference_store import (
    ReferenceEntry,
    ReferenceStore,
    save_reference_store,
)
from textcolor.services.tokenizer import TokenizerAdapter

logger = logging.getLogger(__name__)


def generate_reference_store(
    word_colors: Iterable[tuple[str, Sequence[int]]],
    tokenizer: TokenizerAdapter,
    engine: EmbeddingEngine,
    *,
    model_id: str | None = None,
) -> ReferenceStore:
    """
    Embed every label in order and return the resulting store.
    Deterministic for the same artifacts and word list. A label that cannot be
    embedded aborts generation with its CoreError; the store is never partial.
    """
    entries: list[ReferenceEntry] = []
    for label, color in word_colors:
        try:
            embedding = embed_text(label, tokenizer, engine)
        except CoreError as e:
            logger.error("Cannot embed reference label %r: %s", label, e)
            raise
        entries.append(ReferenceEntry(label, tuple(color), embedding))
        logger.debug("Embedded reference word: %s", label)
    store = ReferenceStore(entries, model_id=model_id or getattr(engine, "model_id", None))
    logger.info("Generated %d reference embeddings (dim=%s)", len(store), store.dimension)
    return store


def write_reference_store(
    word_colors: Iterable[tuple[str, Sequence[int]]],
    tokenizer: TokenizerAdapter,
    engine: EmbeddingEngine,
    path: str | Path,
) -> ReferenceStore:
    """Generate and persist in one step; returns the store that was written."""
    store = generate_reference_store(word_colors, tokenizer, engine)
    save_reference_store(store, path)
    return store
