"""
Backend loader: pair a tokenizer adapter with the embedding engine that understands its tokens.
"""

import logging
from pathlib import Path

from textcolor.services.embedding import (
    EmbeddingEngine,
    OnnxEmbeddingEngine,
    SentenceTransformerEngine,
)
from textcolor.services.errors import StartupError
from textcolor.services.tokenizer import (
    HFTokenizerAdapter,
    SentenceTransformerTokenizer,
    TokenizerAdapter,
)

logger = logging.getLogger(__name__)

BACKEND_ONNX = "onnx"
BACKEND_SENTENCE_TRANSFORMERS = "sentence-transformers"
BACKENDS = (BACKEND_ONNX, BACKEND_SENTENCE_TRANSFORMERS)


def load_backend(
    backend: str,
    model_path: str | Path,
    tokenizer_path: str | Path | None = None,
    *,
    max_length: int | None = None,
) -> tuple[TokenizerAdapter, EmbeddingEngine]:
    """
    Load tokenizer and engine once. Raises StartupError on any failure.

    onnx: model.onnx + tokenizer.json; model_id fingerprints both files.
    sentence-transformers: model name or directory; tokenizer comes with the model.
    """
    logger.info("Using embedding backend: %s", backend)
    if backend == BACKEND_ONNX:
        if tokenizer_path is None:
            raise StartupError("onnx backend requires a tokenizer artifact path")
        tokenizer = HFTokenizerAdapter.from_file(tokenizer_path, max_length=max_length)
        engine = OnnxEmbeddingEngine(model_path, extra_artifacts=(tokenizer_path,))
        return tokenizer, engine
    if backend == BACKEND_SENTENCE_TRANSFORMERS:
        st_engine = SentenceTransformerEngine(model_path)
        if max_length:
            st_engine.model.max_seq_length = max_length
        return SentenceTransformerTokenizer(st_engine.model), st_engine
    raise StartupError(f"Unknown embedding backend {backend!r}; expected one of {BACKENDS}")
