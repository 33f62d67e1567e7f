"""
Embedding engine: run a token sequence through a pre-trained model to get one dense vector.
Models are loaded once at startup; per-call failures surface as InferenceError.
"""

import hashlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Protocol

import numpy as np

from textcolor.services.errors import InferenceError, StartupError
from textcolor.services.tokenizer import TokenSequence

logger = logging.getLogger(__name__)

# Inputs the ONNX engine knows how to feed; anything else in the graph is unsupported.
SUPPORTED_ONNX_INPUTS = ("input_ids", "attention_mask", "token_type_ids")
FINGERPRINT_CHARS = 16


class EmbeddingEngine(Protocol):
    """Protocol for embedding backends; swappable without changing the pipeline."""

    model_id: str
    dimension: int | None

    def embed(self, tokens: TokenSequence) -> np.ndarray:
        """Return a 1-D float32 vector of length `dimension`."""
        ...


def mean_pool(hidden: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """
    Average token vectors (seq, D) weighted by the attention mask (seq,).
    An all-zero mask gives the zero vector rather than dividing by zero.
    """
    hidden = np.asarray(hidden, dtype=np.float32)
    weights = np.asarray(mask, dtype=np.float32).reshape(-1, 1)
    count = float(weights.sum())
    if count == 0.0:
        return np.zeros(hidden.shape[-1], dtype=np.float32)
    return ((hidden * weights).sum(axis=0) / count).astype(np.float32)


def fingerprint_artifacts(*paths: str | Path) -> str:
    """Short SHA-256 over the bytes of every artifact, in order."""
    digest = hashlib.sha256()
    for path in paths:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1 << 20), b""):
                digest.update(chunk)
    return digest.hexdigest()[:FINGERPRINT_CHARS]


class OnnxEmbeddingEngine:
    """
    ONNX Runtime engine for transformer encoders exported to model.onnx.

    Output 0 is either token states (1, seq, D), mean-pooled here, or an
    already pooled (1, D) sentence vector.
    """

    def __init__(self, model_path: str | Path, extra_artifacts: tuple[str | Path, ...] = ()) -> None:
        model_path = Path(model_path)
        if not model_path.is_file():
            raise StartupError(f"Model artifact not found: {model_path}")
        try:
            import onnxruntime as ort

            self._session = ort.InferenceSession(
                str(model_path), providers=["CPUExecutionProvider"]
            )
        except Exception as e:
            logger.exception("Failed to load ONNX model %s: %s", model_path, e)
            raise StartupError(f"Cannot load model {model_path}: {e}") from e

        self._input_names = [i.name for i in self._session.get_inputs()]
        unsupported = [n for n in self._input_names if n not in SUPPORTED_ONNX_INPUTS]
        if unsupported:
            raise StartupError(f"Model {model_path} requires unsupported inputs: {unsupported}")

        shape = self._session.get_outputs()[0].shape
        last = shape[-1] if shape else None
        self.dimension: int | None = last if isinstance(last, int) else None
        self.model_id = fingerprint_artifacts(model_path, *extra_artifacts)
        logger.info("Loaded ONNX model: %s (model_id=%s)", model_path, self.model_id)

    def _feeds(self, tokens: TokenSequence) -> dict[str, np.ndarray]:
        available = {
            "input_ids": tokens.input_ids,
            "attention_mask": tokens.attention_mask,
            "token_type_ids": (
                tokens.token_type_ids
                if tokens.token_type_ids is not None
                else np.zeros_like(tokens.input_ids)
            ),
        }
        return {name: available[name][np.newaxis, :] for name in self._input_names}

    def embed(self, tokens: TokenSequence) -> np.ndarray:
        try:
            outputs = self._session.run(None, self._feeds(tokens))
        except Exception as e:
            raise InferenceError(f"inference failed: {e}") from e

        states = np.asarray(outputs[0], dtype=np.float32)
        if states.ndim == 3:
            if states.shape[0] != 1 or states.shape[1] != len(tokens):
                raise InferenceError(
                    f"model output shape {states.shape} does not match {len(tokens)} input tokens"
                )
            return mean_pool(states[0], tokens.attention_mask)
        if states.ndim == 2:
            if states.shape[0] != 1:
                raise InferenceError(f"model output shape {states.shape} is not a single vector")
            return states[0].copy()
        raise InferenceError(f"unexpected model output rank {states.ndim}")


class SentenceTransformerEngine:
    """sentence-transformers model; pooling is done by the model's own modules."""

    def __init__(self, model_name_or_path: str | Path) -> None:
        try:
            from sentence_transformers import SentenceTransformer

            self.model = SentenceTransformer(str(model_name_or_path), device="cpu")
        except Exception as e:
            logger.exception("Failed to load embedding model %s: %s", model_name_or_path, e)
            raise StartupError(f"Cannot load model {model_name_or_path}: {e}") from e
        self.dimension: int | None = self.model.get_sentence_embedding_dimension()
        self.model_id = f"sentence-transformers:{model_name_or_path}"
        logger.info("Loaded embedding model: %s", model_name_or_path)

    def embed(self, tokens: TokenSequence) -> np.ndarray:
        import torch

        features = {
            "input_ids": torch.from_numpy(tokens.input_ids[np.newaxis, :]),
            "attention_mask": torch.from_numpy(tokens.attention_mask[np.newaxis, :]),
        }
        if tokens.token_type_ids is not None:
            features["token_type_ids"] = torch.from_numpy(tokens.token_type_ids[np.newaxis, :])
        try:
            with torch.inference_mode():
                out = self.model(features)
            return out["sentence_embedding"][0].float().cpu().numpy()
        except Exception as e:
            raise InferenceError(f"inference failed: {e}") from e


class InferenceLane:
    """
    Execution lane around an engine's embed call.

    serialize=True keeps at most one inference in flight; timeout bounds only
    the inference step. With neither, embed calls the engine directly.
    """

    def __init__(
        self,
        engine: EmbeddingEngine,
        *,
        serialize: bool = False,
        timeout: float | None = None,
        workers: int = 4,
    ) -> None:
        self.engine = engine
        self._serialize = serialize
        self._timeout = timeout if timeout and timeout > 0 else None
        self._executor: ThreadPoolExecutor | None = None
        if serialize or self._timeout is not None:
            self._executor = ThreadPoolExecutor(
                max_workers=1 if serialize else workers,
                thread_name_prefix="inference",
            )
        self._closed = threading.Event()

    @property
    def serialized(self) -> bool:
        return self._serialize

    def embed(self, tokens: TokenSequence) -> np.ndarray:
        if self._executor is None:
            return self.engine.embed(tokens)
        if self._closed.is_set():
            raise InferenceError("inference lane is closed")
        future = self._executor.submit(self.engine.embed, tokens)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeout as e:
            # A running call cannot be interrupted; only queued work is cancelled.
            future.cancel()
            raise InferenceError(f"inference exceeded {self._timeout}s") from e

    def close(self) -> None:
        self._closed.set()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
