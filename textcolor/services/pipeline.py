"""
Colorize flow: tokenize, embed, normalize, match against the reference store.
Per-request errors are caught here and returned as a failure result; startup errors propagate.
"""

import logging
from dataclasses import dataclass

import numpy as np

from textcolor.config import settings
from textcolor.services.backends import load_backend
from textcolor.services.embedding import EmbeddingEngine, InferenceLane
from textcolor.services.errors import CoreError, InternalError, StartupError
from textcolor.services.matcher import LinearScanIndex, MatchResult, NearestNeighborIndex, match
from textcolor.services.normalize import normalize
from textcolor.services.reference_store import Color, ReferenceStore, load_reference_store
from textcolor.services.tokenizer import PROBE_TEXT, TokenizerAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColorContext:
    """Startup state shared read-only by every request."""

    tokenizer: TokenizerAdapter
    lane: InferenceLane
    store: ReferenceStore
    index: NearestNeighborIndex

    @property
    def dimension(self) -> int | None:
        return self.store.dimension

    def close(self) -> None:
        self.lane.close()


@dataclass(frozen=True)
class ColorizeResult:
    """Either a color (with the match it came from) or the error that prevented one."""

    color: Color | None = None
    match: MatchResult | None = None
    error: CoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, result: MatchResult) -> "ColorizeResult":
        return cls(color=result.color, match=result)

    @classmethod
    def failure(cls, error: CoreError) -> "ColorizeResult":
        return cls(error=error)


def embed_text(
    text: str,
    tokenizer: TokenizerAdapter,
    engine: EmbeddingEngine | InferenceLane,
) -> np.ndarray:
    """normalize(embed(tokenize(text))); shared by serving and generation."""
    return normalize(engine.embed(tokenizer.tokenize(text)))


def _engine_dimension(tokenizer: TokenizerAdapter, engine: EmbeddingEngine) -> int:
    """Static dimension when the engine knows it; otherwise embed a probe text once."""
    if engine.dimension:
        return int(engine.dimension)
    try:
        probe = engine.embed(tokenizer.tokenize(PROBE_TEXT))
    except CoreError as e:
        raise StartupError(f"Embedding engine failed on probe text: {e}") from e
    return int(np.asarray(probe).reshape(-1).shape[0])


def make_context(
    tokenizer: TokenizerAdapter,
    engine: EmbeddingEngine,
    store: ReferenceStore,
    *,
    serialize: bool = False,
    timeout: float | None = None,
    index: NearestNeighborIndex | None = None,
    dimension: int | None = None,
) -> ColorContext:
    """
    Assemble a context from already loaded parts, enforcing the serving invariants:
    non-empty store, matching dimensions, and matching model ids when both are known.
    Pass the engine dimension if already known; otherwise it is read or probed here.
    """
    if len(store) == 0:
        raise StartupError("Reference store is empty; nothing to match against")
    if dimension is None:
        dimension = _engine_dimension(tokenizer, engine)
    if store.dimension != dimension:
        raise StartupError(
            f"Reference dimension {store.dimension} does not match engine dimension {dimension}"
        )
    model_id = getattr(engine, "model_id", None)
    if store.model_id and model_id and store.model_id != model_id:
        raise StartupError(
            f"Reference store built with model {store.model_id!r}, engine is {model_id!r}"
        )
    if index is None:
        if len(store) > settings.LINEAR_SCAN_MAX_ENTRIES:
            logger.warning(
                "Reference store has %d entries (> %d); consider a nearest-neighbor index",
                len(store),
                settings.LINEAR_SCAN_MAX_ENTRIES,
            )
        index = LinearScanIndex(store.matrix)
    lane = InferenceLane(engine, serialize=serialize, timeout=timeout)
    return ColorContext(tokenizer=tokenizer, lane=lane, store=store, index=index)


def build_context(
    *,
    backend: str | None = None,
    model_path: str | None = None,
    tokenizer_path: str | None = None,
    reference_path: str | None = None,
    serialize: bool | None = None,
    timeout: float | None = None,
) -> ColorContext:
    """Load model, tokenizer, and reference store once. Raises StartupError on any failure."""
    backend = backend or settings.get_embedding_backend()
    reference_path = reference_path or settings.get_reference_path()
    tokenizer, engine = load_backend(
        backend,
        model_path or settings.get_model_path(),
        tokenizer_path or settings.get_tokenizer_path(),
        max_length=settings.MAX_SEQUENCE_LENGTH,
    )
    dimension = _engine_dimension(tokenizer, engine)
    store = load_reference_store(
        reference_path,
        expected_dimension=dimension,
        expected_model_id=engine.model_id,
    )
    context = make_context(
        tokenizer,
        engine,
        store,
        serialize=settings.SERIALIZE_INFERENCE if serialize is None else serialize,
        timeout=settings.INFERENCE_TIMEOUT_SEC if timeout is None else timeout,
        dimension=dimension,
    )
    logger.info(
        "Color context ready: %d references, dim=%s, serialized=%s",
        len(store),
        store.dimension,
        context.lane.serialized,
    )
    return context


def match_text(text: str, context: ColorContext) -> MatchResult:
    """Full pipeline for one text; raises the CoreError of the failing step."""
    query = embed_text(text, context.tokenizer, context.lane)
    return match(query, context.store, context.index)


def colorize(text: str, context: ColorContext) -> ColorizeResult:
    """
    Map text to the color of its nearest reference entry.
    Never raises: per-request errors come back as ColorizeResult.failure.
    """
    try:
        return ColorizeResult.success(match_text(text, context))
    except InternalError as e:
        logger.error("colorize internal consistency failure: %s", e)
        return ColorizeResult.failure(e)
    except CoreError as e:
        logger.warning("colorize failed (%s): %s", e.code, e)
        return ColorizeResult.failure(e)
    except Exception as e:
        logger.exception("colorize failed unexpectedly: %s", e)
        return ColorizeResult.failure(InternalError(str(e)))
