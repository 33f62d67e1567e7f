"""
Unit tests for the embedding engine: pooling, ONNX session handling (session patched), inference lane.
"""

import threading
import time
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import numpy as np
import pytest

from textcolor.services.embedding import (
    InferenceLane,
    OnnxEmbeddingEngine,
    fingerprint_artifacts,
    mean_pool,
)
from textcolor.services.errors import InferenceError, StartupError
from textcolor.services.tokenizer import TokenSequence

HIDDEN = 3


def _tokens(ids: list[int], mask: list[int] | None = None) -> TokenSequence:
    return TokenSequence(
        input_ids=np.array(ids, dtype=np.int64),
        attention_mask=np.array(mask if mask is not None else [1] * len(ids), dtype=np.int64),
    )


class FakeSession:
    """Stands in for onnxruntime.InferenceSession; records the feeds it receives."""

    def __init__(self, output, inputs=("input_ids", "attention_mask"), output_shape=("batch", "seq", HIDDEN)):
        self._output = output
        self._inputs = inputs
        self._output_shape = list(output_shape)
        self.feeds = None

    def get_inputs(self):
        return [SimpleNamespace(name=name) for name in self._inputs]

    def get_outputs(self):
        return [SimpleNamespace(name="last_hidden_state", shape=self._output_shape)]

    def run(self, output_names, feeds):
        self.feeds = feeds
        if isinstance(self._output, Exception):
            raise self._output
        return [self._output(feeds) if callable(self._output) else self._output]


@pytest.fixture
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "model.onnx"
    path.write_bytes(b"fake onnx bytes")
    return path


def _engine(model_file: Path, session: FakeSession) -> OnnxEmbeddingEngine:
    with patch("onnxruntime.InferenceSession", return_value=session):
        return OnnxEmbeddingEngine(model_file)


# --- pooling and fingerprint ---


def test_mean_pool_ignores_masked_tokens() -> None:
    """Padding positions (mask 0) do not contribute."""
    hidden = np.array([[1.0, 2.0], [3.0, 4.0], [100.0, 100.0]])
    assert np.allclose(mean_pool(hidden, np.array([1, 1, 0])), [2.0, 3.0])


def test_mean_pool_all_masked_is_zero() -> None:
    """No attended tokens gives the zero vector, no division by zero."""
    out = mean_pool(np.ones((2, 4)), np.array([0, 0]))
    assert out.shape == (4,)
    assert not out.any()


def test_fingerprint_changes_with_content(tmp_path: Path) -> None:
    """Same bytes give the same id; different bytes or order differ."""
    a = tmp_path / "a"
    b = tmp_path / "b"
    a.write_bytes(b"model-a")
    b.write_bytes(b"model-b")
    assert fingerprint_artifacts(a) == fingerprint_artifacts(a)
    assert fingerprint_artifacts(a) != fingerprint_artifacts(b)
    assert fingerprint_artifacts(a, b) != fingerprint_artifacts(b, a)
    assert len(fingerprint_artifacts(a)) == 16


# --- ONNX engine ---


def test_missing_model_is_startup_error(tmp_path: Path) -> None:
    """Model artifact must exist before a session is created."""
    with pytest.raises(StartupError):
        OnnxEmbeddingEngine(tmp_path / "missing.onnx")


def test_session_load_failure_is_startup_error(model_file: Path) -> None:
    """onnxruntime refusing the model is fatal."""
    with patch("onnxruntime.InferenceSession", side_effect=RuntimeError("bad graph")):
        with pytest.raises(StartupError):
            OnnxEmbeddingEngine(model_file)


def test_unsupported_model_input_is_startup_error(model_file: Path) -> None:
    """A graph needing inputs we cannot supply is rejected at load."""
    session = FakeSession(np.zeros((1, 2, HIDDEN)), inputs=("input_ids", "pixel_values"))
    with pytest.raises(StartupError):
        _engine(model_file, session)


def test_token_states_are_mean_pooled(model_file: Path) -> None:
    """Rank-3 output (1, seq, D) is averaged over attended tokens."""
    states = np.array([[[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [9.0, 9.0, 9.0]]], dtype=np.float32)
    engine = _engine(model_file, FakeSession(states))
    out = engine.embed(_tokens([5, 6, 0], mask=[1, 1, 0]))
    assert np.allclose(out, [0.5, 0.5, 0.0])
    assert out.dtype == np.float32


def test_pooled_output_passes_through(model_file: Path) -> None:
    """Rank-2 output (1, D) is already a sentence vector."""
    engine = _engine(model_file, FakeSession(np.array([[0.1, 0.2, 0.3]]), output_shape=("batch", HIDDEN)))
    assert np.allclose(engine.embed(_tokens([1, 2])), [0.1, 0.2, 0.3])


def test_feeds_only_declared_inputs_with_batch_axis(model_file: Path) -> None:
    """token_type_ids defaults to zeros when the graph wants it."""
    session = FakeSession(
        np.zeros((1, 2, HIDDEN)),
        inputs=("input_ids", "attention_mask", "token_type_ids"),
    )
    engine = _engine(model_file, session)
    engine.embed(_tokens([7, 8]))
    assert set(session.feeds) == {"input_ids", "attention_mask", "token_type_ids"}
    assert session.feeds["input_ids"].shape == (1, 2)
    assert session.feeds["token_type_ids"].tolist() == [[0, 0]]


def test_dimension_and_model_id(model_file: Path) -> None:
    """Static last axis is the dimension; model_id fingerprints the artifact."""
    engine = _engine(model_file, FakeSession(np.zeros((1, 1, HIDDEN))))
    assert engine.dimension == HIDDEN
    assert engine.model_id == fingerprint_artifacts(model_file)


def test_dynamic_dimension_is_unknown(model_file: Path) -> None:
    """Symbolic output shape leaves dimension to be probed."""
    engine = _engine(model_file, FakeSession(np.zeros((1, 1, HIDDEN)), output_shape=("batch", "seq", "hidden")))
    assert engine.dimension is None


def test_run_failure_is_inference_error(model_file: Path) -> None:
    """Engine errors are per-request InferenceError."""
    engine = _engine(model_file, FakeSession(RuntimeError("shape mismatch")))
    with pytest.raises(InferenceError):
        engine.embed(_tokens([1]))


def test_unexpected_output_rank_is_inference_error(model_file: Path) -> None:
    """Outputs that are neither token states nor pooled vectors are rejected."""
    engine = _engine(model_file, FakeSession(np.zeros((1, 1, 1, HIDDEN))))
    with pytest.raises(InferenceError):
        engine.embed(_tokens([1]))


def test_token_axis_mismatch_is_inference_error(model_file: Path) -> None:
    """Token states whose length disagrees with the attention mask fail the request, not the server."""
    engine = _engine(model_file, FakeSession(np.ones((1, 5, HIDDEN))))
    with pytest.raises(InferenceError):
        engine.embed(_tokens([1, 2]))


# --- inference lane ---


class SlowEngine:
    """Tracks how many embed calls overlap."""

    model_id = "slow"
    dimension = 2

    def __init__(self, delay: float = 0.02) -> None:
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def embed(self, tokens: TokenSequence) -> np.ndarray:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        time.sleep(self.delay)
        with self._lock:
            self.in_flight -= 1
        return np.ones(2, dtype=np.float32)


def _hammer(lane: InferenceLane, n: int = 6) -> None:
    threads = [threading.Thread(target=lane.embed, args=(_tokens([1]),)) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()


def test_serialized_lane_allows_one_call_in_flight() -> None:
    """serialize=True: concurrent callers never overlap inside the engine."""
    engine = SlowEngine()
    lane = InferenceLane(engine, serialize=True)
    try:
        _hammer(lane)
    finally:
        lane.close()
    assert lane.serialized
    assert engine.max_in_flight == 1


def test_direct_lane_calls_engine_in_caller_thread() -> None:
    """Without serialize or timeout the engine is called directly."""
    seen = []

    class ThreadEngine:
        model_id = "t"
        dimension = 1

        def embed(self, tokens):
            seen.append(threading.current_thread())
            return np.ones(1, dtype=np.float32)

    lane = InferenceLane(ThreadEngine())
    lane.embed(_tokens([1]))
    assert seen == [threading.current_thread()]
    assert not lane.serialized


def test_lane_timeout_is_inference_error() -> None:
    """Only the inference step is bounded; expiry is InferenceError."""
    lane = InferenceLane(SlowEngine(delay=0.5), timeout=0.05)
    try:
        with pytest.raises(InferenceError):
            lane.embed(_tokens([1]))
    finally:
        lane.close()


def test_lane_propagates_engine_error() -> None:
    """InferenceError raised inside the executor reaches the caller unchanged."""

    class FailingEngine:
        model_id = "f"
        dimension = 1

        def embed(self, tokens):
            raise InferenceError("engine internal error")

    lane = InferenceLane(FailingEngine(), serialize=True)
    try:
        with pytest.raises(InferenceError, match="engine internal error"):
            lane.embed(_tokens([1]))
    finally:
        lane.close()


def test_closed_lane_rejects_calls() -> None:
    """After close, serialized lanes refuse new work."""
    lane = InferenceLane(SlowEngine(), serialize=True)
    lane.close()
    with pytest.raises(InferenceError):
        lane.embed(_tokens([1]))
