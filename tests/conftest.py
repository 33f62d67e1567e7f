"""
Shared fixtures: an in-process tokenizer/engine pair standing in for the model artifacts.
Each known word maps to a fixed 4-dim vector; unknown words and empty text embed to zero.
"""

import numpy as np
import pytest

from textcolor.services.generation import generate_reference_store
from textcolor.services.pipeline import make_context
from textcolor.services.tokenizer import TokenSequence

VOCAB = {"sun": 1, "ocean": 2, "fire": 3, "sky": 4, "sea": 5}

# Row 0 is the unknown token.
TABLE = np.array(
    [
        [0.0, 0.0, 0.0, 0.0],
        [1.0, 0.9, 0.0, 0.0],
        [0.0, 0.0, 1.0, 0.1],
        [1.0, 0.1, 0.0, 0.0],
        [0.0, 0.3, 0.2, 1.0],
        [0.0, 0.1, 1.0, 0.3],
    ],
    dtype=np.float32,
)

WORDS = [
    ("sun", (255, 255, 0)),
    ("ocean", (0, 0, 255)),
    ("fire", (255, 0, 0)),
    ("sky", (130, 228, 255)),
]


class FakeTokenizer:
    """Whitespace tokenizer over VOCAB."""

    def tokenize(self, text: str) -> TokenSequence:
        ids = [VOCAB.get(word, 0) for word in text.lower().split()]
        return TokenSequence(
            input_ids=np.array(ids, dtype=np.int64),
            attention_mask=np.ones(len(ids), dtype=np.int64),
        )


class FakeEngine:
    """Sums the table rows of the input ids; counts calls."""

    model_id = "fake-model"
    dimension = 4

    def __init__(self) -> None:
        self.calls = 0

    def embed(self, tokens: TokenSequence) -> np.ndarray:
        self.calls += 1
        return TABLE[tokens.input_ids].sum(axis=0)


@pytest.fixture
def fake_tokenizer() -> FakeTokenizer:
    return FakeTokenizer()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def reference_words() -> list[tuple[str, tuple[int, int, int]]]:
    return list(WORDS)


@pytest.fixture
def reference_store(fake_tokenizer, fake_engine, reference_words):
    return generate_reference_store(reference_words, fake_tokenizer, fake_engine)


@pytest.fixture
def color_context(fake_tokenizer, fake_engine, reference_store):
    context = make_context(fake_tokenizer, fake_engine, reference_store)
    yield context
    context.close()
