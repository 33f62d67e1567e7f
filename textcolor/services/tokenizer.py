"""
Tokenizer adapter: convert raw text into the token sequence the embedding engine expects.
Loaded once at startup from an external tokenizer artifact (HuggingFace tokenizer.json).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from textcolor.services.errors import StartupError, TokenizationError

logger = logging.getLogger(__name__)

# Text encoded once at load time to prove the tokenizer works at all.
PROBE_TEXT = "color"


@dataclass(frozen=True, eq=False)
class TokenSequence:
    """Token ids plus attention mask (and optional type ids) of equal length."""

    input_ids: np.ndarray
    attention_mask: np.ndarray
    token_type_ids: np.ndarray | None = None

    def __post_init__(self) -> None:
        ids = np.asarray(self.input_ids, dtype=np.int64).reshape(-1)
        mask = np.asarray(self.attention_mask, dtype=np.int64).reshape(-1)
        if ids.shape != mask.shape:
            raise TokenizationError(
                f"attention mask length {mask.shape[0]} != token count {ids.shape[0]}"
            )
        object.__setattr__(self, "input_ids", ids)
        object.__setattr__(self, "attention_mask", mask)
        if self.token_type_ids is not None:
            types = np.asarray(self.token_type_ids, dtype=np.int64).reshape(-1)
            if types.shape != ids.shape:
                raise TokenizationError(
                    f"token type length {types.shape[0]} != token count {ids.shape[0]}"
                )
            object.__setattr__(self, "token_type_ids", types)

    def __len__(self) -> int:
        return int(self.input_ids.shape[0])


class TokenizerAdapter(Protocol):
    """Anything that turns text into a TokenSequence."""

    def tokenize(self, text: str) -> TokenSequence:
        ...


class HFTokenizerAdapter:
    """Adapter over a `tokenizers.Tokenizer` loaded from tokenizer.json."""

    def __init__(self, tokenizer: Any) -> None:
        self._tokenizer = tokenizer

    @classmethod
    def from_file(cls, path: str | Path, max_length: int | None = None) -> "HFTokenizerAdapter":
        """Load tokenizer definition; StartupError if missing, corrupt, or unusable."""
        path = Path(path)
        if not path.is_file():
            raise StartupError(f"Tokenizer artifact not found: {path}")
        try:
            from tokenizers import Tokenizer

            tokenizer = Tokenizer.from_file(str(path))
            # Single sequence per call; no padding tokens.
            tokenizer.no_padding()
            if max_length:
                tokenizer.enable_truncation(max_length=max_length)
        except Exception as e:
            logger.exception("Failed to load tokenizer from %s: %s", path, e)
            raise StartupError(f"Cannot load tokenizer {path}: {e}") from e
        adapter = cls(tokenizer)
        try:
            adapter.tokenize(PROBE_TEXT)
        except TokenizationError as e:
            raise StartupError(f"Tokenizer {path} cannot encode text: {e}") from e
        logger.info("Loaded tokenizer: %s", path)
        return adapter

    def tokenize(self, text: str) -> TokenSequence:
        """Encode text with special tokens; the empty string yields a minimal sequence."""
        try:
            encoding = self._tokenizer.encode(text)
        except Exception as e:
            raise TokenizationError(f"tokenizer could not encode input: {e}") from e
        return TokenSequence(
            input_ids=np.asarray(encoding.ids, dtype=np.int64),
            attention_mask=np.asarray(encoding.attention_mask, dtype=np.int64),
            token_type_ids=np.asarray(encoding.type_ids, dtype=np.int64),
        )


class SentenceTransformerTokenizer:
    """Adapter over the tokenizer bundled with a sentence-transformers model."""

    def __init__(self, model: Any) -> None:
        self._model = model

    def tokenize(self, text: str) -> TokenSequence:
        try:
            features = self._model.tokenize([text])
        except Exception as e:
            raise TokenizationError(f"tokenizer could not encode input: {e}") from e
        types = features.get("token_type_ids")
        return TokenSequence(
            input_ids=features["input_ids"][0].cpu().numpy(),
            attention_mask=features["attention_mask"][0].cpu().numpy(),
            token_type_ids=types[0].cpu().numpy() if types is not None else None,
        )
