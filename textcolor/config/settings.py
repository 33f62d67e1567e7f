"""
Configuration from environment. Artifact paths are read at call time; tuning values at import.
Invalid values fall back to defaults.
"""

import os


def _float_env(name: str, default: float) -> float:
    """Read float from environment; return default if unset or invalid."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    """Read int from environment; return default if unset or invalid."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    """Read boolean flag (1/true/yes/on, 0/false/no/off); default if unset or unrecognized."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


def get_embedding_backend() -> str:
    """onnx (model.onnx + tokenizer.json) or sentence-transformers."""
    return os.environ.get("EMBEDDING_BACKEND", "onnx")


def get_model_path() -> str:
    """Model artifact: ONNX file, or sentence-transformers name/directory."""
    return os.environ.get("MODEL_PATH", "models/model.onnx")


def get_tokenizer_path() -> str:
    """Tokenizer definition (tokenizer.json) for the onnx backend."""
    return os.environ.get("TOKENIZER_PATH", "models/tokenizer.json")


def get_reference_path() -> str:
    """Reference embeddings file written by the generation tool."""
    return os.environ.get("REFERENCE_PATH", "custom/ref_embeddings.json")


# Longest token sequence fed to the model; longer inputs are truncated.
MAX_SEQUENCE_LENGTH: int = _int_env("MAX_SEQUENCE_LENGTH", 512)

# Longest request text accepted by the API (characters).
MAX_TEXT_CHARS: int = _int_env("MAX_TEXT_CHARS", 2000)

# One inference call in flight at a time; enable for engines that are not thread-safe.
SERIALIZE_INFERENCE: bool = _bool_env("SERIALIZE_INFERENCE", False)

# Bound on the inference step only (seconds); 0 disables.
INFERENCE_TIMEOUT_SEC: float = _float_env("INFERENCE_TIMEOUT_SEC", 0.0)

# Above this many references, replace the linear scan with an ANN index.
LINEAR_SCAN_MAX_ENTRIES: int = _int_env("LINEAR_SCAN_MAX_ENTRIES", 50_000)

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()
if LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
    LOG_LEVEL = "INFO"
