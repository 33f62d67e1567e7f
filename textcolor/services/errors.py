"""
Error taxonomy for the text-to-color core.
Startup errors are fatal; every other error is scoped to a single request.
"""


class CoreError(Exception):
    """Base exception for all core errors."""

    code = "core_error"


class StartupError(CoreError):
    """
    The process cannot begin serving.

    Raised when:
    - Model or tokenizer artifact is missing or cannot be loaded
    - Reference embeddings file is missing, malformed or empty
    - Reference dimensionality or model id disagrees with the engine
    """

    code = "startup_error"


class TokenizationError(CoreError):
    """The tokenizer could not encode the input text."""

    code = "tokenization_error"


class InferenceError(CoreError):
    """
    The embedding computation failed for one request.

    Raised when:
    - The inference engine rejects the input shape
    - The engine fails internally
    - The inference step exceeds its timeout
    """

    code = "inference_error"


class DegenerateVectorError(CoreError):
    """Embedding has zero or non-finite norm and cannot be normalized."""

    code = "degenerate_embedding"


class InternalError(CoreError):
    """Internal consistency failure; never caused by user input."""

    code = "internal_error"


class NoMatchError(InternalError):
    """Matcher was asked to search an empty reference store."""

    code = "no_match"
