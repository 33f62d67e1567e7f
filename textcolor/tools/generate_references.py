"""Generate the reference embeddings file consumed by the color server."""

import argparse
import json
import logging
import sys
from pathlib import Path

from textcolor.config import settings
from textcolor.config.reference_words import REFERENCE_WORDS
from textcolor.services.backends import BACKENDS, load_backend
from textcolor.services.errors import CoreError
from textcolor.services.generation import write_reference_store
from textcolor.services.reference_store import validate_color

logger = logging.getLogger(__name__)


def _read_words(path: Path) -> list[tuple[str, tuple[int, int, int]]]:
    """Word list file: JSON array of {"label": str, "color": [r, g, b]}."""
    items = json.loads(path.read_text(encoding="utf-8"))
    return [(str(item["label"]), validate_color(item["color"])) for item in items]


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--backend", choices=BACKENDS, default=settings.get_embedding_backend())
    parser.add_argument("--model", default=settings.get_model_path())
    parser.add_argument("--tokenizer", default=settings.get_tokenizer_path())
    parser.add_argument("--output", type=Path, default=Path(settings.get_reference_path()))
    parser.add_argument("--words", type=Path, default=None, help="JSON word/color list")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
    )
    args = _parse_args(argv)
    try:
        words = _read_words(args.words) if args.words else REFERENCE_WORDS
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.error("Cannot read word list %s: %s", args.words, e)
        return 1

    logger.info("Generating reference embeddings for %d words", len(words))
    try:
        tokenizer, engine = load_backend(
            args.backend,
            args.model,
            args.tokenizer,
            max_length=settings.MAX_SEQUENCE_LENGTH,
        )
        write_reference_store(words, tokenizer, engine, args.output)
    except (CoreError, OSError, ValueError) as e:
        logger.error("Reference generation failed: %s", e)
        return 1
    logger.info("Saved reference embeddings to %s", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
