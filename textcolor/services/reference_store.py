"""
Reference store: ordered (label, color, embedding) entries used as the nearest-neighbor search space.
Persisted as JSON; loaded once per server process and read-only afterwards.
"""

import json
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from textcolor.services.errors import DegenerateVectorError, StartupError
from textcolor.services.normalize import is_unit, normalize

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

Color = tuple[int, int, int]
Channel = Annotated[int, Field(ge=0, le=255)]


def validate_color(color: Sequence[int]) -> Color:
    """Return color as an (r, g, b) tuple; ValueError unless three ints in [0, 255]."""
    channels = tuple(color)
    if len(channels) != 3 or not all(
        isinstance(c, (int, np.integer)) and not isinstance(c, bool) and 0 <= c <= 255
        for c in channels
    ):
        raise ValueError(f"color must be three integers in [0, 255], got {color!r}")
    return (int(channels[0]), int(channels[1]), int(channels[2]))


@dataclass(frozen=True, eq=False)
class ReferenceEntry:
    """One label tied to a color, with its unit-normalized embedding (read-only)."""

    label: str
    color: Color
    embedding: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "color", validate_color(self.color))
        emb = np.array(self.embedding, dtype=np.float32).reshape(-1)
        if not is_unit(emb):
            raise ValueError(f"embedding for {self.label!r} is not unit-normalized")
        emb.setflags(write=False)
        object.__setattr__(self, "embedding", emb)


class ReferenceStore:
    """Immutable ordered collection of ReferenceEntry with a stacked (N, D) matrix."""

    def __init__(self, entries: Sequence[ReferenceEntry], *, model_id: str | None = None) -> None:
        self._entries = tuple(entries)
        self.model_id = model_id
        dims = {e.embedding.shape[0] for e in self._entries}
        if len(dims) > 1:
            raise ValueError(f"reference embeddings have mixed dimensions: {sorted(dims)}")
        self.dimension: int | None = dims.pop() if dims else None
        if self._entries:
            matrix = np.vstack([e.embedding for e in self._entries]).astype(np.float32)
        else:
            matrix = np.empty((0, 0), dtype=np.float32)
        matrix.setflags(write=False)
        self._matrix = matrix

    @property
    def entries(self) -> tuple[ReferenceEntry, ...]:
        return self._entries

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @property
    def labels(self) -> list[str]:
        return [e.label for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ReferenceEntry]:
        return iter(self._entries)

    def __getitem__(self, position: int) -> ReferenceEntry:
        return self._entries[position]


# --- Persisted format -------------------------------------------------------


class ReferenceRecord(BaseModel):
    """One persisted entry."""

    label: str
    color: tuple[Channel, Channel, Channel]
    embedding: list[float] = Field(..., min_length=1)


class ReferenceFile(BaseModel):
    """Reference embeddings file, format version 1."""

    model_config = ConfigDict(protected_namespaces=())

    version: Literal[1] = FORMAT_VERSION
    model_id: str | None = None
    dimension: int = Field(..., ge=1)
    entries: list[ReferenceRecord]

    @model_validator(mode="after")
    def _entries_match_dimension(self) -> "ReferenceFile":
        for i, record in enumerate(self.entries):
            if len(record.embedding) != self.dimension:
                raise ValueError(
                    f"entry {i} ({record.label!r}) has dimension {len(record.embedding)}, "
                    f"file declares {self.dimension}"
                )
        return self


class LegacyRecord(BaseModel):
    """Entry of the older unlabeled list layout; embeddings were stored unnormalized."""

    embedding: list[float] = Field(..., min_length=1)
    color: tuple[Channel, Channel, Channel]


_legacy_records = TypeAdapter(list[LegacyRecord])


def save_reference_store(store: ReferenceStore, path: str | Path) -> None:
    """Write store as format-version-1 JSON. Floats round-trip exactly to float32."""
    if store.dimension is None:
        raise ValueError("cannot persist an empty reference store")
    document = ReferenceFile(
        model_id=store.model_id,
        dimension=store.dimension,
        entries=[
            ReferenceRecord(
                label=e.label,
                color=e.color,
                embedding=[float(x) for x in e.embedding],
            )
            for e in store
        ],
    )
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(document.model_dump_json() + "\n", encoding="utf-8")
    logger.info("Saved %d reference embeddings to %s", len(store), path)


def _entries_from_current(document: ReferenceFile, path: Path) -> list[ReferenceEntry]:
    entries = []
    for i, record in enumerate(document.entries):
        if not is_unit(np.asarray(record.embedding)):
            raise StartupError(f"{path}: entry {i} ({record.label!r}) is not unit-normalized")
        entries.append(ReferenceEntry(record.label, record.color, np.asarray(record.embedding)))
    return entries


def _entries_from_legacy(records: list[LegacyRecord], path: Path) -> list[ReferenceEntry]:
    entries = []
    for i, record in enumerate(records):
        try:
            embedding = normalize(record.embedding)
        except DegenerateVectorError as e:
            raise StartupError(f"{path}: entry {i} has a degenerate embedding") from e
        entries.append(ReferenceEntry(f"entry-{i}", record.color, embedding))
    return entries


def load_reference_store(
    path: str | Path,
    *,
    expected_dimension: int | None = None,
    expected_model_id: str | None = None,
) -> ReferenceStore:
    """
    Parse the persisted reference file into a ReferenceStore.
    Raises StartupError when the file is missing, malformed, empty, or incompatible
    with the engine (dimension or model id).
    """
    path = Path(path)
    if not path.is_file():
        raise StartupError(f"Reference embeddings file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StartupError(f"Cannot read reference embeddings {path}: {e}") from e

    model_id: str | None
    try:
        if isinstance(raw, list):
            logger.warning("%s uses the legacy unlabeled layout; model id not verified", path)
            entries = _entries_from_legacy(_legacy_records.validate_python(raw), path)
            model_id = None
        else:
            document = ReferenceFile.model_validate(raw)
            entries = _entries_from_current(document, path)
            model_id = document.model_id
    except ValidationError as e:
        raise StartupError(f"Malformed reference embeddings {path}: {e}") from e

    if not entries:
        raise StartupError(f"Reference embeddings file {path} is empty")
    try:
        store = ReferenceStore(entries, model_id=model_id)
    except ValueError as e:
        raise StartupError(f"{path}: {e}") from e

    if expected_dimension is not None and store.dimension != expected_dimension:
        raise StartupError(
            f"{path}: reference dimension {store.dimension} does not match "
            f"engine dimension {expected_dimension}"
        )
    if expected_model_id is not None and model_id is not None and model_id != expected_model_id:
        raise StartupError(
            f"{path}: generated with model {model_id!r}, engine is {expected_model_id!r}; "
            "regenerate the reference embeddings"
        )
    logger.info("Loaded %d reference embeddings (dim=%s) from %s", len(store), store.dimension, path)
    return store
