"""
Pydantic schemas for API request/response.
JSON-only; /color keeps the {"r", "g", "b"} shape existing clients expect.
"""

from pydantic import BaseModel, Field

from textcolor.config.settings import MAX_TEXT_CHARS


class TextInput(BaseModel):
    """POST /color and /match body. Empty text is allowed."""

    text: str = Field(..., max_length=MAX_TEXT_CHARS, description="Free-form text to colorize")


class ColorOutput(BaseModel):
    """POST /color response."""

    r: int = Field(..., ge=0, le=255)
    g: int = Field(..., ge=0, le=255)
    b: int = Field(..., ge=0, le=255)


class MatchOutput(ColorOutput):
    """POST /match response: color plus the reference entry it came from."""

    label: str
    similarity: float


class HealthOutput(BaseModel):
    """GET /health response."""

    status: str = "ok"
    references: int
    dimension: int | None = None
