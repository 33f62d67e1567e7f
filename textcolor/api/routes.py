"""
API routes: health, POST /color, POST /match.
Handlers are sync so FastAPI runs each request's pipeline on its worker threadpool.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from textcolor.api.errors import core_error_response
from textcolor.api.schemas import ColorOutput, HealthOutput, MatchOutput, TextInput
from textcolor.services.errors import InternalError
from textcolor.services.pipeline import ColorContext, colorize

logger = logging.getLogger(__name__)

router = APIRouter()


def _context(request: Request) -> ColorContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise InternalError("color context not initialized")
    return context


@router.get("/health", response_model=HealthOutput)
def health(request: Request) -> HealthOutput:
    """
    Readiness endpoint. Startup fails before serving if artifacts are bad,
    so a loaded context is the whole check.
    """
    context = _context(request)
    return HealthOutput(references=len(context.store), dimension=context.dimension)


@router.post("/color", response_model=ColorOutput)
def color(request: Request, body: TextInput) -> ColorOutput | JSONResponse:
    """Closest reference color for text, as {"r", "g", "b"}."""
    result = colorize(body.text, _context(request))
    if not result.ok:
        return core_error_response(result.error)
    r, g, b = result.color
    return ColorOutput(r=r, g=g, b=b)


@router.post("/match", response_model=MatchOutput)
def match_detail(request: Request, body: TextInput) -> MatchOutput | JSONResponse:
    """Closest reference color plus matched label and cosine similarity."""
    result = colorize(body.text, _context(request))
    if not result.ok:
        return core_error_response(result.error)
    r, g, b = result.color
    return MatchOutput(
        r=r,
        g=g,
        b=b,
        label=result.match.label,
        similarity=round(result.match.similarity, 4),
    )
