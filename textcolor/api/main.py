"""
FastAPI application: logging, error handlers, health and color routes.
The color context is built once in the lifespan; a startup error aborts serving.
"""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from textcolor.api.errors import register_error_handlers
from textcolor.api.routes import router as api_router
from textcolor.config.settings import LOG_LEVEL
from textcolor.services.pipeline import ColorContext, build_context

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(levelname)s %(name)s %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the color context on startup unless one was injected; close it on shutdown."""
    if getattr(app.state, "context", None) is None:
        app.state.context = build_context()
    try:
        yield
    finally:
        context = app.state.context
        if context is not None:
            context.close()


def create_app(context: ColorContext | None = None) -> FastAPI:
    """Create and configure the FastAPI app; pass context to skip loading artifacts."""
    app = FastAPI(
        title="Text Color API",
        description="Maps free-form text to the RGB color of its semantically closest reference word.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.context = context
    register_error_handlers(app)
    app.include_router(api_router, tags=["health", "color"])
    logger.info("Application configured")
    return app


app = create_app()
