"""FastAPI application exposing the suggestion pipeline.

Run with ``uvicorn --factory parley.api.main:create_app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from parley import __version__
from parley.api.routers import events, interactions, usage
from parley.config import Settings, load_settings
from parley.log import configure_logging
from parley.pipeline import SuggestionPipeline
from parley.platform.slack import SlackWebClient


def create_app(
    pipeline: Optional[SuggestionPipeline] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the app; without a *pipeline* one is wired from *settings*."""
    configure_logging()
    settings = settings or load_settings()
    slack: Optional[SlackWebClient] = None
    if pipeline is None:
        slack = SlackWebClient(settings.slack_bot_token, base_url=settings.slack_api_base)
        pipeline = SuggestionPipeline.from_settings(settings, source=slack, target=slack)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.pipeline.shutdown()
        if slack is not None:
            await slack.aclose()

    app = FastAPI(
        title="Parley API",
        description="Reply suggestions: trigger events, interactions and usage.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline

    # -----------------------------------------------------------------------
    # CORS middleware
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------
    app.include_router(events.router)
    app.include_router(interactions.router)
    app.include_router(usage.router)

    @app.get("/", tags=["meta"])
    async def root():
        """Return basic API information."""
        return {
            "name": "Parley API",
            "version": __version__,
            "docs": "/docs",
        }

    @app.get("/health", tags=["meta"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
