"""
FastAPI Application Entry Point.

Usage:
    # Run with uvicorn
    uvicorn news_tts.main:app --host 0.0.0.0 --port 8000

    # Or through the CLI
    news-tts serve --port 8000

On shutdown the lifespan drains in-flight merge jobs (bounded by
merge.shutdown_timeout_s) and closes provider, storage and cache clients.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from news_tts import __version__
from news_tts.api.routes import router
from news_tts.core.logging import configure_logging, get_logger, info
from news_tts.services.batch_service import BatchOrchestrator

_LOG = get_logger("news-tts.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    info(_LOG, "startup", version=__version__)
    yield
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.shutdown()
    info(_LOG, "shutdown")


def create_app(orchestrator: Optional[BatchOrchestrator] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator; built lazily from settings
            on the first request when omitted.
    """
    configure_logging()

    app = FastAPI(title="news-tts", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(router)
    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
