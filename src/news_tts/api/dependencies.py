"""
FastAPI Dependency Injection Providers.

Hierarchy:
    1. get_settings() - Loads and caches configuration (NEWS_TTS_SETTINGS,
       default config/settings.yaml; a missing file means defaults)
    2. get_batch_orchestrator() - The orchestrator stored on app.state,
       built from settings on first use

create_app(orchestrator=...) pre-populates app.state, which is how tests
inject an orchestrator wired with fakes.
"""
from __future__ import annotations

import os
from functools import lru_cache

from fastapi import Request

from news_tts.core.config import Settings, load_settings_or_default
from news_tts.services.batch_service import BatchOrchestrator, get_orchestrator


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    return load_settings_or_default(os.getenv("NEWS_TTS_SETTINGS", "config/settings.yaml"))


def get_batch_orchestrator(request: Request) -> BatchOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = get_orchestrator(get_settings())
        request.app.state.orchestrator = orchestrator
    return orchestrator
