"""
news-tts Services Layer.

This package orchestrates whole batches on top of the tts layer. It sits
between the API/CLI and the per-item pipeline.

Components:
    - batch_service.py: BatchOrchestrator (fan-out, ordering, result decision)
    - merge_jobs.py: MergeJobSupervisor (detached, tracked merge jobs)
"""
from news_tts.tts.worker import ContentItem

from .batch_service import (
    BatchOrchestrator,
    BatchResult,
    build_orchestrator,
    get_orchestrator,
    reset_orchestrator,
)
from .merge_jobs import JobState, MergeJobStatus, MergeJobSupervisor

__all__ = [
    "ContentItem",
    "BatchOrchestrator",
    "BatchResult",
    "build_orchestrator",
    "get_orchestrator",
    "reset_orchestrator",
    "JobState",
    "MergeJobStatus",
    "MergeJobSupervisor",
]
