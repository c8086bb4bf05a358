"""
news-tts: Synthesis Orchestration and Streaming Merge for News Audio.

Backend engine of a news-reading service. Batches of news items are turned
into speech through an external synthesis provider, persisted locally (and
optionally to remote object storage), and, when more than one item is
requested together, concatenated into a single bulletin by ffmpeg.

Pipeline:
    BatchOrchestrator
        -> SynthesisWorker (per item, bounded concurrency)
            -> VoiceSelector -> RateLimiter -> ResiliencePipeline -> provider
            -> SharedAudioBuffer fan-out: local save / remote upload / cache
        -> MergeJobSupervisor -> MergeEngine -> ffmpeg

Example Usage:
    >>> from news_tts.core.config import load_settings_or_default
    >>> from news_tts.services import build_orchestrator, ContentItem
    >>>
    >>> orchestrator = build_orchestrator(load_settings_or_default("config/settings.yaml"))
    >>> items = [ContentItem(id="1", text="Merhaba", language="tr")]
    >>> result = asyncio.run(orchestrator.process_batch(items, items, [], "tr", "mp3"))
    >>> result.kind
    'single'
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
