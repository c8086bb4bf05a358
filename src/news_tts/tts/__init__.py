"""
Synthesis Pipeline Components.

This package provides the building blocks of per-item synthesis and merging:
    - buffer.py: Immutable audio buffer with independent read views
    - rate_limiter.py: Concurrency cap + token bucket for provider calls
    - resilience.py: Retry with backoff and circuit breaker
    - voices.py: Voice pool selection and profile cache
    - provider.py: Speech-synthesis provider client (httpx)
    - worker.py: Per-item synthesis and persistence fan-out
    - merger.py: ffmpeg-driven streaming concatenation
    - storage.py: Local audio storage
    - remote.py: Remote object storage upload
    - cache.py: Cache backends (redis, memory, null)
    - formats.py: Output formats (content type, ffmpeg codec and muxer)
"""
