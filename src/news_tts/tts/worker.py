"""
Per-Item Synthesis Worker.

process() turns one content item into a SharedAudioBuffer:

    1. Resolve a voice for the language (VoiceSelector)
    2. Acquire a RateLimiter lease
    3. Call the provider under the synthesis ResiliencePipeline
    4. Release the lease (always, even on failure)
    5. Wrap the audio in a SharedAudioBuffer
    6. Fan out over independent views, concurrently:
         - save to local storage        (storage policy)
         - upload to remote storage     (storage policy, skipped if disabled)
         - cache raw bytes + metadata   (never fails)

A caller-supplied item slot is held from step 2 through step 6.

The item is all-or-nothing: if voice resolution, synthesis or any fan-out
task fails, the remaining fan-out tasks are cancelled, a "Content
Processing Failed" notification is sent and the error propagates.

process_saved() loads an already persisted item (cache first, then local
storage) without touching the provider. A missing file is fatal for that
item.
"""
from __future__ import annotations

import time
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncContextManager, Optional, Tuple

from news_tts.core.config import CacheConfig
from news_tts.core.errors import StorageFatal
from news_tts.core.logging import fail, get_logger, info, verbose
from news_tts.core.metrics import NewsTTSMetrics, metrics as global_metrics
from news_tts.core.notifications import NotificationSink, Severity
from news_tts.tts.buffer import SharedAudioBuffer
from news_tts.tts.cache import AudioMetadataRecord, CacheBackend, NullCache, audio_key, metadata_key
from news_tts.tts.formats import get_format
from news_tts.tts.provider import SpeechProvider, VoiceSettings
from news_tts.tts.rate_limiter import RateLimiter
from news_tts.tts.remote import RemoteStorage
from news_tts.tts.resilience import PolicyFactory
from news_tts.tts.storage import LocalStorage
from news_tts.tts.voices import VoiceSelector
from news_tts.utils.tasks import gather_or_cancel
from news_tts.utils.timeit import timeit

_LOG = get_logger("news-tts.worker")


@dataclass(frozen=True)
class ContentItem:
    """One news item to voice."""
    id: str
    text: str
    language: str = "tr"


class SynthesisWorker:

    def __init__(
        self,
        voices: VoiceSelector,
        provider: SpeechProvider,
        limiter: RateLimiter,
        policies: PolicyFactory,
        storage: LocalStorage,
        remote: Optional[RemoteStorage] = None,
        cache: Optional[CacheBackend] = None,
        notifier: Optional[NotificationSink] = None,
        default_settings: Optional[VoiceSettings] = None,
        cache_config: Optional[CacheConfig] = None,
        metrics: Optional[NewsTTSMetrics] = None,
        text_preview_chars: int = 80,
    ):
        self.voices = voices
        self.provider = provider
        self.limiter = limiter
        self.policies = policies
        self.storage = storage
        self.remote = remote
        self.cache = cache if cache is not None else NullCache()
        self.notifier = notifier
        self.default_settings = default_settings or VoiceSettings()
        self.cache_config = cache_config or CacheConfig()
        self._metrics = metrics or global_metrics
        self._preview = text_preview_chars

    async def process(
        self,
        item: ContentItem,
        language: Optional[str] = None,
        fmt: str = "mp3",
        slot: Optional[AsyncContextManager[Any]] = None,
    ) -> Tuple[str, SharedAudioBuffer]:
        """
        Synthesize one item and persist it.

        ``slot`` is the caller's item-concurrency guard. It is entered after
        the voice is resolved, so a slow profile fetch holds no slot.
        """
        language = language or item.language
        audio_format = get_format(fmt)
        try:
            with timeit("process_item") as t:
                profile = await self.voices.resolve(language)
                settings = profile.merge_settings(self.default_settings)

                async with slot if slot is not None else nullcontext():
                    async with self.limiter.lease():
                        audio = await self.policies.synthesis().execute(
                            self.provider.synthesize, item.text, profile.voice_id, settings, fmt
                        )

                    buffer = SharedAudioBuffer(audio, item_id=item.id, content_type=audio_format.content_type)
                    local_path = self.storage.path_for(item.id, fmt)
                    remote_key = self.remote.object_key(local_path.name) if self.remote is not None else None

                    await gather_or_cancel(
                        self._save_local(local_path, buffer),
                        self._upload(remote_key, buffer),
                        self._write_cache(item, buffer, local_path, remote_key),
                    )
        except Exception as exc:
            self._metrics.record_item("synthesized", "error")
            fail(_LOG, "item_failed", item_id=item.id, language=language, error=f"{type(exc).__name__}: {exc}")
            await self._notify(
                "Content Processing Failed",
                f"Item {item.id} ({language}) failed: {type(exc).__name__}: {exc}",
                Severity.ERROR,
            )
            raise

        self._metrics.record_item("synthesized", "success")
        info(_LOG, "item_synthesized", item_id=item.id, voice=profile.name or profile.voice_id,
             bytes=buffer.size, text=item.text[:self._preview], seconds=round(t.seconds, 3))
        await self._notify(
            "Content Processed Successfully",
            f"Item {item.id} synthesized with voice {profile.name or profile.voice_id} ({buffer.size} bytes)",
            Severity.SUCCESS,
        )
        return item.id, buffer

    async def process_saved(self, item_id: str, fmt: str = "mp3") -> Tuple[str, SharedAudioBuffer]:
        """
        Load a persisted item without synthesis.

        Raises:
            StorageFatal: The item is neither cached nor on disk.
        """
        audio_format = get_format(fmt)
        data = await self.cache.get_bytes(audio_key(item_id))
        source = "cache"
        if data is None:
            path = self.storage.path_for(item_id, fmt)
            data = await self.policies.storage().execute(self.storage.try_read, path)
            source = "disk"
            if data is None:
                self._metrics.record_item("saved", "error")
                fail(_LOG, "saved_item_missing", item_id=item_id, path=str(path))
                raise StorageFatal(f"saved audio for item {item_id} not found", details={"path": str(path)})

        self._metrics.record_item("saved", "success")
        verbose(_LOG, "saved_item_loaded", item_id=item_id, source=source, bytes=len(data))
        return item_id, SharedAudioBuffer(data, item_id=item_id, content_type=audio_format.content_type)

    # ─────────────────────────────────────────────────────────────────────
    # Fan-out tasks
    # ─────────────────────────────────────────────────────────────────────

    async def _save_local(self, path: Path, buffer: SharedAudioBuffer) -> int:
        return await self.policies.storage().execute(self.storage.save, path, buffer)

    async def _upload(self, key: Optional[str], buffer: SharedAudioBuffer) -> Optional[str]:
        if self.remote is None or key is None or not self.remote.enabled:
            return None
        return await self.policies.storage().execute(self.remote.upload, key, buffer.content_type, buffer)

    async def _write_cache(
        self,
        item: ContentItem,
        buffer: SharedAudioBuffer,
        local_path: Path,
        remote_key: Optional[str],
    ) -> None:
        await self.cache.set_bytes(audio_key(item.id), buffer.data, self.cache_config.audio_ttl_s)
        if not self.cache.is_connected():
            return
        remote_path = None
        if self.remote is not None and remote_key is not None and self.remote.enabled:
            remote_path = self.remote.public_path(remote_key)
        record = AudioMetadataRecord(
            id=item.id,
            text=item.text,
            local_path=str(local_path),
            remote_path=remote_path,
            timestamp=time.time(),
        )
        await self.cache.set(metadata_key(item.id), record.to_dict(), self.cache_config.metadata_ttl_s)

    async def _notify(self, title: str, message: str, severity: Severity) -> None:
        if self.notifier is not None:
            await self.notifier.notify(title, message, severity)
