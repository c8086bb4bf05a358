"""
BatchOrchestrator - Batch Synthesis Entry Point.

One call voices a whole bulletin:

    result = await orchestrator.process_batch(
        all_items,          # canonical output order
        needed_items,       # ContentItems to synthesize
        saved_items,        # ids already persisted (loaded, never synthesized)
        language="tr",
        fmt="mp3",
    )

Flow:
    1. One task per item (SynthesisWorker.process / process_saved), all
       bounded by a shared semaphore (total in-flight items, distinct from
       the provider RateLimiter)
    2. All-or-nothing join: the first failure cancels the remaining items
       and fails the batch; already persisted items stay on disk
    3. Reassemble buffers in all_items order, dropping ids with no buffer
    4. Decide:
         0 buffers  -> BatchResult.empty()
         1 buffer   -> BatchResult.single(...)   no merge
         N buffers  -> MergeJobSupervisor.submit(...), returns merge_<uuid>
                       immediately while the merge runs in the background

Cancelling process_batch cancels every item task, so no new provider call
starts after the cancellation point.
"""
from __future__ import annotations

import asyncio
import random
import threading
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from news_tts.core.config import NewsTTSConfig, Settings
from news_tts.core.errors import ErrorCode, NewsTTSError
from news_tts.core.logging import debug, fail, get_logger, info, set_correlation_id, success, warn
from news_tts.core.metrics import NewsTTSMetrics, metrics as global_metrics
from news_tts.core.notifications import NotificationSink, build_notification_sink
from news_tts.services.merge_jobs import MergeJobSupervisor
from news_tts.tts.buffer import SharedAudioBuffer
from news_tts.tts.cache import CacheBackend, build_cache
from news_tts.tts.formats import get_format
from news_tts.tts.merger import MergeEngine, Transcoder
from news_tts.tts.provider import ElevenLabsProvider, SpeechProvider, VoiceSettings
from news_tts.tts.rate_limiter import RateLimiter
from news_tts.tts.remote import RemoteStorage
from news_tts.tts.resilience import PolicyFactory
from news_tts.tts.storage import LocalStorage
from news_tts.tts.voices import VoiceSelector
from news_tts.tts.worker import ContentItem, SynthesisWorker
from news_tts.utils.tasks import gather_or_cancel
from news_tts.utils.timeit import timeit

_LOG = get_logger("news-tts.batch")

SINGLE_ID_PREFIX = "single_"

ItemRef = Union[ContentItem, str]


def _item_id(item: ItemRef) -> str:
    return item.id if isinstance(item, ContentItem) else str(item)


@dataclass
class BatchResult:
    """
    Outcome of process_batch.

    Attributes:
        kind: "empty", "single" or "merge".
        correlation_id: single_<uuid> or merge_<uuid>; None when empty.
        buffer: The audio of a single result.
        item_id: Item behind a single result.
        item_ids: Items in output order.
    """
    kind: str
    correlation_id: Optional[str] = None
    buffer: Optional[SharedAudioBuffer] = None
    item_id: Optional[str] = None
    item_ids: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "BatchResult":
        return cls(kind="empty")

    @classmethod
    def single(cls, item_id: str, buffer: SharedAudioBuffer) -> "BatchResult":
        return cls(
            kind="single",
            correlation_id=f"{SINGLE_ID_PREFIX}{uuid.uuid4()}",
            buffer=buffer,
            item_id=item_id,
            item_ids=[item_id],
        )

    @classmethod
    def merge(cls, correlation_id: str, item_ids: List[str]) -> "BatchResult":
        return cls(kind="merge", correlation_id=correlation_id, item_ids=item_ids)


class BatchOrchestrator:
    """
    Dispatches item work, restores caller order and picks the result path.

    Args:
        worker: Per-item synthesis and loading.
        supervisor: Owner of detached merge jobs.
        max_concurrent: Bound on in-flight item tasks.
        closeables: Resources closed by shutdown() (provider, cache, ...).
    """

    def __init__(
        self,
        worker: SynthesisWorker,
        supervisor: MergeJobSupervisor,
        max_concurrent: int = 20,
        metrics: Optional[NewsTTSMetrics] = None,
        closeables: Sequence[Any] = (),
        shutdown_timeout_s: float = 30.0,
    ):
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self.worker = worker
        self.supervisor = supervisor
        self.max_concurrent = max_concurrent
        self.shutdown_timeout_s = shutdown_timeout_s
        self._metrics = metrics or global_metrics
        self._closeables = list(closeables)
        self._sem: Optional[asyncio.Semaphore] = None
        self._sem_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def metrics(self) -> NewsTTSMetrics:
        return self._metrics

    def _slots(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._sem is None or self._sem_loop is not loop:
            self._sem = asyncio.Semaphore(self.max_concurrent)
            self._sem_loop = loop
        return self._sem

    async def process_batch(
        self,
        all_items: Sequence[ItemRef],
        needed_items: Sequence[ContentItem] = (),
        saved_items: Sequence[ItemRef] = (),
        language: Optional[str] = None,
        fmt: str = "mp3",
    ) -> BatchResult:
        """
        Synthesize/load every item and return empty, single or merge.

        Raises:
            NewsTTSError: Invalid format, or the first item failure
                (ConfigurationMissing, ProviderPermanent, StorageFatal, ...).
        """
        try:
            get_format(fmt)
        except ValueError as exc:
            raise NewsTTSError(str(exc), code=ErrorCode.INVALID_INPUT, details={"format": fmt}) from exc

        batch_id = f"batch_{uuid.uuid4().hex[:12]}"
        set_correlation_id(batch_id)

        needed_ids = {item.id for item in needed_items}
        saved_ids: List[str] = []
        for ref in saved_items:
            item_id = _item_id(ref)
            if item_id in needed_ids:
                debug(_LOG, "saved_item_also_needed", item_id=item_id)
                continue
            saved_ids.append(item_id)

        info(_LOG, "batch_start", items=len(all_items), needed=len(needed_items),
             saved=len(saved_ids), language=language or "-", format=fmt)

        slots = self._slots()

        async def bounded(fn, *args):
            async with slots:
                return await fn(*args)

        # process() takes the slot itself once the voice is resolved
        work = [self.worker.process(item, language, fmt, slots) for item in needed_items]
        work += [bounded(self.worker.process_saved, item_id, fmt) for item_id in saved_ids]

        with timeit("batch") as t:
            try:
                results = await gather_or_cancel(*work)
            except asyncio.CancelledError:
                self._metrics.record_batch("cancelled")
                warn(_LOG, "batch_cancelled", seconds=round(t.seconds, 3))
                raise
            except Exception as exc:
                self._metrics.record_batch("failed")
                fail(_LOG, "batch_failed", error=f"{type(exc).__name__}: {exc}", seconds=round(t.seconds, 3))
                raise

        lookup: Dict[str, SharedAudioBuffer] = dict(results)
        # A repeated id keeps its first position and is merged once
        order = list(dict.fromkeys(map(_item_id, all_items)))
        if len(order) < len(all_items):
            debug(_LOG, "batch_duplicate_ids", duplicates=len(all_items) - len(order))
        ordered = [(item_id, lookup[item_id]) for item_id in order if item_id in lookup]
        dropped = len(lookup) - len(ordered)
        if dropped:
            debug(_LOG, "batch_items_not_requested", dropped=dropped)

        if not ordered:
            result = BatchResult.empty()
        elif len(ordered) == 1:
            item_id, buffer = ordered[0]
            result = BatchResult.single(item_id, buffer)
        else:
            correlation_id = self.supervisor.submit([buffer for _, buffer in ordered], fmt)
            result = BatchResult.merge(correlation_id, [item_id for item_id, _ in ordered])

        self._metrics.record_batch(result.kind)
        success(_LOG, "batch_done", kind=result.kind, correlation_id=result.correlation_id or "-",
                items=len(ordered), seconds=round(t.seconds, 3))
        return result

    def get_health_info(self) -> Dict[str, Any]:
        circuits = {}
        for call_class in ("synthesis", "storage", "merge"):
            breaker = self.worker.policies.get(call_class).breaker
            circuits[call_class] = breaker.state.value if breaker is not None else "disabled"
        return {
            "ok": True,
            "rate_limiter": asdict(self.worker.limiter.stats()),
            "circuits": circuits,
            "merge_jobs_active": self.supervisor.active_count,
            "cache_connected": self.worker.cache.is_connected(),
            "voice_languages": self.worker.voices.languages(),
        }

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Drain merge jobs, then close owned clients."""
        await self.supervisor.shutdown(self.shutdown_timeout_s if timeout is None else timeout)
        for resource in self._closeables:
            await resource.aclose()
        info(_LOG, "orchestrator_shutdown")


def build_orchestrator(
    settings: Optional[Settings] = None,
    config: Optional[NewsTTSConfig] = None,
    provider: Optional[SpeechProvider] = None,
    transcoder: Optional[Transcoder] = None,
    cache: Optional[CacheBackend] = None,
    notifier: Optional[NotificationSink] = None,
    rng: Optional[random.Random] = None,
    metrics: Optional[NewsTTSMetrics] = None,
) -> BatchOrchestrator:
    """
    Wire the full pipeline from configuration.

    Collaborators can be injected (tests, alternative providers); anything
    not given is built from config.
    """
    if config is None:
        config = settings.get_config() if settings is not None else NewsTTSConfig()
    metrics = metrics or global_metrics
    rng = rng or random.Random()

    notifier = notifier or build_notification_sink(config.notifications, metrics=metrics)
    provider = provider or ElevenLabsProvider(config.provider, metrics=metrics)
    if cache is None:
        cache = build_cache(config.cache)
    policies = PolicyFactory(config.resilience, notifier=notifier, metrics=metrics, rng=rng)
    limiter = RateLimiter(
        max_concurrent=config.rate_limit.max_concurrent,
        rate_per_second=config.rate_limit.requests_per_second,
        acquire_timeout_s=config.rate_limit.acquire_timeout_s,
        metrics=metrics,
    )
    storage = LocalStorage(config.storage.base_dir, config.storage.audio_format, config.storage.merged_subdir)
    remote = RemoteStorage(config.remote)
    voices = VoiceSelector(config.voices, provider, pipeline=policies.synthesis(), rng=rng)

    worker = SynthesisWorker(
        voices=voices,
        provider=provider,
        limiter=limiter,
        policies=policies,
        storage=storage,
        remote=remote,
        cache=cache,
        notifier=notifier,
        default_settings=VoiceSettings.from_config(config.provider),
        cache_config=config.cache,
        metrics=metrics,
        text_preview_chars=config.logging.text_preview_chars,
    )
    engine = MergeEngine(storage, transcoder=transcoder, config=config.merge)
    supervisor = MergeJobSupervisor(
        engine,
        storage,
        pipeline=policies.merge(),
        notifier=notifier,
        metrics=metrics,
    )

    info(_LOG, "orchestrator_ready", languages=",".join(voices.languages()) or "-",
         max_concurrent=config.batch.max_concurrent, storage=str(storage.base_dir))
    return BatchOrchestrator(
        worker,
        supervisor,
        max_concurrent=config.batch.max_concurrent,
        metrics=metrics,
        closeables=[provider, remote, cache, notifier],
        shutdown_timeout_s=config.merge.shutdown_timeout_s,
    )


# Global orchestrator instance (created on first use)
_orchestrator: Optional[BatchOrchestrator] = None
_orchestrator_lock = threading.Lock()


def get_orchestrator(settings: Settings) -> BatchOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        with _orchestrator_lock:
            if _orchestrator is None:
                _orchestrator = build_orchestrator(settings)
    return _orchestrator


def reset_orchestrator() -> None:
    """Reset the global orchestrator (for testing)."""
    global _orchestrator
    with _orchestrator_lock:
        _orchestrator = None
