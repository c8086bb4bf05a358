"""Shared fakes and builders for the news-tts test suite."""
from __future__ import annotations

import asyncio
import copy
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from news_tts.core.config import Settings
from news_tts.core.errors import MergeFailure
from news_tts.core.metrics import NewsTTSMetrics
from news_tts.core.notifications import NotificationSink, Severity
from news_tts.services.batch_service import BatchOrchestrator, build_orchestrator
from news_tts.tts.buffer import SharedAudioBuffer
from news_tts.tts.cache import CacheBackend, MemoryCache
from news_tts.tts.merger import Transcoder
from news_tts.tts.provider import SpeechProvider, VoiceProfile, VoiceSettings

TR_VOICES = {"Ahmet": "v-ahmet", "Elif": "v-elif"}


def audio_for(text: str) -> bytes:
    """Deterministic fake mp3 payload for a text."""
    return b"ID3" + text.encode("utf-8")


class FakeProvider(SpeechProvider):
    """
    In-memory provider.

    ``errors`` maps a text to exceptions raised, in order, on successive
    synthesize calls for that text.
    """

    def __init__(self, delay: float = 0.0, errors: Optional[Dict[str, List[Exception]]] = None):
        self.delay = delay
        self.errors = errors or {}
        self.synth_calls: List[Tuple[str, str]] = []
        self.voice_calls: List[str] = []
        self.closed = False

    async def synthesize(self, text: str, voice_id: str, settings: VoiceSettings, fmt: str) -> bytes:
        self.synth_calls.append((text, voice_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        pending = self.errors.get(text)
        if pending:
            raise pending.pop(0)
        return audio_for(text)

    async def get_voice(self, voice_id: str, with_settings: bool = True) -> VoiceProfile:
        self.voice_calls.append(voice_id)
        return VoiceProfile(voice_id=voice_id, name=f"voice-{voice_id}", stability=0.3)

    async def aclose(self) -> None:
        self.closed = True


class FakeTranscoder(Transcoder):
    """Concatenates segment bytes into the output file and records every plan."""

    def __init__(self, failures: int = 0, delay: float = 0.0):
        self.failures = failures
        self.delay = delay
        self.plans: List[List[bytes]] = []

    async def concat(self, segments: Sequence[SharedAudioBuffer], fmt: str, bitrate_kbps: int, output_path: Path) -> Path:
        self.plans.append([segment.view().tobytes() for segment in segments])
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise MergeFailure("ffmpeg exited with code 1", details={"stderr": "boom"})
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"".join(self.plans[-1]))
        return output_path


class RecordingSink(NotificationSink):
    """Collects notifications instead of delivering them."""

    name = "recording"

    def __init__(self, metrics: Optional[NewsTTSMetrics] = None):
        super().__init__(metrics=metrics or NewsTTSMetrics())
        self.events: List[Tuple[str, str, Severity]] = []

    async def _deliver(self, title: str, message: str, severity: Severity) -> None:
        self.events.append((title, message, severity))

    def titles(self) -> List[str]:
        return [title for title, _, _ in self.events]


def _deep_update(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def make_settings(base_dir: Path, **overrides: Any) -> Settings:
    """Settings for a fast, offline pipeline rooted at base_dir."""
    raw: Dict[str, Any] = {
        "voices": {"tr": dict(TR_VOICES)},
        "storage": {"base_dir": str(base_dir)},
        "rate_limit": {"max_concurrent": 5, "requests_per_second": 1000},
        "resilience": {
            "synthesis": {"base_delay_s": 0, "jitter": False},
            "storage": {"base_delay_s": 0},
            "merge": {"base_delay_s": 0},
        },
    }
    return Settings(raw=_deep_update(copy.deepcopy(raw), overrides))


def make_orchestrator(
    base_dir: Path,
    provider: Optional[FakeProvider] = None,
    transcoder: Optional[FakeTranscoder] = None,
    sink: Optional[RecordingSink] = None,
    cache: Optional[CacheBackend] = None,
    **overrides: Any,
) -> BatchOrchestrator:
    metrics = NewsTTSMetrics()
    return build_orchestrator(
        make_settings(base_dir, **overrides),
        provider=provider or FakeProvider(),
        transcoder=transcoder or FakeTranscoder(),
        cache=cache if cache is not None else MemoryCache(),
        notifier=sink or RecordingSink(metrics),
        rng=random.Random(7),
        metrics=metrics,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
