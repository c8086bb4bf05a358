"""Tests for the per-item synthesis worker."""
from __future__ import annotations

import asyncio

import pytest

from news_tts.core.errors import (
    ConfigurationMissing,
    ProviderPermanent,
    ProviderTransient,
    StorageFatal,
)
from news_tts.core.metrics import NewsTTSMetrics
from news_tts.core.notifications import Severity
from news_tts.tts.cache import MemoryCache, NullCache, audio_key, metadata_key
from news_tts.tts.worker import ContentItem

from conftest import FakeProvider, audio_for, make_orchestrator


def _worker(tmp_path, provider=None, sink=None, cache=None, **overrides):
    orchestrator = make_orchestrator(tmp_path, provider=provider, sink=sink, cache=cache, **overrides)
    return orchestrator.worker


class TestProcess:
    """Synthesis, persistence fan-out and notifications."""

    def test_synthesizes_persists_and_caches(self, tmp_path, sink):
        provider = FakeProvider()
        cache = MemoryCache()
        worker = _worker(tmp_path, provider=provider, sink=sink, cache=cache)

        item_id, buffer = asyncio.run(worker.process(ContentItem("1", "Merhaba dünya")))

        assert item_id == "1"
        assert buffer.data == audio_for("Merhaba dünya")
        assert buffer.item_id == "1"
        assert buffer.content_type == "audio/mpeg"
        assert (tmp_path / "speech_1.mp3").read_bytes() == buffer.data
        assert asyncio.run(cache.get_bytes(audio_key("1"))) == buffer.data
        record = asyncio.run(cache.get(metadata_key("1")))
        assert record["text"] == "Merhaba dünya"
        assert record["local_path"] == str(tmp_path / "speech_1.mp3")
        assert record["remote_path"] is None
        assert sink.titles() == ["Content Processed Successfully"]
        assert sink.events[0][2] is Severity.SUCCESS

    def test_voice_from_the_language_pool(self, tmp_path):
        provider = FakeProvider()
        worker = _worker(tmp_path, provider=provider)
        asyncio.run(worker.process(ContentItem("1", "Merhaba")))
        _, voice_id = provider.synth_calls[0]
        assert voice_id in {"v-ahmet", "v-elif"}
        assert provider.voice_calls == [voice_id]

    def test_language_argument_overrides_item(self, tmp_path):
        worker = _worker(tmp_path, voices={"en": {"Adam": "v-adam"}})
        asyncio.run(worker.process(ContentItem("1", "Hello", language="tr"), language="en"))
        assert worker.provider.synth_calls == [("Hello", "v-adam")]

    def test_voice_resolved_before_taking_the_slot(self, tmp_path):
        """A held item slot blocks synthesis but not the voice lookup."""
        provider = FakeProvider()
        worker = _worker(tmp_path, provider=provider)

        async def run():
            slot = asyncio.Semaphore(1)
            await slot.acquire()
            task = asyncio.ensure_future(worker.process(ContentItem("1", "Merhaba"), slot=slot))
            await asyncio.sleep(0.05)
            blocked = (len(provider.voice_calls), len(provider.synth_calls))
            slot.release()
            await task
            return blocked, len(provider.synth_calls), slot.locked()

        assert asyncio.run(run()) == ((1, 0), 1, False)

    def test_transient_failure_is_retried(self, tmp_path, sink):
        provider = FakeProvider(errors={"Merhaba": [ProviderTransient("503")]})
        worker = _worker(tmp_path, provider=provider, sink=sink)
        _, buffer = asyncio.run(worker.process(ContentItem("1", "Merhaba")))
        assert buffer.data == audio_for("Merhaba")
        assert len(provider.synth_calls) == 2
        assert sink.titles() == ["TTS Retry", "Content Processed Successfully"]

    def test_permanent_failure_notifies_and_raises(self, tmp_path, sink):
        provider = FakeProvider(errors={"Merhaba": [ProviderPermanent("401")]})
        worker = _worker(tmp_path, provider=provider, sink=sink)
        with pytest.raises(ProviderPermanent):
            asyncio.run(worker.process(ContentItem("1", "Merhaba")))
        assert len(provider.synth_calls) == 1
        assert sink.titles() == ["Content Processing Failed"]
        assert sink.events[0][2] is Severity.ERROR
        assert not (tmp_path / "speech_1.mp3").exists()

    def test_unknown_language(self, tmp_path, sink):
        provider = FakeProvider()
        worker = _worker(tmp_path, provider=provider, sink=sink)
        with pytest.raises(ConfigurationMissing):
            asyncio.run(worker.process(ContentItem("1", "Hallo", language="de")))
        assert provider.synth_calls == []
        assert sink.titles() == ["Content Processing Failed"]

    def test_lease_released_after_failure(self, tmp_path):
        provider = FakeProvider(errors={"x": [ProviderPermanent("bad")]})
        worker = _worker(tmp_path, provider=provider)
        with pytest.raises(ProviderPermanent):
            asyncio.run(worker.process(ContentItem("1", "x")))
        assert worker.limiter.active_count == 0

    def test_metadata_skipped_without_cache(self, tmp_path):
        worker = _worker(tmp_path, cache=NullCache())
        _, buffer = asyncio.run(worker.process(ContentItem("1", "Merhaba")))
        assert (tmp_path / "speech_1.mp3").read_bytes() == buffer.data

    def test_item_counter(self, tmp_path):
        worker = _worker(tmp_path)
        asyncio.run(worker.process(ContentItem("1", "Merhaba")))
        metrics: NewsTTSMetrics = worker._metrics
        assert metrics.sample("news_tts_items_total", {"source": "synthesized", "status": "success"}) == 1.0


class TestProcessSaved:
    """Loading persisted items without the provider."""

    def test_loads_from_disk(self, tmp_path):
        (tmp_path / "speech_7.mp3").write_bytes(b"ID3saved")
        provider = FakeProvider()
        worker = _worker(tmp_path, provider=provider, cache=NullCache())
        item_id, buffer = asyncio.run(worker.process_saved("7"))
        assert (item_id, buffer.data) == ("7", b"ID3saved")
        assert provider.synth_calls == []

    def test_cache_is_tried_first(self, tmp_path):
        cache = MemoryCache()
        asyncio.run(cache.set_bytes(audio_key("7"), b"ID3cached", 60))
        (tmp_path / "speech_7.mp3").write_bytes(b"ID3disk")
        worker = _worker(tmp_path, cache=cache)
        _, buffer = asyncio.run(worker.process_saved("7"))
        assert buffer.data == b"ID3cached"

    def test_missing_is_fatal(self, tmp_path):
        worker = _worker(tmp_path, cache=NullCache())
        with pytest.raises(StorageFatal):
            asyncio.run(worker.process_saved("404"))
        assert worker._metrics.sample("news_tts_items_total", {"source": "saved", "status": "error"}) == 1.0
