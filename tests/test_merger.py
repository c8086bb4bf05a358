"""Tests for segment planning, the ffmpeg command and the merge engine."""
from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
import threading
import time

import pytest

from news_tts.core.config import MergeConfig
from news_tts.core.errors import MergeFailure
from news_tts.tts.buffer import SharedAudioBuffer
from news_tts.tts.merger import FfmpegTranscoder, MergeEngine, build_ffmpeg_command, build_segment_plan
from news_tts.tts.storage import LocalStorage

from conftest import FakeTranscoder

requires_ffmpeg = pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
posix_only = pytest.mark.skipif(os.name != "posix", reason="needs named pipes and /bin/sh")


def _buffers(*payloads: bytes):
    return [SharedAudioBuffer(p, item_id=str(i)) for i, p in enumerate(payloads)]


def _feeder_threads():
    return [t for t in threading.enumerate() if t.name.startswith("merge-feed")]


class OverlapTranscoder(FakeTranscoder):
    """Slow fake that records how many concats ran at once."""

    def __init__(self, delay: float = 0.1):
        super().__init__(delay=delay)
        self.active = 0
        self.peak = 0

    async def concat(self, segments, fmt, bitrate_kbps, output_path):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            return await super().concat(segments, fmt, bitrate_kbps, output_path)
        finally:
            self.active -= 1


class TestSegmentPlan:
    """Separator between adjacent items only; intro/outro wrap."""

    def test_separator_between_items(self):
        items = _buffers(b"a", b"b", b"c")
        sep = SharedAudioBuffer(b"-")
        plan = build_segment_plan(items, separator=sep)
        assert [s.data for s in plan] == [b"a", b"-", b"b", b"-", b"c"]
        assert sum(1 for s in plan if s is sep) == len(items) - 1

    def test_single_item_has_no_separator(self):
        plan = build_segment_plan(_buffers(b"a"), separator=SharedAudioBuffer(b"-"))
        assert [s.data for s in plan] == [b"a"]

    def test_intro_and_outro(self):
        plan = build_segment_plan(
            _buffers(b"a", b"b"),
            separator=SharedAudioBuffer(b"-"),
            intro=SharedAudioBuffer(b"<"),
            outro=SharedAudioBuffer(b">"),
        )
        assert [s.data for s in plan] == [b"<", b"a", b"-", b"b", b">"]

    def test_no_clips(self):
        assert [s.data for s in build_segment_plan(_buffers(b"a", b"b"))] == [b"a", b"b"]


class TestFfmpegCommand:
    def test_concat_filter(self):
        cmd = build_ffmpeg_command("ffmpeg", ["in0", "in1", "in2"], "mp3", 128, "out.part")
        assert cmd[:6] == ["ffmpeg", "-hide_banner", "-nostdin", "-loglevel", "error", "-y"]
        assert cmd.count("-i") == 3
        filter_graph = cmd[cmd.index("-filter_complex") + 1]
        assert filter_graph == "[0:a][1:a][2:a]concat=n=3:v=0:a=1[outa]"
        assert cmd[cmd.index("-c:a") + 1] == "libmp3lame"
        assert cmd[cmd.index("-b:a") + 1] == "128k"
        assert cmd[-3:] == ["-f", "mp3", "out.part"]

    def test_m4a_uses_aac(self):
        cmd = build_ffmpeg_command("ffmpeg", ["a", "b"], "m4a", 96, "out")
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-f") + 1] == "ipod"


class TestMergeEngine:
    """Optional clip loading and transcoder hand-off."""

    def test_missing_optional_clips_are_skipped_with_warning(self, tmp_path, caplog):
        """item1, separator, item2 when intro and outro files are absent."""
        (tmp_path / "separator.mp3").write_bytes(b"SEP")
        transcoder = FakeTranscoder()
        engine = MergeEngine(LocalStorage(tmp_path), transcoder=transcoder, config=MergeConfig())
        out = tmp_path / "merged" / "m.mp3"

        with caplog.at_level("WARNING"):
            result = asyncio.run(engine.merge(_buffers(b"ONE", b"TWO"), "mp3", out))

        assert result == out
        assert transcoder.plans == [[b"ONE", b"SEP", b"TWO"]]
        assert out.read_bytes() == b"ONESEPTWO"
        missing = [r.extra_data["clip"] for r in caplog.records if r.getMessage() == "optional_clip_missing"]
        assert sorted(missing) == ["intro", "outro"]

    def test_all_clips_present(self, tmp_path):
        for name, data in (("separator", b"|"), ("merged_haber_basi", b"<"), ("merged_haber_sonu", b">")):
            (tmp_path / f"{name}.mp3").write_bytes(data)
        transcoder = FakeTranscoder()
        engine = MergeEngine(LocalStorage(tmp_path), transcoder=transcoder)
        asyncio.run(engine.merge(_buffers(b"a", b"b", b"c"), "mp3", tmp_path / "out.mp3"))
        assert transcoder.plans == [[b"<", b"a", b"|", b"b", b"|", b"c", b">"]]

    def test_disabled_clip_is_not_looked_up(self, tmp_path, caplog):
        engine = MergeEngine(LocalStorage(tmp_path), transcoder=FakeTranscoder(),
                             config=MergeConfig(separator="", intro="", outro=""))
        with caplog.at_level("WARNING"):
            clips = asyncio.run(engine.load_optional_clips("mp3"))
        assert clips == {"intro": None, "separator": None, "outro": None}
        assert not [r for r in caplog.records if r.getMessage() == "optional_clip_missing"]

    def test_empty_clip_file_is_skipped(self, tmp_path, caplog):
        (tmp_path / "separator.mp3").write_bytes(b"")
        engine = MergeEngine(LocalStorage(tmp_path), transcoder=FakeTranscoder())
        with caplog.at_level("WARNING"):
            clips = asyncio.run(engine.load_optional_clips("mp3"))
        assert clips["separator"] is None
        assert any(r.getMessage() == "optional_clip_unusable" for r in caplog.records)

    def test_nothing_to_merge(self, tmp_path):
        engine = MergeEngine(LocalStorage(tmp_path), transcoder=FakeTranscoder())
        with pytest.raises(MergeFailure):
            asyncio.run(engine.merge([], "mp3", tmp_path / "out.mp3"))

    def test_transcoder_failure_propagates(self, tmp_path):
        engine = MergeEngine(LocalStorage(tmp_path), transcoder=FakeTranscoder(failures=1))
        with pytest.raises(MergeFailure):
            asyncio.run(engine.merge(_buffers(b"a", b"b"), "mp3", tmp_path / "out.mp3"))
        assert not engine.busy


class TestMergeEngineLocking:
    """One merge at a time per engine; separate engines run side by side."""

    def test_same_engine_serializes_merges(self, tmp_path):
        transcoder = OverlapTranscoder()
        engine = MergeEngine(LocalStorage(tmp_path), transcoder=transcoder)

        async def run():
            first = asyncio.ensure_future(engine.merge(_buffers(b"a", b"b"), "mp3", tmp_path / "one.mp3"))
            second = asyncio.ensure_future(engine.merge(_buffers(b"c", b"d"), "mp3", tmp_path / "two.mp3"))
            await asyncio.sleep(0.02)
            busy = engine.busy
            await asyncio.gather(first, second)
            return busy

        assert asyncio.run(run()) is True
        assert transcoder.peak == 1
        assert (tmp_path / "one.mp3").read_bytes() == b"ab"
        assert (tmp_path / "two.mp3").read_bytes() == b"cd"
        assert not engine.busy

    def test_separate_engines_run_in_parallel(self, tmp_path):
        transcoder = OverlapTranscoder()
        engines = [MergeEngine(LocalStorage(tmp_path), transcoder=transcoder) for _ in range(2)]

        async def run():
            await asyncio.gather(*(
                engine.merge(_buffers(b"x", b"y"), "mp3", tmp_path / f"out{i}.mp3")
                for i, engine in enumerate(engines)
            ))

        asyncio.run(run())
        assert transcoder.peak == 2


class TestFfmpegTranscoder:
    """Real ffmpeg runs are skipped when the binary is absent."""

    def test_missing_binary(self, tmp_path):
        transcoder = FfmpegTranscoder("definitely-not-ffmpeg-xyz")
        with pytest.raises(MergeFailure, match="ffmpeg not found"):
            asyncio.run(transcoder.concat(_buffers(b"a"), "mp3", 128, tmp_path / "out.mp3"))
        assert list(tmp_path.iterdir()) == []

    @requires_ffmpeg
    def test_concatenates_real_clips(self, tmp_path):
        clips = []
        for i, freq in enumerate((440, 660)):
            path = tmp_path / f"tone{i}.mp3"
            subprocess.run(
                ["ffmpeg", "-hide_banner", "-loglevel", "error", "-y", "-f", "lavfi",
                 "-i", f"sine=frequency={freq}:duration=0.5", "-c:a", "libmp3lame", str(path)],
                check=True,
            )
            clips.append(SharedAudioBuffer(path.read_bytes()))

        out = tmp_path / "merged" / "bulletin.mp3"
        result = asyncio.run(FfmpegTranscoder().concat(clips, "mp3", 64, out))

        assert result == out
        assert out.stat().st_size > 0
        assert [p.name for p in out.parent.iterdir()] == ["bulletin.mp3"]

    @requires_ffmpeg
    def test_garbage_input_fails_without_partial_output(self, tmp_path):
        out = tmp_path / "bulletin.mp3"
        with pytest.raises(MergeFailure) as exc_info:
            asyncio.run(FfmpegTranscoder().concat(_buffers(b"not audio", b"\x00" * 64), "mp3", 64, out))
        assert "stderr" in exc_info.value.details
        assert list(tmp_path.iterdir()) == []

    @posix_only
    def test_cancel_kills_process_and_releases_feeders(self, tmp_path):
        """The stand-in never opens its inputs, so every feeder is parked in open()."""
        pidfile = tmp_path / "ffmpeg.pid"
        script = tmp_path / "slow-ffmpeg"
        script.write_text(f'#!/bin/sh\necho $$ > "{pidfile}"\nexec sleep 30\n')
        script.chmod(0o755)
        out_dir = tmp_path / "merged"
        transcoder = FfmpegTranscoder(str(script))

        async def run():
            task = asyncio.ensure_future(
                transcoder.concat(_buffers(b"a" * 4096, b"b" * 4096), "mp3", 64, out_dir / "bulletin.mp3")
            )
            for _ in range(300):
                if pidfile.exists() and pidfile.read_text().strip():
                    break
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return int(pidfile.read_text())

        pid = asyncio.run(run())

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)
        deadline = time.monotonic() + 2.0
        while _feeder_threads() and time.monotonic() < deadline:
            time.sleep(0.02)
        assert _feeder_threads() == []
        assert list(out_dir.iterdir()) == []
