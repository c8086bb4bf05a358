"""
Streaming Merge of Ordered Clips.

MergeEngine concatenates the clips of a batch into one bulletin:

    [intro] item1 [separator] item2 [separator] ... itemN [outro]

The separator sits between every adjacent pair, never first or last.
Optional clips are loaded from storage by name; a configured clip whose
file is missing is skipped with a warning and never fails the merge.

Transcoding:
    FfmpegTranscoder runs one ffmpeg process with one named pipe per
    segment. Each pipe is fed from its SharedAudioBuffer by a worker thread
    while ffmpeg writes the concatenated result straight to a temporary
    file, which is renamed into place on success. Cancelling the merge
    kills ffmpeg and unblocks every feeder.

    ffmpeg -i fifo0 -i fifo1 ... \\
        -filter_complex "[0:a][1:a]...concat=n=N:v=0:a=1[outa]" \\
        -map "[outa]" -c:a <codec> -b:a <bitrate>k -f <muxer> out.part

One merge runs at a time per MergeEngine instance.
"""
from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import aiofiles.os

from news_tts.core.config import MergeConfig
from news_tts.core.errors import MergeFailure, StorageFatal, StorageTransient
from news_tts.core.logging import debug, get_logger, info, verbose, warn
from news_tts.tts.buffer import SharedAudioBuffer
from news_tts.tts.formats import get_format
from news_tts.tts.storage import LocalStorage
from news_tts.utils.timeit import timeit

_LOG = get_logger("news-tts.merger")

STDERR_TAIL_CHARS = 2000
FEEDER_UNBLOCK_INTERVAL_S = 0.05
OPTIONAL_CLIPS = ("intro", "separator", "outro")


def build_segment_plan(
    buffers: Sequence[SharedAudioBuffer],
    separator: Optional[SharedAudioBuffer] = None,
    intro: Optional[SharedAudioBuffer] = None,
    outro: Optional[SharedAudioBuffer] = None,
) -> List[SharedAudioBuffer]:
    """Interleave the separator between items and wrap with intro/outro."""
    plan: List[SharedAudioBuffer] = []
    if intro is not None:
        plan.append(intro)
    for index, buffer in enumerate(buffers):
        if index > 0 and separator is not None:
            plan.append(separator)
        plan.append(buffer)
    if outro is not None:
        plan.append(outro)
    return plan


def build_ffmpeg_command(
    ffmpeg: str,
    input_paths: Sequence[Union[str, Path]],
    fmt: str,
    bitrate_kbps: int,
    output_path: Union[str, Path],
) -> List[str]:
    audio_format = get_format(fmt)
    cmd = [ffmpeg, "-hide_banner", "-nostdin", "-loglevel", "error", "-y"]
    for path in input_paths:
        cmd += ["-i", str(path)]
    labels = "".join(f"[{i}:a]" for i in range(len(input_paths)))
    cmd += [
        "-filter_complex", f"{labels}concat=n={len(input_paths)}:v=0:a=1[outa]",
        "-map", "[outa]",
        "-c:a", audio_format.codec,
        "-b:a", f"{bitrate_kbps}k",
        "-f", audio_format.muxer,
        str(output_path),
    ]
    return cmd


class Transcoder:
    """Concatenates ordered segments into one encoded file."""

    async def concat(
        self,
        segments: Sequence[SharedAudioBuffer],
        fmt: str,
        bitrate_kbps: int,
        output_path: Path,
    ) -> Path:
        raise NotImplementedError


def _feed_pipe(fifo: str, segment: SharedAudioBuffer) -> int:
    # Blocks in open() until ffmpeg opens the read end
    written = 0
    with open(fifo, "wb") as pipe:
        for chunk in segment.view().chunks():
            pipe.write(chunk)
            written += len(chunk)
    return written


def _unblock_pipe(fifo: str) -> None:
    # A reader that opens and closes at once releases a writer stuck in
    # open(); its next write then fails with EPIPE.
    try:
        fd = os.open(fifo, os.O_RDONLY | os.O_NONBLOCK)
    except OSError:
        return
    os.close(fd)


class FfmpegTranscoder(Transcoder):

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def resolve_binary(self) -> str:
        binary = shutil.which(self.ffmpeg_path)
        if binary is None:
            raise MergeFailure(f"ffmpeg not found: {self.ffmpeg_path}", details={"ffmpeg": self.ffmpeg_path})
        return binary

    async def concat(
        self,
        segments: Sequence[SharedAudioBuffer],
        fmt: str,
        bitrate_kbps: int,
        output_path: Path,
    ) -> Path:
        if not segments:
            raise MergeFailure("nothing to merge")
        binary = self.resolve_binary()
        output_path = Path(output_path)
        await aiofiles.os.makedirs(output_path.parent, exist_ok=True)
        partial = output_path.with_name(f"{output_path.name}.{uuid.uuid4().hex[:8]}.part")

        try:
            with tempfile.TemporaryDirectory(prefix="news-tts-merge-") as workdir:
                fifos = [os.path.join(workdir, f"in{i}.pipe") for i in range(len(segments))]
                for fifo in fifos:
                    os.mkfifo(fifo)
                cmd = build_ffmpeg_command(binary, fifos, fmt, bitrate_kbps, partial)
                debug(_LOG, "ffmpeg_start", inputs=len(fifos), output=str(partial))
                await self._run(cmd, fifos, segments)
            await aiofiles.os.replace(partial, output_path)
        except BaseException:
            await self._discard(partial)
            raise
        return output_path

    async def _run(self, cmd: List[str], fifos: List[str], segments: Sequence[SharedAudioBuffer]) -> None:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        # ffmpeg opens every input before draining any, so each pipe needs its own thread
        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=len(fifos), thread_name_prefix="merge-feed")
        feeders = [
            loop.run_in_executor(executor, _feed_pipe, fifo, segment)
            for fifo, segment in zip(fifos, segments)
        ]
        try:
            try:
                returncode = await proc.wait()
            except asyncio.CancelledError:
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()
                await self._release_feeders(fifos, feeders)
                stderr_task.cancel()
                warn(_LOG, "ffmpeg_cancelled", pid=proc.pid)
                raise
            results = await self._release_feeders(fifos, feeders)
        finally:
            executor.shutdown(wait=False)

        stderr = (await stderr_task).decode("utf-8", errors="replace")
        if returncode != 0:
            raise MergeFailure(
                f"ffmpeg exited with code {returncode}",
                details={"returncode": returncode, "stderr": stderr[-STDERR_TAIL_CHARS:]},
            )
        broken = [r for r in results if isinstance(r, BaseException)]
        if broken:
            raise MergeFailure(
                f"failed to stream merge input: {broken[0]}",
                details={"stderr": stderr[-STDERR_TAIL_CHARS:]},
            )

    async def _release_feeders(self, fifos: List[str], feeders: List[asyncio.Future]) -> list:
        # A feeder may reach open() only after a first unblock, so repeat until all are done
        pending = {feeder: fifo for feeder, fifo in zip(feeders, fifos)}
        while pending:
            for fifo in pending.values():
                _unblock_pipe(fifo)
            done, _ = await asyncio.wait(list(pending), timeout=FEEDER_UNBLOCK_INTERVAL_S)
            for feeder in done:
                pending.pop(feeder)
        return [feeder.exception() or feeder.result() for feeder in feeders]

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            warn(_LOG, "merge_partial_cleanup_failed", path=str(path), error=str(exc))


class MergeEngine:
    """
    Builds the segment plan and runs it through a Transcoder.

    Args:
        storage: Where optional clips are looked up by name.
        transcoder: Defaults to FfmpegTranscoder(config.ffmpeg_path).
        config: Clip names, bitrate and ffmpeg path.
    """

    def __init__(
        self,
        storage: LocalStorage,
        transcoder: Optional[Transcoder] = None,
        config: Optional[MergeConfig] = None,
    ):
        self.storage = storage
        self.config = config or MergeConfig()
        self.transcoder = transcoder or FfmpegTranscoder(self.config.ffmpeg_path)
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def load_optional_clips(self, fmt: str) -> Dict[str, Optional[SharedAudioBuffer]]:
        """Load intro/separator/outro; missing or unusable ones map to None."""
        clips: Dict[str, Optional[SharedAudioBuffer]] = {}
        content_type = get_format(fmt).content_type
        for role in OPTIONAL_CLIPS:
            name = getattr(self.config, role)
            clips[role] = None
            if not name:
                continue
            path = self.storage.clip_path(name, fmt)
            try:
                data = await self.storage.try_read(path)
            except (StorageFatal, StorageTransient) as exc:
                warn(_LOG, "optional_clip_unusable", clip=role, path=str(path), error=str(exc))
                continue
            if data is None:
                warn(_LOG, "optional_clip_missing", clip=role, path=str(path))
                continue
            clips[role] = SharedAudioBuffer(data, item_id=name, content_type=content_type)
        return clips

    async def merge(self, ordered_buffers: Sequence[SharedAudioBuffer], fmt: str, output_path: Union[str, Path]) -> Path:
        """
        Merge buffers (already in final order) into output_path.

        Raises:
            MergeFailure: Nothing to merge, ffmpeg missing or transcoding failed.
        """
        if not ordered_buffers:
            raise MergeFailure("nothing to merge")

        async with self._lock:
            clips = await self.load_optional_clips(fmt)
            plan = build_segment_plan(
                ordered_buffers,
                separator=clips["separator"],
                intro=clips["intro"],
                outro=clips["outro"],
            )
            verbose(_LOG, "merge_plan", items=len(ordered_buffers), segments=len(plan),
                    clips=",".join(role for role, clip in clips.items() if clip is not None) or "none")
            with timeit("merge") as t:
                result = await self.transcoder.concat(plan, fmt, self.config.bitrate_kbps, Path(output_path))

        info(_LOG, "merged", items=len(ordered_buffers), segments=len(plan),
             output=str(result), seconds=round(t.seconds, 3))
        return result
