"""
Local Audio Storage.

Synthesized clips, optional merge clips and merged bulletins live under a
single base directory:

    {base_dir}/
        speech_42.mp3            # one file per content item
        speech_43.mp3
        separator.mp3            # optional merge clips
        merged_haber_basi.mp3
        merged_haber_sonu.mp3
        merged/
            merge_3f2a....mp3    # merge outputs

All IO goes through aiofiles so the event loop never blocks on disk.

Atomic Writes:
    Data is written to a unique ``.tmp`` sibling and moved into place with
    os.replace. On any failure, including cancellation, the temp file is
    removed, so a final path is either absent or complete.

Error Mapping:
    FileNotFoundError on read  -> StorageFatal
    Empty file on read         -> StorageFatal
    Other OSError              -> StorageTransient (retried by the storage policy)

Usage:
    storage = LocalStorage("./storage")
    path = storage.path_for("42", "mp3")
    await storage.save(path, buffer)
    data = await storage.try_read(path)   # None when absent
"""
from __future__ import annotations

import uuid
from pathlib import Path
from typing import Optional, Union

import aiofiles
import aiofiles.os

from news_tts.core.errors import StorageFatal, StorageTransient
from news_tts.core.logging import debug, get_logger, verbose, warn
from news_tts.tts.buffer import SharedAudioBuffer
from news_tts.tts.formats import get_format
from news_tts.utils.timeit import timeit

_LOG = get_logger("news-tts.storage")

STORAGE_PREFIX = "speech_"

Payload = Union[bytes, SharedAudioBuffer]


class LocalStorage:
    """Filesystem-backed audio store rooted at ``base_dir``."""

    def __init__(self, base_dir: Union[str, Path], audio_format: str = "mp3", merged_subdir: str = "merged"):
        self.base_dir = Path(base_dir)
        self.audio_format = audio_format
        self.merged_subdir = merged_subdir

    # ─────────────────────────────────────────────────────────────────────
    # Path helpers
    # ─────────────────────────────────────────────────────────────────────

    def path_for(self, item_id: str, fmt: Optional[str] = None) -> Path:
        """Path of a content item's clip: speech_<id>.<ext>."""
        if not str(item_id).strip():
            raise ValueError("item id cannot be empty")
        ext = get_format(fmt or self.audio_format).extension
        return self.base_dir / f"{STORAGE_PREFIX}{item_id}.{ext}"

    def clip_path(self, name: str, fmt: Optional[str] = None) -> Path:
        """Path of a named auxiliary clip (separator, intro, outro)."""
        ext = get_format(fmt or self.audio_format).extension
        return self.base_dir / f"{name}.{ext}"

    def merged_path(self, correlation_id: str, fmt: Optional[str] = None) -> Path:
        ext = get_format(fmt or self.audio_format).extension
        return self.base_dir / self.merged_subdir / f"{correlation_id}.{ext}"

    # ─────────────────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────────────────

    async def save(self, path: Union[str, Path], payload: Payload) -> int:
        """
        Atomically write payload to path.

        Returns:
            Number of bytes written.

        Raises:
            StorageTransient: On any OSError.
        """
        path = Path(path)
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            with timeit("storage_write") as t:
                await aiofiles.os.makedirs(path.parent, exist_ok=True)
                async with aiofiles.open(tmp, "wb") as f:
                    if isinstance(payload, SharedAudioBuffer):
                        written = await payload.copy_to(f)
                    else:
                        await f.write(payload)
                        written = len(payload)
                await aiofiles.os.replace(tmp, path)
        except OSError as exc:
            await self._discard(tmp)
            warn(_LOG, "storage_write_error", path=str(path), error=str(exc))
            raise StorageTransient(f"failed to write {path}: {exc}", details={"path": str(path)}) from exc
        except BaseException:
            await self._discard(tmp)
            raise

        verbose(_LOG, "saved", path=path.name, bytes=written, seconds=round(t.seconds, 4))
        return written

    async def exists(self, path: Union[str, Path]) -> bool:
        return await aiofiles.os.path.isfile(path)

    async def read(self, path: Union[str, Path]) -> bytes:
        """
        Read a stored file.

        Raises:
            StorageFatal: File missing or empty.
            StorageTransient: Other IO errors.
        """
        data = await self.try_read(path)
        if data is None:
            raise StorageFatal(f"audio file not found: {path}", details={"path": str(path)})
        return data

    async def try_read(self, path: Union[str, Path]) -> Optional[bytes]:
        """
        Read a stored file, or None when it does not exist.

        Raises:
            StorageFatal: File exists but is empty.
            StorageTransient: IO errors other than absence.
        """
        path = Path(path)
        try:
            with timeit("storage_read") as t:
                async with aiofiles.open(path, "rb") as f:
                    data = await f.read()
        except FileNotFoundError:
            debug(_LOG, "storage_miss", path=str(path))
            return None
        except OSError as exc:
            raise StorageTransient(f"failed to read {path}: {exc}", details={"path": str(path)}) from exc

        if not data:
            raise StorageFatal(f"audio file is empty: {path}", details={"path": str(path)})
        verbose(_LOG, "storage_hit", path=path.name, bytes=len(data), seconds=round(t.seconds, 4))
        return data

    async def delete(self, path: Union[str, Path]) -> bool:
        """Delete a file. Returns False if it did not exist."""
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageTransient(f"failed to delete {path}: {exc}", details={"path": str(path)}) from exc
        return True

    async def _discard(self, tmp: Path) -> None:
        try:
            await aiofiles.os.remove(tmp)
        except FileNotFoundError:
            pass
        except OSError as exc:
            warn(_LOG, "storage_tmp_cleanup_failed", path=str(tmp), error=str(exc))
