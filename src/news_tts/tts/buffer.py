"""
Shared Immutable Audio Buffer.

One synthesized (or loaded) clip is consumed by several parties: the local
writer, the remote uploader, the cache writer and later the merge engine.
SharedAudioBuffer holds the bytes once and hands every consumer its own
AudioView, an independent cursor over a memoryview of the same payload.
Views never share position state, so consumers can read concurrently
without locking and without copying the payload.

Usage:
    buffer = SharedAudioBuffer(audio_bytes, item_id="42")

    # Independent cursors
    v1, v2 = buffer.view(), buffer.view()
    v1.read(1024); v2.read(10)   # positions do not interfere

    # Stream into any writer (sync or async, e.g. aiofiles or StreamWriter)
    await buffer.copy_to(writer)

    # Scoped reader accounting
    async with buffer.lease() as view:
        data = view.read()
"""
from __future__ import annotations

import inspect
import io
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterator, Optional

DEFAULT_CHUNK_SIZE = 64 * 1024


class AudioView:
    """
    Read-only, seekable cursor over a shared payload.

    ``read()`` returns memoryview slices of the shared payload; call
    ``bytes(...)`` on the result when an owned copy is required.
    """

    def __init__(self, data: memoryview):
        self._data = data
        self._pos = 0

    def __len__(self) -> int:
        return len(self._data)

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            pos = len(self._data) + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        if pos < 0:
            raise ValueError("negative seek position")
        self._pos = min(pos, len(self._data))
        return self._pos

    def read(self, size: int = -1) -> memoryview:
        if size is None or size < 0:
            end = len(self._data)
        else:
            end = min(self._pos + size, len(self._data))
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[memoryview]:
        """Yield the remaining payload in slices of at most chunk_size bytes."""
        while self._pos < len(self._data):
            yield self.read(chunk_size)

    def tobytes(self) -> bytes:
        """Owned copy of the full payload (independent of the cursor)."""
        return self._data.tobytes()


class SharedAudioBuffer:
    """
    Immutable byte payload with independent zero-copy views.

    Attributes:
        item_id: Content item the audio belongs to (optional).
        content_type: MIME type of the payload (e.g. audio/mpeg).
    """

    def __init__(self, data: bytes, item_id: Optional[str] = None, content_type: str = "audio/mpeg"):
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"audio payload must be bytes-like, got {type(data).__name__}")
        # bytearray/memoryview inputs are copied once so later mutation cannot leak in
        payload = data if isinstance(data, bytes) else bytes(data)
        self._payload = payload
        self._view = memoryview(payload)
        self.item_id = item_id
        self.content_type = content_type
        self._readers = 0
        self._closed = False

    def __len__(self) -> int:
        return len(self._payload)

    def __repr__(self) -> str:
        return f"SharedAudioBuffer(item_id={self.item_id!r}, size={len(self)}, readers={self._readers})"

    @property
    def size(self) -> int:
        return len(self._payload)

    @property
    def readers(self) -> int:
        """Number of leases currently held."""
        return self._readers

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def data(self) -> bytes:
        """The underlying immutable payload (no copy)."""
        self._check_open()
        return self._payload

    def view(self) -> AudioView:
        """Return a new independent cursor positioned at offset 0."""
        self._check_open()
        return AudioView(self._view)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[AudioView]:
        """
        Scoped access to a fresh view.

        Leases are counted, never exclusive: concurrent leases each get
        their own cursor.
        """
        view = self.view()
        self._readers += 1
        try:
            yield view
        finally:
            self._readers -= 1

    async def copy_to(self, dest: Any, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
        """
        Stream the full payload into ``dest`` from offset 0.

        ``dest.write`` may be sync or async. If ``dest`` exposes ``drain()``
        (asyncio.StreamWriter) it is awaited after each chunk for
        backpressure.

        Returns:
            Number of bytes written.
        """
        written = 0
        drain = getattr(dest, "drain", None)
        async with self.lease() as view:
            for chunk in view.chunks(chunk_size):
                result = dest.write(chunk)
                if inspect.isawaitable(result):
                    await result
                if drain is not None:
                    await drain()
                written += len(chunk)
        return written

    def close(self) -> None:
        """Mark the buffer released. Outstanding views stay readable."""
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("SharedAudioBuffer is closed")
