"""Tests for SharedAudioBuffer and its independent views."""
from __future__ import annotations

import asyncio
import io

import pytest

from news_tts.tts.buffer import AudioView, SharedAudioBuffer


class TestAudioView:
    """Each view is an independent cursor over the same payload."""

    def test_views_do_not_share_position(self):
        """Reading from one view leaves another untouched."""
        buffer = SharedAudioBuffer(b"0123456789")
        v1, v2 = buffer.view(), buffer.view()

        assert bytes(v1.read(4)) == b"0123"
        assert v2.tell() == 0
        assert bytes(v2.read(2)) == b"01"
        assert bytes(v1.read()) == b"456789"

    def test_read_returns_zero_copy_slices(self):
        """read() hands out memoryview slices of the shared payload."""
        buffer = SharedAudioBuffer(b"abcdef")
        chunk = buffer.view().read(3)
        assert isinstance(chunk, memoryview)
        assert chunk.obj is buffer.data

    def test_seek_and_remaining(self):
        """seek supports SET, CUR and END and clamps past the end."""
        view = SharedAudioBuffer(b"abcdef").view()
        assert view.seek(2) == 2
        assert view.remaining == 4
        assert view.seek(1, io.SEEK_CUR) == 3
        assert view.seek(-1, io.SEEK_END) == 5
        assert view.seek(100) == 6
        assert view.read() == b""

    def test_negative_seek_rejected(self):
        """Seeking before the start is an error."""
        view = SharedAudioBuffer(b"abc").view()
        with pytest.raises(ValueError):
            view.seek(-1)

    def test_chunks_cover_payload(self):
        """chunks() yields the payload in bounded slices."""
        view = SharedAudioBuffer(b"x" * 10).view()
        sizes = [len(c) for c in view.chunks(4)]
        assert sizes == [4, 4, 2]

    def test_len(self):
        view = AudioView(memoryview(b"abc"))
        assert len(view) == 3


class TestSharedAudioBuffer:
    """Tests for buffer construction, leases and copy_to."""

    def test_rejects_non_bytes(self):
        with pytest.raises(TypeError):
            SharedAudioBuffer("not bytes")  # type: ignore[arg-type]

    def test_bytearray_is_snapshotted(self):
        """Mutating the source after construction does not leak in."""
        source = bytearray(b"abc")
        buffer = SharedAudioBuffer(source)
        source[0] = ord("z")
        assert buffer.data == b"abc"

    def test_concurrent_leases_are_not_exclusive(self):
        """Two leases can be held at the same time, each with its own cursor."""
        buffer = SharedAudioBuffer(b"payload")

        async def run():
            async with buffer.lease() as a:
                async with buffer.lease() as b:
                    assert buffer.readers == 2
                    assert bytes(a.read(3)) == b"pay"
                    assert bytes(b.read()) == b"payload"
            return buffer.readers

        assert asyncio.run(run()) == 0

    def test_copy_to_sync_writer(self):
        """copy_to streams the full payload into a sync writer."""
        buffer = SharedAudioBuffer(b"a" * 100_000)
        sink = io.BytesIO()
        written = asyncio.run(buffer.copy_to(sink, chunk_size=4096))
        assert written == 100_000
        assert sink.getvalue() == buffer.data

    def test_copy_to_async_writer_with_drain(self):
        """Async write() is awaited and drain() is called per chunk."""

        class Writer:
            def __init__(self):
                self.data = bytearray()
                self.drains = 0

            async def write(self, chunk):
                self.data.extend(chunk)

            async def drain(self):
                self.drains += 1

        buffer = SharedAudioBuffer(b"abcdefghij")
        writer = Writer()
        asyncio.run(buffer.copy_to(writer, chunk_size=4))
        assert bytes(writer.data) == b"abcdefghij"
        assert writer.drains == 3

    def test_parallel_consumers_see_full_payload(self):
        """Three concurrent consumers each read every byte."""
        payload = bytes(range(256)) * 1000
        buffer = SharedAudioBuffer(payload)

        async def consume():
            out = io.BytesIO()
            async with buffer.lease() as view:
                for chunk in view.chunks(1024):
                    out.write(chunk)
                    await asyncio.sleep(0)
            return out.getvalue()

        async def run():
            return await asyncio.gather(consume(), consume(), consume())

        assert all(result == payload for result in asyncio.run(run()))

    def test_closed_buffer_refuses_new_views(self):
        """After close(), view() raises but existing views stay readable."""
        buffer = SharedAudioBuffer(b"abc")
        view = buffer.view()
        buffer.close()
        assert buffer.closed
        with pytest.raises(ValueError):
            buffer.view()
        assert bytes(view.read()) == b"abc"
