"""
Tests for content streaming helpers.
"""
import io
import uuid

import pytest

from docvault.domains.documents.errors import StoreError
from docvault.domains.documents.streams import BlobReader, iter_chunks


async def _collect(source):
    return [chunk async for chunk in source]


class TestIterChunks:

    async def test_bytes_are_split(self):
        assert await _collect(iter_chunks(b"abcdefg", chunk_size=3)) == [b"abc", b"def", b"g"]

    async def test_empty_bytes_yield_nothing(self):
        assert await _collect(iter_chunks(b"", chunk_size=3)) == []

    async def test_file_object(self):
        assert await _collect(iter_chunks(io.BytesIO(b"abcde"), chunk_size=2)) == [b"ab", b"cd", b"e"]

    async def test_async_iterable_skips_empty_chunks(self):
        async def source():
            yield b"ab"
            yield b""
            yield b"c"

        assert await _collect(iter_chunks(source())) == [b"ab", b"c"]

    async def test_unsupported_type(self):
        with pytest.raises(TypeError):
            await _collect(iter_chunks(12345))


class TestBlobReader:

    def _reader(self, chunks, closed_flag=None):
        async def source():
            try:
                for chunk in chunks:
                    yield chunk
            finally:
                if closed_flag is not None:
                    closed_flag.append(True)

        return BlobReader(uuid.uuid4(), "out.pdf", sum(map(len, chunks)), source())

    async def test_read_all(self):
        reader = self._reader([b"hello ", b"world"])
        assert await reader.read() == b"hello world"
        assert reader.closed

    async def test_aclose_releases_source_once(self):
        released = []
        reader = self._reader([b"a", b"b"], released)

        async with reader:
            assert await reader.__anext__() == b"a"

        assert reader.closed
        assert released == [True]
        await reader.aclose()
        assert released == [True]

    async def test_read_after_close_fails(self):
        reader = self._reader([b"a"])
        await reader.aclose()
        with pytest.raises(StoreError):
            await reader.read()

    async def test_close_callbacks_run_in_order(self):
        calls = []

        async def first():
            calls.append("first")

        async def second():
            calls.append("second")

        reader = BlobReader(uuid.uuid4(), "out.pdf", 1, self._chunks([b"a"]), on_close=first)
        reader.add_close_callback(second)

        assert await reader.read() == b"a"
        await reader.aclose()

        assert calls == ["first", "second"]

    async def test_failing_callback_does_not_skip_the_rest(self):
        calls = []

        async def broken():
            raise StoreError("session already gone")

        async def release():
            calls.append("release")

        reader = BlobReader(uuid.uuid4(), "out.pdf", 1, self._chunks([b"a"]), on_close=broken)
        reader.add_close_callback(release)

        with pytest.raises(StoreError):
            await reader.aclose()
        assert calls == ["release"]

    @staticmethod
    async def _chunks(chunks):
        for chunk in chunks:
            yield chunk
