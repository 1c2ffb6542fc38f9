"""Tests for the envelope stream reader and writer."""

import asyncio
import json

import pytest

from switchboard.core.domain.errors import LineTooLong, MalformedEnvelope
from switchboard.core.domain.models import StatusData
from switchboard.infrastructure.protocol.stream import EnvelopeReader, EnvelopeWriter

LIMIT = 1024 * 1024


def make_reader(payload: bytes, *, limit: int = LIMIT) -> EnvelopeReader:
    stream = asyncio.StreamReader(limit=limit)
    stream.feed_data(payload)
    stream.feed_eof()
    return EnvelopeReader(stream, max_line_bytes=limit)


class FakeStream:
    """Collects written bytes; ``drain`` yields so writers can interleave."""

    def __init__(self) -> None:
        self.chunks: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.chunks.append(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)


class TestEnvelopeReader:
    @pytest.mark.asyncio
    async def test_reads_lines_until_eof(self):
        reader = make_reader(b'{"type":"a","id":"1"}\n{"type":"b"}\n')

        first = await reader.read()
        second = await reader.read()

        assert (first.type, first.id) == ("a", "1")
        assert second.type == "b"
        assert await reader.read() is None

    @pytest.mark.asyncio
    async def test_skips_blank_lines(self):
        reader = make_reader(b'\n   \n{"type":"a"}\n')

        assert (await reader.read()).type == "a"

    @pytest.mark.asyncio
    async def test_unterminated_last_line_is_decoded(self):
        reader = make_reader(b'{"type":"a"}')

        assert (await reader.read()).type == "a"
        assert await reader.read() is None

    @pytest.mark.asyncio
    async def test_malformed_line_does_not_stop_reading(self):
        reader = make_reader(b'garbage\n{"type":"ok"}\n')

        with pytest.raises(MalformedEnvelope):
            await reader.read()
        assert (await reader.read()).type == "ok"

    @pytest.mark.asyncio
    async def test_accepts_a_line_of_one_mebibyte(self):
        text = "x" * (LIMIT - 100)
        line = json.dumps({"type": "message.send", "data": {"text": text}}).encode()
        assert len(line) <= LIMIT
        reader = make_reader(line + b"\n")

        envelope = await reader.read()

        assert envelope.data["text"] == text

    @pytest.mark.asyncio
    async def test_overlong_line_is_skipped(self):
        limit = 64
        big = b'{"type":"x","data":"' + b"y" * 500 + b'"}\n'
        reader = make_reader(big + b'{"type":"after"}\n', limit=limit)

        with pytest.raises(LineTooLong) as exc_info:
            await reader.read()
        assert exc_info.value.limit == limit
        assert (await reader.read()).type == "after"
        assert await reader.read() is None


class TestEnvelopeWriter:
    @pytest.mark.asyncio
    async def test_send_typed_writes_one_line(self):
        stream = FakeStream()
        writer = EnvelopeWriter(stream)

        await writer.send_typed("status", "", StatusData(status="connected"))

        assert stream.chunks == [b'{"type":"status","id":"","data":{"status":"connected"}}\n']

    @pytest.mark.asyncio
    async def test_concurrent_sends_never_interleave(self):
        stream = FakeStream()
        writer = EnvelopeWriter(stream)

        await asyncio.gather(
            *(writer.send_typed("message.new", str(i), {"text": "z" * 1000}) for i in range(50))
        )

        assert len(stream.chunks) == 50
        for chunk in stream.chunks:
            assert chunk.endswith(b"\n") and chunk.count(b"\n") == 1
            json.loads(chunk)
