"""Async envelope reader/writer over the process's stdio pipes.

Usage::

    reader, writer = await open_stdio_streams(max_line_bytes=1024 * 1024)
    while (envelope := await reader.read()) is not None:
        ...
    await writer.send_typed("status", "", StatusData(status="connected"))
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Protocol

import structlog

from switchboard.core.domain.envelope import Envelope
from switchboard.core.domain.errors import LineTooLong
from switchboard.infrastructure.protocol.codec import DELIM, decode, encode, to_wire_data

logger = structlog.get_logger(__name__)


class LineWriterProtocol(Protocol):
    """The subset of ``asyncio.StreamWriter`` the envelope writer needs."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class EnvelopeReader:
    """Read envelopes line by line from an ``asyncio.StreamReader``.

    The stream reader's own limit must be at least ``max_line_bytes``; a
    longer line raises ``LineTooLong`` after the rest of that line has been
    discarded, so the next call starts cleanly on the following line.
    """

    def __init__(self, reader: asyncio.StreamReader, *, max_line_bytes: int) -> None:
        self._reader = reader
        self._max_line_bytes = max_line_bytes

    async def read_line(self) -> bytes | None:
        """Return the next raw line without its delimiter, or ``None`` at EOF."""
        try:
            line = await self._reader.readuntil(DELIM)
        except asyncio.IncompleteReadError as exc:
            # EOF; a trailing unterminated line is still a line.
            if not exc.partial:
                return None
            if len(exc.partial) > self._max_line_bytes:
                raise LineTooLong(self._max_line_bytes) from exc
            return exc.partial
        except asyncio.LimitOverrunError as exc:
            await self._discard_line(exc.consumed)
            raise LineTooLong(self._max_line_bytes) from exc

        if len(line) - len(DELIM) > self._max_line_bytes:
            raise LineTooLong(self._max_line_bytes)
        return line[: -len(DELIM)]

    async def read(self) -> Envelope | None:
        """Return the next envelope, or ``None`` at EOF.

        Raises:
            MalformedEnvelope: The line was not a valid envelope.
            LineTooLong: The line exceeded the read limit.
        """
        while True:
            line = await self.read_line()
            if line is None:
                return None
            if not line.strip():
                continue
            return decode(line)

    async def _discard_line(self, consumed: int) -> None:
        """Drop buffered bytes up to and including the next delimiter."""
        while True:
            try:
                await self._reader.readexactly(consumed)
                await self._reader.readuntil(DELIM)
                return
            except asyncio.LimitOverrunError as exc:
                consumed = exc.consumed
            except asyncio.IncompleteReadError:
                return


class EnvelopeWriter:
    """Exclusive writer role for the outbound envelope stream.

    Every ``send`` writes and drains one complete line while holding the
    lock, so concurrent handlers never interleave partial lines.
    """

    def __init__(self, stream: LineWriterProtocol) -> None:
        self._stream = stream
        self._lock = asyncio.Lock()

    async def send(self, envelope: Envelope) -> None:
        line = encode(envelope)
        async with self._lock:
            self._stream.write(line)
            await self._stream.drain()
        logger.debug("envelope.sent", type=envelope.type, id=envelope.id)

    async def send_typed(self, msg_type: str, msg_id: str = "", data: Any = None) -> None:
        await self.send(Envelope(type=msg_type, id=msg_id, data=to_wire_data(data)))


async def open_stdio_streams(
    *, max_line_bytes: int
) -> tuple[EnvelopeReader, EnvelopeWriter]:
    """Attach asyncio streams to ``sys.stdin`` and ``sys.stdout``."""
    loop = asyncio.get_running_loop()

    stream_reader = asyncio.StreamReader(limit=max_line_bytes)
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(stream_reader), sys.stdin
    )

    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout
    )
    stream_writer = asyncio.StreamWriter(transport, protocol, None, loop)

    return (
        EnvelopeReader(stream_reader, max_line_bytes=max_line_bytes),
        EnvelopeWriter(stream_writer),
    )
