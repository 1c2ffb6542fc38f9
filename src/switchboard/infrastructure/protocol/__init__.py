"""Envelope codec and stdio streams."""

from switchboard.infrastructure.protocol.codec import decode, encode, parse_data
from switchboard.infrastructure.protocol.stream import (
    EnvelopeReader,
    EnvelopeWriter,
    open_stdio_streams,
)

__all__ = [
    "EnvelopeReader",
    "EnvelopeWriter",
    "decode",
    "encode",
    "open_stdio_streams",
    "parse_data",
]
