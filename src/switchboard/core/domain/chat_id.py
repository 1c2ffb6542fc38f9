"""Chat id encoding shared by every service adapter.

A chat id is a host-opaque string that carries both the kind of native
target and its numeric identifier:

* ``"12345"``     - an individual user
* ``"c_12345"``   - a basic group
* ``"ch_12345"``  - a channel, supergroup or broadcast

``ch_`` must be tested before ``c_`` because the shorter prefix also matches
the longer one.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from switchboard.core.domain.errors import InvalidChatId


class PeerKind(str, Enum):
    """Native target kinds addressable through a chat id."""

    USER = "user"
    GROUP = "group"
    CHANNEL = "channel"


_PREFIXES: tuple[tuple[str, PeerKind], ...] = (
    ("ch_", PeerKind.CHANNEL),
    ("c_", PeerKind.GROUP),
)


@dataclass(frozen=True)
class PeerRef:
    """A decoded chat id."""

    kind: PeerKind
    native_id: int

    @property
    def chat_id(self) -> str:
        return encode_chat_id(self.kind, self.native_id)


def encode_chat_id(kind: PeerKind, native_id: int) -> str:
    """Encode a (kind, native id) pair as a chat id string."""
    if native_id < 0:
        raise ValueError(f"native id must be non-negative, got {native_id}")
    if kind is PeerKind.USER:
        return str(native_id)
    if kind is PeerKind.GROUP:
        return f"c_{native_id}"
    return f"ch_{native_id}"


def parse_chat_id(chat_id: str) -> PeerRef:
    """Decode a chat id string.

    Raises:
        InvalidChatId: If the remainder after the prefix is not a
            non-negative decimal integer.
    """
    kind = PeerKind.USER
    digits = chat_id
    for prefix, prefix_kind in _PREFIXES:
        if chat_id.startswith(prefix):
            kind = prefix_kind
            digits = chat_id[len(prefix):]
            break

    if not digits.isascii() or not digits.isdigit():
        raise InvalidChatId(chat_id)
    return PeerRef(kind=kind, native_id=int(digits))
