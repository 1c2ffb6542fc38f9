"""Tests for chat id encoding."""

import pytest

from switchboard.core.domain.chat_id import PeerKind, PeerRef, encode_chat_id, parse_chat_id
from switchboard.core.domain.errors import InvalidChatId


@pytest.mark.parametrize(
    "chat_id, kind, native_id",
    [
        ("12345", PeerKind.USER, 12345),
        ("c_77", PeerKind.GROUP, 77),
        ("ch_42", PeerKind.CHANNEL, 42),
        ("0", PeerKind.USER, 0),
    ],
)
def test_parse_chat_id(chat_id, kind, native_id):
    ref = parse_chat_id(chat_id)

    assert ref == PeerRef(kind=kind, native_id=native_id)
    assert ref.chat_id == chat_id


def test_channel_prefix_wins_over_group_prefix():
    # "ch_" also starts with "c"; it must never decode as a group "h_42".
    assert parse_chat_id("ch_42").kind is PeerKind.CHANNEL


@pytest.mark.parametrize(
    "chat_id",
    ["", "not-a-number", "c_", "ch_", "ch_abc", "-5", "c_-5", "12 34", "١٢٣", "x_12"],
)
def test_parse_chat_id_rejects_invalid(chat_id):
    with pytest.raises(InvalidChatId) as exc_info:
        parse_chat_id(chat_id)

    assert exc_info.value.code == "invalid_chat_id"
    assert exc_info.value.chat_id == chat_id


def test_encode_chat_id_rejects_negative_ids():
    with pytest.raises(ValueError):
        encode_chat_id(PeerKind.USER, -1)


def test_encode_then_parse_is_identity():
    for kind in PeerKind:
        for native_id in (0, 1, 987654321012):
            assert parse_chat_id(encode_chat_id(kind, native_id)) == PeerRef(kind, native_id)
