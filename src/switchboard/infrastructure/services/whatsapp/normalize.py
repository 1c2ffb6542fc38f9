"""
WhatsApp object normalization.

Maps neonize protobuf objects (JIDs, contacts, message events) onto the
bridge's ``Chat``/``Message`` models. Only attribute access and
``HasField`` are used, so nothing here needs the native library loaded.

JIDs map onto the shared chat id scheme by server:

* ``<digits>@s.whatsapp.net`` - an individual user (``"<digits>"``)
* ``<digits>@g.us``           - a group (``"c_<digits>"``)
* ``<digits>@newsletter``     - a channel (``"ch_<digits>"``)

Other JIDs (legacy ``creator-timestamp`` groups, ``@lid`` and broadcast
lists) have no chat id and are skipped.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from switchboard.core.domain.chat_id import PeerKind, PeerRef
from switchboard.core.domain.models import Chat, Message
from switchboard.core.utils.time import unix_seconds

USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"
NEWSLETTER_SERVER = "newsletter"

_SERVER_KINDS = {
    USER_SERVER: PeerKind.USER,
    GROUP_SERVER: PeerKind.GROUP,
    NEWSLETTER_SERVER: PeerKind.CHANNEL,
}
_KIND_SERVERS = {kind: server for server, kind in _SERVER_KINDS.items()}

# Timestamps past this are milliseconds.
_MILLIS_THRESHOLD = 10**11


def jid_to_peer(jid: Any) -> Optional[PeerRef]:
    """Return the chat address of a JID, or ``None`` if it has none."""
    if jid is None:
        return None
    kind = _SERVER_KINDS.get(getattr(jid, "Server", ""))
    user = getattr(jid, "User", "")
    if kind is None or not user.isascii() or not user.isdigit():
        return None
    return PeerRef(kind=kind, native_id=int(user))


def peer_server(peer: PeerRef) -> str:
    return _KIND_SERVERS[peer.kind]


def timestamp_seconds(value: int | float | None) -> int:
    if value and value > _MILLIS_THRESHOLD:
        return int(value) // 1000
    return unix_seconds(value)


def contact_name(contact: Any) -> str:
    """Full name, then push name, then the bare number."""
    info = getattr(contact, "Info", None)
    for field in ("FullName", "PushName", "BusinessName"):
        name = getattr(info, field, "") if info is not None else ""
        if name:
            return name
    return getattr(contact.JID, "User", "")


def normalize_contacts(contacts: Iterable[Any]) -> list[Chat]:
    """Contact store entries as chats, ordered by name."""
    chats: list[Chat] = []
    for contact in contacts:
        peer = jid_to_peer(getattr(contact, "JID", None))
        if peer is None:
            continue
        chats.append(
            Chat(
                id=peer.chat_id,
                name=contact_name(contact),
                is_group=peer.kind is PeerKind.GROUP,
            )
        )
    chats.sort(key=lambda chat: chat.name.casefold())
    return chats


def message_text(message: Any) -> str:
    """Plain text of a message: conversation, extended text, or image caption."""
    if message is None:
        return ""
    if message.conversation:
        return message.conversation
    if message.HasField("extendedTextMessage"):
        return message.extendedTextMessage.text
    if message.HasField("imageMessage"):
        return message.imageMessage.caption
    return ""


def has_image(message: Any) -> bool:
    return message is not None and message.HasField("imageMessage")


def sender_name(info: Any) -> str:
    """Push name of the sender, else the sender's number."""
    return info.Pushname or info.MessageSource.Sender.User


def normalize_event_message(
    event: Any, *, image_path: Optional[str] = None
) -> Optional[Message]:
    """Convert a ``MessageEv``; ``None`` for chats without a chat id."""
    info = event.Info
    source = info.MessageSource
    peer = jid_to_peer(source.Chat)
    if peer is None:
        return None
    text = message_text(event.Message)
    if not text and image_path is None:
        return None
    return Message(
        id=info.ID,
        chat_id=peer.chat_id,
        sender="me" if source.IsFromMe else sender_name(info),
        from_me=bool(source.IsFromMe),
        text=text,
        timestamp=timestamp_seconds(info.Timestamp),
        image_path=image_path,
    )
