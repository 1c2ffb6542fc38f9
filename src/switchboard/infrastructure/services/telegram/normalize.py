"""Conversion between Telethon TL objects and the bridge's models.

Works on raw TL results (``messages.Dialogs``, ``messages.Messages`` and
their slice/channel variants), where users and chats arrive as side lists
next to the dialogs or messages that reference them.
"""

from __future__ import annotations

import mimetypes
from typing import Any, Iterable, Optional

from telethon.tl import types

from switchboard.core.domain.chat_id import PeerKind, PeerRef, encode_chat_id
from switchboard.core.domain.models import Chat, Message
from switchboard.core.utils.time import unix_seconds
from switchboard.infrastructure.services.media import MediaCache

UNKNOWN_SENDER = "Unknown"

Entity = Any
EntityIndex = dict[str, Entity]


def peer_to_chat_id(peer: Any) -> Optional[str]:
    """Encode a TL ``Peer`` as a chat id, or ``None`` for unsupported peers."""
    if isinstance(peer, types.PeerUser):
        return encode_chat_id(PeerKind.USER, peer.user_id)
    if isinstance(peer, types.PeerChat):
        return encode_chat_id(PeerKind.GROUP, peer.chat_id)
    if isinstance(peer, types.PeerChannel):
        return encode_chat_id(PeerKind.CHANNEL, peer.channel_id)
    return None


def to_native_peer(ref: PeerRef) -> types.PeerUser | types.PeerChat | types.PeerChannel:
    """Build the TL ``Peer`` a decoded chat id refers to."""
    if ref.kind is PeerKind.GROUP:
        return types.PeerChat(chat_id=ref.native_id)
    if ref.kind is PeerKind.CHANNEL:
        return types.PeerChannel(channel_id=ref.native_id)
    return types.PeerUser(user_id=ref.native_id)


def entity_chat_id(entity: Entity) -> Optional[str]:
    if isinstance(entity, (types.User, types.UserEmpty)):
        return encode_chat_id(PeerKind.USER, entity.id)
    if isinstance(entity, (types.Chat, types.ChatForbidden, types.ChatEmpty)):
        return encode_chat_id(PeerKind.GROUP, entity.id)
    if isinstance(entity, (types.Channel, types.ChannelForbidden)):
        return encode_chat_id(PeerKind.CHANNEL, entity.id)
    return None


def index_entities(users: Iterable[Entity], chats: Iterable[Entity]) -> EntityIndex:
    """Key users and chats by the chat id that addresses them."""
    index: EntityIndex = {}
    for entity in (*users, *chats):
        chat_id = entity_chat_id(entity)
        if chat_id is not None:
            index[chat_id] = entity
    return index


def display_name(entity: Entity, fallback: str = "") -> str:
    """Full name, then username handle, then ``fallback``.

    Chats and channels use their title.
    """
    if isinstance(entity, types.User):
        name = " ".join(part for part in (entity.first_name, entity.last_name) if part)
        return name or entity.username or fallback
    title = getattr(entity, "title", None)
    return title or fallback


def is_group_entity(entity: Entity) -> bool:
    if isinstance(entity, (types.Chat, types.ChatForbidden)):
        return True
    if isinstance(entity, types.Channel):
        return bool(entity.megagroup or entity.broadcast)
    return False


def normalize_dialogs(
    dialogs: Iterable[Any],
    messages: Iterable[Any],
    entities: EntityIndex,
) -> list[Chat]:
    """Build the chat list from a ``messages.getDialogs`` result."""
    top_messages: dict[tuple[str, int], types.Message] = {}
    for msg in messages:
        if isinstance(msg, types.Message):
            chat_id = peer_to_chat_id(msg.peer_id)
            if chat_id is not None:
                top_messages[(chat_id, msg.id)] = msg

    chats: list[Chat] = []
    for dialog in dialogs:
        if not isinstance(dialog, types.Dialog):
            continue
        chat_id = peer_to_chat_id(dialog.peer)
        if chat_id is None:
            continue
        entity = entities.get(chat_id)
        if isinstance(dialog.peer, types.PeerChat):
            is_group = True
        else:
            is_group = entity is not None and is_group_entity(entity)

        top = top_messages.get((chat_id, dialog.top_message))
        chats.append(
            Chat(
                id=chat_id,
                name=display_name(entity, chat_id) if entity is not None else chat_id,
                unread=dialog.unread_count or 0,
                last_message=top.message if top is not None else None,
                last_time=unix_seconds(top.date) if top is not None else None,
                is_group=is_group,
            )
        )
    return chats


def sender_name(msg: Any, entities: EntityIndex) -> str:
    """Resolve who sent ``msg``; channel posts fall back to the channel title."""
    sender_id = peer_to_chat_id(msg.from_id) if msg.from_id is not None else None
    if sender_id is None and not msg.out:
        # Posts in broadcast channels and private chats carry no from_id.
        sender_id = peer_to_chat_id(msg.peer_id)
    entity = entities.get(sender_id) if sender_id is not None else None
    if entity is None:
        return UNKNOWN_SENDER
    return display_name(entity, UNKNOWN_SENDER)


def normalize_message(
    msg: Any,
    entities: EntityIndex,
    *,
    chat_id: Optional[str] = None,
    image_path: Optional[str] = None,
) -> Optional[Message]:
    """Convert a TL message; service and empty messages yield ``None``."""
    if not isinstance(msg, types.Message):
        return None
    chat_id = chat_id or peer_to_chat_id(msg.peer_id)
    if chat_id is None:
        return None
    return Message(
        id=str(msg.id),
        chat_id=chat_id,
        sender=sender_name(msg, entities),
        from_me=bool(msg.out),
        text=msg.message or "",
        timestamp=unix_seconds(msg.date),
        image_path=image_path,
    )


def media_cache_name(media: Any) -> Optional[str]:
    """Cache file name for an image attachment, or ``None`` if not an image."""
    if isinstance(media, types.MessageMediaPhoto) and isinstance(media.photo, types.Photo):
        return MediaCache.id_name("photo", media.photo.id)
    if isinstance(media, types.MessageMediaDocument) and isinstance(
        media.document, types.Document
    ):
        mime = media.document.mime_type or ""
        if mime.startswith("image/"):
            ext = (mimetypes.guess_extension(mime) or ".img").lstrip(".")
            return MediaCache.id_name("image", media.document.id, ext)
    return None
