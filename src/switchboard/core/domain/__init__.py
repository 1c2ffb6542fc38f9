"""
Domain Models

This package contains the core domain models for the Switchboard bridge:
- Protocol envelope and payload models
- Chat id encoding
- Authentication states
- Error taxonomy
"""

from switchboard.core.domain.chat_id import PeerKind, PeerRef, encode_chat_id, parse_chat_id
from switchboard.core.domain.envelope import Envelope, EventType
from switchboard.core.domain.models import BridgeStatus, Chat, Message

__all__ = [
    "BridgeStatus",
    "Chat",
    "Envelope",
    "EventType",
    "Message",
    "PeerKind",
    "PeerRef",
    "encode_chat_id",
    "parse_chat_id",
]
