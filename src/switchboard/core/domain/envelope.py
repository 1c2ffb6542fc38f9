"""Envelope model for the line-delimited host protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Envelope:
    """One protocol message.

    ``type`` is an open string tag. ``id`` is empty for spontaneous events
    and echoes the originating request id for responses. ``data`` is any
    JSON value; ``None`` is sent as an explicit ``null``.
    """

    type: str
    id: str = ""
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the envelope for transport."""
        return {"type": self.type, "id": self.id, "data": self.data}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Envelope":
        """Build an envelope from an already validated mapping."""
        return cls(
            type=str(data["type"]),
            id=str(data.get("id") or ""),
            data=data.get("data"),
        )


class EventType:
    """Envelope types emitted by the bridge."""

    STATUS = "status"
    AUTH_PHONE_NEEDED = "auth.phone_needed"
    AUTH_CODE_NEEDED = "auth.code_needed"
    AUTH_PASSWORD_NEEDED = "auth.password_needed"
    AUTH_QR = "auth.qr"
    AUTH_SUCCESS = "auth.success"
    CHATS_LIST = "chats.list"
    CHAT_MESSAGES = "chat.messages"
    MESSAGE_SENT = "message.sent"
    MESSAGE_NEW = "message.new"
    NOTIFICATION = "notification"
    ERROR = "error"
