"""
Protocol payload models.

Pydantic models for the normalized entities and command payloads carried in
envelope ``data``. Field names are the snake_case wire names; inbound
requests also accept camelCase aliases.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 100


class BridgeStatus(str, Enum):
    """Connection status reported in ``status`` events."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    AUTH_NEEDED = "auth_needed"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Chat(_Payload):
    """A conversation as listed to the host."""

    id: str
    name: str
    unread: int = 0
    last_message: Optional[str] = None
    last_time: Optional[int] = None
    is_group: bool = False


class Message(_Payload):
    """A single message in a conversation."""

    id: str
    chat_id: str
    sender: str = Field(alias="from")
    from_me: bool = False
    text: str = ""
    timestamp: int
    image_path: Optional[str] = None


class StatusData(_Payload):
    status: BridgeStatus


class AuthQR(_Payload):
    code: str


class AuthCodeNeeded(_Payload):
    phone_hint: str


class AuthPasswordNeeded(_Payload):
    phone_hint: str


class AuthSuccess(_Payload):
    user: str
    phone: Optional[str] = None


class Notification(_Payload):
    title: str
    body: str
    service: str


class ErrorData(_Payload):
    message: str
    code: Optional[str] = None


class ChatListResponse(_Payload):
    chats: list[Chat]


class ChatMessagesResponse(_Payload):
    messages: list[Message]


class MessageSent(_Payload):
    chat_id: str


# ---------------------------------------------------------------------------
# Requests (host -> bridge)
# ---------------------------------------------------------------------------


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AuthStartRequest(_Request):
    """Optional payload of ``auth.start``.

    Without ``method`` the service's preferred sign-in method is used.
    """

    phone: Optional[str] = None
    method: Optional[Literal["phone", "qr"]] = None


class AuthPhoneRequest(_Request):
    phone: str = Field(..., min_length=1)

    @field_validator("phone")
    @classmethod
    def strip_phone(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("phone is required")
        return v


class AuthCodeRequest(_Request):
    code: str = Field(..., min_length=1)

    @field_validator("code")
    @classmethod
    def strip_code(cls, v: str) -> str:
        return v.strip()


class AuthPasswordRequest(_Request):
    password: str = Field(..., min_length=1)


class ChatListRequest(_Request):
    pass


class ChatMessagesRequest(_Request):
    """Payload of ``chat.messages``."""

    chat_id: str = Field(..., validation_alias=AliasChoices("chat_id", "chatId"))
    limit: int = 0

    @field_validator("limit", mode="before")
    @classmethod
    def default_limit(cls, v: object) -> object:
        return 0 if v is None else v

    def clamped_limit(
        self,
        default: int = DEFAULT_HISTORY_LIMIT,
        maximum: int = MAX_HISTORY_LIMIT,
    ) -> int:
        """Return the limit bounded to what the service accepts."""
        if self.limit <= 0:
            return min(default, maximum)
        return min(self.limit, maximum)


class SendMessageRequest(_Request):
    """Payload of ``message.send``."""

    chat_id: str = Field(..., validation_alias=AliasChoices("chat_id", "chatId"))
    text: str = Field(..., min_length=1)
