"""
Telegram service adapter.

Implements ``ServiceClientProtocol`` on top of Telethon. Requests go out as
raw TL calls so that the adapter sees the side lists of users and chats
that come with dialogs and history, and controls ``random_id`` on send.
"""

from __future__ import annotations

import asyncio
import secrets
from contextlib import contextmanager
from typing import Any, AsyncIterator, Iterator, Optional

import structlog
from telethon import TelegramClient, errors, events, functions, types
from telethon.tl.types.messages import DialogsNotModified, MessagesNotModified

from switchboard.core.domain.auth import AuthMethod
from switchboard.core.domain.chat_id import PeerRef
from switchboard.core.domain.config_schema import BridgeSettings
from switchboard.core.domain.errors import AuthError, ServiceError
from switchboard.core.domain.events import MessageReceived, ServiceEvent, StatusChanged
from switchboard.core.domain.models import AuthSuccess, BridgeStatus, Chat, Message
from switchboard.core.interfaces.service import UserAuthenticatorProtocol
from switchboard.infrastructure.services.media import MediaCache
from switchboard.infrastructure.services.telegram.normalize import (
    display_name,
    entity_chat_id,
    index_entities,
    media_cache_name,
    normalize_dialogs,
    normalize_message,
    to_native_peer,
)

SERVICE_NAME = "telegram"
DIALOG_LIMIT = 100


class TelegramService:
    """One Telethon session exposed through the bridge's service protocol."""

    def __init__(self, client: TelegramClient, media: MediaCache) -> None:
        self._client = client
        self._media = media
        self._events: asyncio.Queue[ServiceEvent] = asyncio.Queue()
        self._watcher: Optional[asyncio.Task[None]] = None
        self._closing = False
        self._logger = structlog.get_logger(__name__).bind(service=SERVICE_NAME)

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> "TelegramService":
        client = TelegramClient(
            str(settings.session_path_for(SERVICE_NAME)),
            settings.telegram.api_id,
            settings.telegram.api_hash,
        )
        return cls(client, MediaCache(settings.media_dir_for(SERVICE_NAME)))

    @property
    def name(self) -> str:
        return SERVICE_NAME

    @property
    def auth_methods(self) -> tuple[AuthMethod, ...]:
        return (AuthMethod.PHONE, AuthMethod.QR)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        self._closing = False
        with self._rpc("connect"):
            await self._client.connect()
        self._client.add_event_handler(self._on_new_message, events.NewMessage(incoming=True))
        self._watcher = asyncio.create_task(
            self._watch_connection(), name="telegram-connection"
        )
        self._logger.info("telegram.connected")

    async def disconnect(self) -> None:
        self._closing = True
        self._client.remove_event_handler(self._on_new_message)
        try:
            await self._client.disconnect()
        finally:
            if self._watcher is not None:
                self._watcher.cancel()
                await asyncio.gather(self._watcher, return_exceptions=True)
                self._watcher = None
        self._logger.info("telegram.disconnected")

    async def is_authorized(self) -> bool:
        with self._rpc("authorization check"):
            return await self._client.is_user_authorized()

    async def current_user(self) -> AuthSuccess:
        with self._rpc("get_me"):
            me = await self._client.get_me()
        if me is None:
            raise AuthError("not signed in")
        return AuthSuccess(user=display_name(me, str(me.id)), phone=me.phone or None)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        authenticator: UserAuthenticatorProtocol,
        *,
        method: AuthMethod = AuthMethod.PHONE,
    ) -> AuthSuccess:
        with self._rpc("sign-in", auth=True):
            if method is AuthMethod.QR:
                await self._qr_login(authenticator)
            else:
                await self._phone_login(authenticator)
        return await self.current_user()

    async def _phone_login(self, authenticator: UserAuthenticatorProtocol) -> None:
        phone = await authenticator.phone()
        sent = await self._client.send_code_request(phone)
        self._logger.info("telegram.code_sent", code_type=type(sent.type).__name__)
        code = await authenticator.code(phone)
        try:
            await self._client.sign_in(
                phone=phone, code=code, phone_code_hash=sent.phone_code_hash
            )
        except errors.SessionPasswordNeededError:
            await self._password_login(authenticator, phone)
        except errors.PhoneNumberUnoccupiedError:
            await authenticator.sign_up()

    async def _qr_login(self, authenticator: UserAuthenticatorProtocol) -> None:
        qr = await self._client.qr_login()
        while True:
            await authenticator.qr(qr.url)
            try:
                await qr.wait()
                return
            except asyncio.TimeoutError:
                self._logger.debug("telegram.qr_expired")
                await qr.recreate()
            except errors.SessionPasswordNeededError:
                await self._password_login(authenticator, "")
                return

    async def _password_login(self, authenticator: UserAuthenticatorProtocol, phone: str) -> None:
        password = await authenticator.password(phone)
        await self._client.sign_in(password=password)

    # ------------------------------------------------------------------
    # Chats and messages
    # ------------------------------------------------------------------

    async def list_chats(self) -> list[Chat]:
        with self._rpc("chats.list"):
            result = await self._client(
                functions.messages.GetDialogsRequest(
                    offset_date=None,
                    offset_id=0,
                    offset_peer=types.InputPeerEmpty(),
                    limit=DIALOG_LIMIT,
                    hash=0,
                )
            )
        if isinstance(result, DialogsNotModified):
            return []
        entities = index_entities(result.users, result.chats)
        return normalize_dialogs(result.dialogs, result.messages, entities)

    async def fetch_history(self, peer: PeerRef, limit: int) -> list[Message]:
        input_peer = await self._resolve(peer)
        with self._rpc("chat.messages"):
            result = await self._client(
                functions.messages.GetHistoryRequest(
                    peer=input_peer,
                    offset_id=0,
                    offset_date=None,
                    add_offset=0,
                    limit=limit,
                    max_id=0,
                    min_id=0,
                    hash=0,
                )
            )
        if isinstance(result, MessagesNotModified):
            return []

        entities = index_entities(result.users, result.chats)
        image_paths = await asyncio.gather(*(self._cache_media(msg) for msg in result.messages))
        messages: list[Message] = []
        for msg, image_path in zip(result.messages, image_paths):
            message = normalize_message(
                msg, entities, chat_id=peer.chat_id, image_path=image_path
            )
            if message is not None:
                messages.append(message)
        return messages

    async def send_message(self, peer: PeerRef, text: str) -> Optional[Message]:
        input_peer = await self._resolve(peer)
        with self._rpc("message.send"):
            await self._client(
                functions.messages.SendMessageRequest(
                    peer=input_peer,
                    message=text,
                    random_id=secrets.randbits(63),
                    no_webpage=True,
                )
            )
        return None

    async def _resolve(self, peer: PeerRef) -> Any:
        with self._rpc("resolve"):
            try:
                return await self._client.get_input_entity(to_native_peer(peer))
            except ValueError as exc:
                raise ServiceError(
                    f"unknown chat {peer.chat_id}; list chats first",
                    service=SERVICE_NAME,
                    details={"chat_id": peer.chat_id},
                ) from exc

    async def _cache_media(self, msg: Any) -> Optional[str]:
        name = media_cache_name(getattr(msg, "media", None))
        if name is None:
            return None
        return await self._media.fetch(
            name, lambda: self._client.download_media(msg.media, file=bytes)
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def events(self) -> AsyncIterator[ServiceEvent]:
        while True:
            yield await self._events.get()

    async def _on_new_message(self, event: Any) -> None:
        msg = event.message
        try:
            sender = await event.get_sender()
        except (errors.RPCError, ValueError) as exc:
            self._logger.debug("telegram.sender_unresolved", error=str(exc))
            sender = None

        sender_id = entity_chat_id(sender) if sender is not None else None
        entities = {sender_id: sender} if sender_id is not None else {}
        image_path = await self._cache_media(msg)
        message = normalize_message(msg, entities, image_path=image_path)
        if message is None:
            return
        name = display_name(sender) if sender is not None else ""
        self._events.put_nowait(MessageReceived(message=message, sender_name=name))

    async def _watch_connection(self) -> None:
        try:
            await self._client.disconnected
        except (ConnectionError, OSError) as exc:
            self._logger.warning("telegram.connection_lost", error=str(exc))
        if not self._closing:
            self._events.put_nowait(StatusChanged(status=BridgeStatus.DISCONNECTED))

    @contextmanager
    def _rpc(self, action: str, *, auth: bool = False) -> Iterator[None]:
        """Translate Telethon and transport errors into bridge errors."""
        try:
            yield
        except errors.RPCError as exc:
            details = {"rpc_code": exc.code} if getattr(exc, "code", None) else None
            if auth:
                raise AuthError(f"{action} failed: {exc.message}", details=details) from exc
            raise ServiceError(
                f"{action} failed: {exc.message}", service=SERVICE_NAME, details=details
            ) from exc
        except (ConnectionError, OSError) as exc:
            raise ServiceError(
                f"{action} failed: {exc}", service=SERVICE_NAME
            ) from exc
