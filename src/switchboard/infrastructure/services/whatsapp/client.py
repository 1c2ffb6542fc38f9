"""
WhatsApp service adapter.

Implements ``ServiceClientProtocol`` on top of neonize, the Python binding
of whatsmeow. neonize drives the multi-device session from its own native
thread and calls back into the coroutines registered in ``connect``.

Sign-in is QR pairing only. A linked device gets no server-side history,
so ``chat.messages`` serves the messages seen during this session, and
``message.send`` returns a synthesized echo because WhatsApp does not
deliver a device's own sends back to it.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Iterator, Optional

import structlog

from switchboard.core.domain.auth import AuthMethod
from switchboard.core.domain.chat_id import PeerRef
from switchboard.core.domain.config_schema import BridgeSettings
from switchboard.core.domain.errors import AuthError, BridgeError, ServiceError
from switchboard.core.domain.events import MessageReceived, ServiceEvent, StatusChanged
from switchboard.core.domain.models import (
    MAX_HISTORY_LIMIT,
    AuthSuccess,
    BridgeStatus,
    Chat,
    Message,
)
from switchboard.core.interfaces.service import UserAuthenticatorProtocol
from switchboard.core.utils.time import unix_seconds
from switchboard.infrastructure.services.media import MediaCache
from switchboard.infrastructure.services.whatsapp.normalize import (
    has_image,
    normalize_contacts,
    normalize_event_message,
    peer_server,
    sender_name,
    timestamp_seconds,
)

SERVICE_NAME = "whatsapp"
IMAGE_EXT = "jpg"


@dataclass(frozen=True)
class _Pairing:
    """One update from the pairing handshake."""

    code: Optional[str] = None
    error: Optional[str] = None

    @property
    def paired(self) -> bool:
        return self.code is None and self.error is None


def to_native_jid(peer: PeerRef) -> Any:
    """Build the neonize ``JID`` addressed by a chat id."""
    # neonize loads its native library on import.
    from neonize.utils.jid import build_jid

    return build_jid(str(peer.native_id), peer_server(peer))


class WhatsAppService:
    """One neonize session exposed through the bridge's service protocol."""

    def __init__(
        self,
        client: Any,
        media: MediaCache,
        *,
        connect_timeout: float = 30.0,
        history_size: int = MAX_HISTORY_LIMIT,
    ) -> None:
        self._client = client
        self._media = media
        self._connect_timeout = connect_timeout
        self._events: asyncio.Queue[ServiceEvent] = asyncio.Queue()
        self._pairing: asyncio.Queue[_Pairing] = asyncio.Queue()
        self._history: defaultdict[str, deque[Message]] = defaultdict(
            lambda: deque(maxlen=history_size)
        )
        self._ready = asyncio.Event()
        self._runner: Optional[asyncio.Task[Any]] = None
        self._signed_in = False
        self._online = False
        self._link_lost = False
        self._closing = False
        self._logger = structlog.get_logger(__name__).bind(service=SERVICE_NAME)

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> "WhatsAppService":
        from neonize.aioze.client import NewAClient

        client = NewAClient(str(settings.session_path_for(SERVICE_NAME)))
        return cls(
            client,
            MediaCache(settings.media_dir_for(SERVICE_NAME)),
            connect_timeout=settings.whatsapp.connect_timeout_seconds,
            history_size=settings.history.max_limit,
        )

    @property
    def name(self) -> str:
        return SERVICE_NAME

    @property
    def auth_methods(self) -> tuple[AuthMethod, ...]:
        return (AuthMethod.QR,)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the session and wait until it is signed in or asks for pairing."""
        self._closing = False
        self._ready.clear()
        self._register_handlers()
        runner = self._start_client()
        try:
            await asyncio.wait_for(self._until_ready(runner), self._connect_timeout)
        except asyncio.TimeoutError as exc:
            await self._stop_client()
            raise ServiceError(
                "connect failed: timed out waiting for WhatsApp",
                service=SERVICE_NAME,
                details={"timeout": self._connect_timeout},
            ) from exc
        except Exception as exc:
            await self._stop_client()
            raise ServiceError(f"connect failed: {exc}", service=SERVICE_NAME) from exc
        self._logger.info("whatsapp.connected", signed_in=self._signed_in)

    async def _until_ready(self, runner: asyncio.Task[Any]) -> None:
        ready = asyncio.create_task(self._ready.wait(), name="whatsapp-ready")
        try:
            done, _ = await asyncio.wait({ready, runner}, return_when=asyncio.FIRST_COMPLETED)
            if ready in done:
                return
            # Raises if the client failed; otherwise its callbacks keep arriving.
            runner.result()
            await ready
        finally:
            ready.cancel()

    async def disconnect(self) -> None:
        self._closing = True
        try:
            with self._call("disconnect"):
                await self._client.disconnect()
        finally:
            await self._stop_client()
        self._logger.info("whatsapp.disconnected")

    async def is_authorized(self) -> bool:
        return self._signed_in

    async def current_user(self) -> AuthSuccess:
        with self._call("get_me"):
            me = await self._client.get_me()
        number = me.JID.User if me is not None else ""
        if not number:
            raise AuthError("not signed in")
        return AuthSuccess(user=me.PushName or number, phone=number)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        authenticator: UserAuthenticatorProtocol,
        *,
        method: AuthMethod = AuthMethod.QR,
    ) -> AuthSuccess:
        if method is not AuthMethod.QR:
            raise AuthError(
                f"{method.value} sign-in is not supported; use qr",
                details={"method": method.value},
            )
        if not self._online:
            self._logger.info("whatsapp.reconnecting_for_pairing")
            self._start_client()

        while True:
            update = await self._pairing.get()
            if update.error is not None:
                raise AuthError(f"pairing failed: {update.error}")
            if update.paired:
                break
            # Codes queued before the flow started are stale; show the newest.
            if self._pairing.empty():
                await authenticator.qr(update.code)
        return await self.current_user()

    # ------------------------------------------------------------------
    # Chats and messages
    # ------------------------------------------------------------------

    async def list_chats(self) -> list[Chat]:
        self._require_signed_in("chats.list")
        with self._call("chats.list"):
            contacts = await self._client.contact.get_all_contacts()
        return normalize_contacts(contacts)

    async def fetch_history(self, peer: PeerRef, limit: int) -> list[Message]:
        """Newest first, from the messages seen since the bridge started."""
        seen = self._history.get(peer.chat_id)
        if not seen:
            return []
        return list(reversed(seen))[:limit]

    async def send_message(self, peer: PeerRef, text: str) -> Optional[Message]:
        self._require_signed_in("message.send")
        jid = to_native_jid(peer)
        with self._call("message.send"):
            response = await self._client.send_message(jid, text)
        echo = Message(
            id=response.ID,
            chat_id=peer.chat_id,
            sender="me",
            from_me=True,
            text=text,
            timestamp=timestamp_seconds(response.Timestamp)
            or unix_seconds(datetime.now(UTC)),
        )
        self._remember(echo)
        return echo

    def _remember(self, message: Message) -> None:
        self._history[message.chat_id].append(message)

    def _require_signed_in(self, action: str) -> None:
        if not self._signed_in:
            raise ServiceError(
                f"{action} failed: not signed in; send auth.start first", service=SERVICE_NAME
            )

    async def _cache_image(self, event: Any) -> Optional[str]:
        if not has_image(event.Message):
            return None
        try:
            data = await self._client.download_any(event.Message)
        except Exception as exc:
            self._logger.warning(
                "whatsapp.image_download_failed", message_id=event.Info.ID, error=str(exc)
            )
            return None
        if not data:
            return None
        return await self._media.store(data, IMAGE_EXT)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def events(self) -> AsyncIterator[ServiceEvent]:
        while True:
            yield await self._events.get()

    def _register_handlers(self) -> None:
        from neonize.aioze.events import (
            ConnectedEv,
            DisconnectedEv,
            LoggedOutEv,
            MessageEv,
            PairStatusEv,
        )

        handlers = {
            ConnectedEv: self._on_connected,
            DisconnectedEv: self._on_disconnected,
            LoggedOutEv: self._on_logged_out,
            MessageEv: self._on_message,
            PairStatusEv: self._on_pair_status,
        }
        for event_type, handler in handlers.items():
            self._client.event(event_type)(handler)
        self._client.qr(self._on_qr)

    async def _on_qr(self, _client: Any, data: bytes | str) -> None:
        code = data.decode() if isinstance(data, bytes) else data
        self._online = True
        self._ready.set()
        self._pairing.put_nowait(_Pairing(code=code))

    async def _on_pair_status(self, _client: Any, event: Any) -> None:
        error = getattr(event, "Error", "")
        if error:
            self._logger.warning("whatsapp.pairing_failed", error=error)
            self._pairing.put_nowait(_Pairing(error=error))
            return
        self._logger.info("whatsapp.paired", user=event.ID.User)
        self._signed_in = True
        self._pairing.put_nowait(_Pairing())

    async def _on_connected(self, _client: Any, _event: Any) -> None:
        self._signed_in = True
        self._online = True
        self._ready.set()
        if self._link_lost:
            self._link_lost = False
            self._events.put_nowait(StatusChanged(status=BridgeStatus.CONNECTED))

    async def _on_disconnected(self, _client: Any, _event: Any) -> None:
        self._online = False
        if self._closing:
            return
        self._logger.warning("whatsapp.connection_lost")
        self._link_lost = True
        self._events.put_nowait(StatusChanged(status=BridgeStatus.DISCONNECTED))

    async def _on_logged_out(self, _client: Any, _event: Any) -> None:
        self._logger.warning("whatsapp.logged_out")
        self._signed_in = False
        # Pairing updates from the old session must not end a new flow.
        while not self._pairing.empty():
            self._pairing.get_nowait()
        self._events.put_nowait(StatusChanged(status=BridgeStatus.AUTH_NEEDED))

    async def _on_message(self, _client: Any, event: Any) -> None:
        image_path = await self._cache_image(event)
        message = normalize_event_message(event, image_path=image_path)
        if message is None:
            self._logger.debug("whatsapp.message_skipped", message_id=event.Info.ID)
            return
        self._remember(message)
        name = "" if message.from_me else sender_name(event.Info)
        self._events.put_nowait(MessageReceived(message=message, sender_name=name))

    # ------------------------------------------------------------------
    # Client task
    # ------------------------------------------------------------------

    def _start_client(self) -> asyncio.Task[Any]:
        self._runner = asyncio.create_task(self._client.connect(), name="whatsapp-client")
        self._runner.add_done_callback(self._on_client_stopped)
        return self._runner

    async def _stop_client(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None and not runner.done():
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)

    def _on_client_stopped(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        failure = task.exception()
        if failure is not None:
            self._logger.warning("whatsapp.client_stopped", error=str(failure))

    @contextmanager
    def _call(self, action: str) -> Iterator[None]:
        """Translate neonize and transport errors into bridge errors."""
        try:
            yield
        except BridgeError:
            raise
        except Exception as exc:
            raise ServiceError(f"{action} failed: {exc}", service=SERVICE_NAME) from exc
