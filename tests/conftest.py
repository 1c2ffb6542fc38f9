"""Test configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Optional

import pytest

from switchboard.core.domain.auth import AuthMethod
from switchboard.core.domain.chat_id import PeerRef
from switchboard.core.domain.envelope import Envelope
from switchboard.core.domain.errors import AuthError
from switchboard.core.domain.events import ServiceEvent
from switchboard.core.domain.models import AuthSuccess, Chat, Message
from switchboard.infrastructure.protocol.codec import to_wire_data

PHONE = "+49 170 0000000"


class RecordingSink:
    """Envelope sink that keeps every envelope in wire form."""

    def __init__(self) -> None:
        self.envelopes: list[Envelope] = []

    async def send(self, envelope: Envelope) -> None:
        self.envelopes.append(envelope)

    async def send_typed(self, msg_type: str, msg_id: str = "", data: Any = None) -> None:
        await self.send(Envelope(type=msg_type, id=msg_id, data=to_wire_data(data)))

    def of_type(self, msg_type: str) -> list[Envelope]:
        return [env for env in self.envelopes if env.type == msg_type]

    def find(self, msg_type: str, msg_id: Optional[str] = None) -> Optional[Envelope]:
        for env in self.envelopes:
            if env.type == msg_type and (msg_id is None or env.id == msg_id):
                return env
        return None

    def types(self) -> list[str]:
        return [env.type for env in self.envelopes]

    async def wait_for(self, predicate: Callable[[], Any], timeout: float = 2.0) -> None:
        async def _poll() -> None:
            while not predicate():
                await asyncio.sleep(0.001)

        await asyncio.wait_for(_poll(), timeout)


class FakeService:
    """Scriptable in-memory ``ServiceClientProtocol`` implementation."""

    def __init__(self) -> None:
        self.authorized = False
        self.user = AuthSuccess(user="Alice Smith", phone="49170000")
        self.expected_code = "12345"
        self.password: Optional[str] = None
        self.unregistered = False
        self.qr_tokens = ["tg://login?token=first"]
        self.qr_scanned = asyncio.Event()
        self.auth_methods = (AuthMethod.PHONE, AuthMethod.QR)
        self.connect_error: Optional[Exception] = None

        self.chats = [Chat(id="42", name="Bob", unread=1, last_message="hey", last_time=1700000000)]
        self.history = [
            Message(id="1", chat_id="ch_99", sender="Carol", text="first", timestamp=1700000001)
        ]
        self.history_gate: Optional[asyncio.Event] = None
        self.echo: Optional[Message] = None
        self.fail_with: Optional[Exception] = None

        self.connected = False
        self.disconnected = False
        self.received_codes: list[str] = []
        self.history_calls: list[tuple[PeerRef, int]] = []
        self.sent: list[tuple[PeerRef, str]] = []
        self._events: asyncio.Queue[ServiceEvent] = asyncio.Queue()

    @property
    def name(self) -> str:
        return "telegram"

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnected = True

    async def is_authorized(self) -> bool:
        return self.authorized

    async def current_user(self) -> AuthSuccess:
        return self.user

    async def authenticate(self, authenticator, *, method=AuthMethod.PHONE) -> AuthSuccess:
        phone = ""
        if method is AuthMethod.QR:
            for token in self.qr_tokens:
                await authenticator.qr(token)
            await self.qr_scanned.wait()
        else:
            phone = await authenticator.phone()
            if self.unregistered:
                await authenticator.sign_up()
            code = await authenticator.code(phone)
            self.received_codes.append(code)
            if code != self.expected_code:
                raise AuthError("The phone code entered was invalid")
        if self.password is not None:
            password = await authenticator.password(phone)
            if password != self.password:
                raise AuthError("The password (and thus its hash value) you entered is invalid")
        self.authorized = True
        return self.user

    async def list_chats(self) -> list[Chat]:
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.chats)

    async def fetch_history(self, peer: PeerRef, limit: int) -> list[Message]:
        self.history_calls.append((peer, limit))
        if self.history_gate is not None:
            await self.history_gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.history)

    async def send_message(self, peer: PeerRef, text: str) -> Optional[Message]:
        self.sent.append((peer, text))
        if self.fail_with is not None:
            raise self.fail_with
        return self.echo

    def push_event(self, event: ServiceEvent) -> None:
        self._events.put_nowait(event)

    async def events(self) -> AsyncIterator[ServiceEvent]:
        while True:
            yield await self._events.get()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Point configuration at a temporary directory with no credentials."""
    for name in ("SWITCHBOARD_CONFIG_DIR", "TELEGRAM_API_ID", "TELEGRAM_API_HASH", "LOGLEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SWITCHBOARD_CONFIG_DIR", str(tmp_path / "config"))
    return tmp_path / "config"
