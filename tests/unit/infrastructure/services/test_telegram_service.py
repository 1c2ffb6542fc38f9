"""Tests for the Telethon-backed service adapter.

The Telethon client is replaced by an ``AsyncMock``; raw TL requests sent
through ``client(request)`` are inspected via ``call_args``.
"""

import asyncio
import inspect
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from telethon import errors, functions
from telethon.tl import types

from switchboard.core.domain.auth import AuthMethod
from switchboard.core.domain.chat_id import PeerKind, PeerRef
from switchboard.core.domain.config_schema import BridgeSettings
from switchboard.core.domain.errors import AuthError, ConfigError, ServiceError, SignUpRequired
from switchboard.core.domain.events import MessageReceived, StatusChanged
from switchboard.core.domain.models import AuthSuccess, BridgeStatus
from switchboard.infrastructure.services import available_services, build_service
from switchboard.infrastructure.services.media import MediaCache
from switchboard.infrastructure.services.telegram import TelegramService

DATE = datetime(2024, 1, 1, tzinfo=UTC)
BOB = PeerRef(PeerKind.USER, 1)


def tl(cls, **fields):
    """Build a TL object, filling required fields the test does not care about.

    Telethon layers keep adding required constructor arguments.
    """
    for name, param in inspect.signature(cls.__init__).parameters.items():
        if name == "self" or name in fields or param.default is not inspect.Parameter.empty:
            continue
        if name.endswith(("_count", "_id")):
            fields[name] = 0
        elif name.endswith("s"):
            fields[name] = []
        else:
            fields[name] = None
    return cls(**fields)


def make_client():
    client = AsyncMock()
    client.add_event_handler = MagicMock()
    client.remove_event_handler = MagicMock()
    return client


@pytest.fixture
def client():
    return make_client()


@pytest.fixture
def adapter(client, tmp_path):
    return TelegramService(client, MediaCache(tmp_path))


def bob():
    return types.User(id=1, first_name="Bob", phone="4915")


def tl_message(msg_id, text="", *, media=None):
    return types.Message(
        id=msg_id, peer_id=types.PeerUser(user_id=1), date=DATE, message=text, media=media
    )


class StubAuthenticator:
    def __init__(self) -> None:
        self.qr_codes: list[str] = []
        self.password_hints: list[str] = []

    async def phone(self) -> str:
        return "+1555"

    async def code(self, phone_hint: str) -> str:
        return "12345"

    async def password(self, phone_hint: str) -> str:
        self.password_hints.append(phone_hint)
        return "hunter2"

    async def qr(self, code: str) -> None:
        self.qr_codes.append(code)

    async def sign_up(self) -> None:
        raise SignUpRequired()


class TestChats:
    @pytest.mark.asyncio
    async def test_list_chats(self, adapter, client):
        client.return_value = tl(
            types.messages.Dialogs,
            dialogs=[
                tl(
                    types.Dialog,
                    peer=types.PeerUser(user_id=1),
                    top_message=5,
                    read_inbox_max_id=0,
                    read_outbox_max_id=0,
                    unread_count=3,
                    unread_mentions_count=0,
                    unread_reactions_count=0,
                    notify_settings=types.PeerNotifySettings(),
                )
            ],
            messages=[tl_message(5, "latest")],
            chats=[],
            users=[bob()],
        )

        chats = await adapter.list_chats()

        request = client.call_args.args[0]
        assert isinstance(request, functions.messages.GetDialogsRequest)
        assert request.limit == 100
        assert [(c.id, c.name, c.unread, c.last_message) for c in chats] == [
            ("1", "Bob", 3, "latest")
        ]

    @pytest.mark.asyncio
    async def test_not_modified(self, adapter, client):
        client.return_value = types.messages.DialogsNotModified(count=0)

        assert await adapter.list_chats() == []

    @pytest.mark.asyncio
    async def test_rpc_error_becomes_service_error(self, adapter, client):
        client.side_effect = errors.RPCError(request=None, message="FLOOD_WAIT", code=420)

        with pytest.raises(ServiceError, match="chats.list failed: FLOOD_WAIT") as exc_info:
            await adapter.list_chats()

        assert exc_info.value.details == {"rpc_code": 420, "service": "telegram"}

    @pytest.mark.asyncio
    async def test_transport_error_becomes_service_error(self, adapter, client):
        client.side_effect = ConnectionError("connection reset")

        with pytest.raises(ServiceError, match="connection reset"):
            await adapter.list_chats()


class TestHistory:
    @pytest.mark.asyncio
    async def test_fetch_history_with_photo(self, adapter, client, tmp_path):
        photo = types.Photo(
            id=77, access_hash=1, file_reference=b"", date=DATE, sizes=[], dc_id=2
        )
        input_peer = types.InputPeerUser(user_id=1, access_hash=9)
        client.get_input_entity.return_value = input_peer
        client.download_media.return_value = b"jpeg-bytes"
        client.return_value = tl(
            types.messages.Messages,
            messages=[
                tl_message(2, "look", media=types.MessageMediaPhoto(photo=photo)),
                tl(
                    types.MessageService,
                    id=1,
                    peer_id=types.PeerUser(user_id=1),
                    date=DATE,
                    action=types.MessageActionHistoryClear(),
                ),
            ],
            chats=[],
            users=[bob()],
        )

        messages = await adapter.fetch_history(BOB, 20)

        request = client.call_args.args[0]
        assert isinstance(request, functions.messages.GetHistoryRequest)
        assert request.limit == 20
        assert request.peer is input_peer
        assert client.get_input_entity.call_args.args[0].user_id == 1
        assert len(messages) == 1
        assert messages[0].sender == "Bob"
        assert messages[0].image_path == str(tmp_path / "photo_77.jpg")
        assert (tmp_path / "photo_77.jpg").read_bytes() == b"jpeg-bytes"

    @pytest.mark.asyncio
    async def test_unresolvable_chat(self, adapter, client):
        client.get_input_entity.side_effect = ValueError("Could not find the input entity")

        with pytest.raises(ServiceError, match="unknown chat 1; list chats first"):
            await adapter.fetch_history(BOB, 20)
        client.assert_not_called()

    @pytest.mark.asyncio
    async def test_rpc_error_while_resolving_chat(self, adapter, client):
        client.get_input_entity.side_effect = errors.RPCError(
            request=None, message="AUTH_KEY_UNREGISTERED", code=401
        )

        with pytest.raises(ServiceError, match="resolve failed: AUTH_KEY_UNREGISTERED") as exc_info:
            await adapter.send_message(BOB, "hello")

        assert exc_info.value.details == {"rpc_code": 401, "service": "telegram"}
        client.assert_not_called()


@pytest.mark.asyncio
async def test_send_message(adapter, client):
    client.get_input_entity.return_value = types.InputPeerUser(user_id=1, access_hash=9)

    result = await adapter.send_message(BOB, "hello")

    request = client.call_args.args[0]
    assert isinstance(request, functions.messages.SendMessageRequest)
    assert request.message == "hello"
    assert request.no_webpage is True
    assert 0 <= request.random_id < 2**63
    assert result is None


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_phone_login_with_password(self, adapter, client):
        client.send_code_request.return_value = SimpleNamespace(
            phone_code_hash="hash", type=types.auth.SentCodeTypeSms(length=5)
        )
        client.sign_in.side_effect = [errors.SessionPasswordNeededError(request=None), None]
        client.get_me.return_value = types.User(id=7, first_name="Alice", phone="4917")
        authenticator = StubAuthenticator()

        result = await adapter.authenticate(authenticator)

        assert result == AuthSuccess(user="Alice", phone="4917")
        client.send_code_request.assert_awaited_once_with("+1555")
        first, second = client.sign_in.await_args_list
        assert first.kwargs == {"phone": "+1555", "code": "12345", "phone_code_hash": "hash"}
        assert second.kwargs == {"password": "hunter2"}
        assert authenticator.password_hints == ["+1555"]

    @pytest.mark.asyncio
    async def test_unregistered_number_fails(self, adapter, client):
        client.send_code_request.return_value = SimpleNamespace(
            phone_code_hash="hash", type=types.auth.SentCodeTypeSms(length=5)
        )
        client.sign_in.side_effect = errors.PhoneNumberUnoccupiedError(request=None)

        with pytest.raises(SignUpRequired):
            await adapter.authenticate(StubAuthenticator())
        client.get_me.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_code_is_auth_error(self, adapter, client):
        client.send_code_request.return_value = SimpleNamespace(
            phone_code_hash="hash", type=types.auth.SentCodeTypeSms(length=5)
        )
        client.sign_in.side_effect = errors.RPCError(
            request=None, message="PHONE_CODE_INVALID", code=400
        )

        with pytest.raises(AuthError, match="sign-in failed: PHONE_CODE_INVALID"):
            await adapter.authenticate(StubAuthenticator())

    @pytest.mark.asyncio
    async def test_qr_login_recreates_expired_token(self, adapter, client):
        qr = MagicMock()
        qr.url = "tg://login?token=abc"
        qr.wait = AsyncMock(side_effect=[asyncio.TimeoutError(), None])
        qr.recreate = AsyncMock()
        client.qr_login.return_value = qr
        client.get_me.return_value = types.User(id=7, first_name="Alice")
        authenticator = StubAuthenticator()

        result = await adapter.authenticate(authenticator, method=AuthMethod.QR)

        assert result == AuthSuccess(user="Alice", phone=None)
        assert authenticator.qr_codes == ["tg://login?token=abc"] * 2
        qr.recreate.assert_awaited_once()


class TestEvents:
    @pytest.mark.asyncio
    async def test_new_message_is_queued(self, adapter):
        event = SimpleNamespace(
            message=tl_message(9, "ping"), get_sender=AsyncMock(return_value=bob())
        )

        await adapter._on_new_message(event)
        received = await asyncio.wait_for(adapter.events().__anext__(), 1)

        assert isinstance(received, MessageReceived)
        assert received.sender_name == "Bob"
        assert received.message.chat_id == "1"
        assert received.message.text == "ping"

    @pytest.mark.asyncio
    async def test_unresolved_sender(self, adapter):
        event = SimpleNamespace(
            message=tl_message(9, "ping"),
            get_sender=AsyncMock(side_effect=ValueError("no entity")),
        )

        await adapter._on_new_message(event)
        received = await asyncio.wait_for(adapter.events().__anext__(), 1)

        assert received.sender_name == ""
        assert received.message.sender == "Unknown"

    @pytest.mark.asyncio
    async def test_connection_loss_is_reported(self, adapter, client):
        client.disconnected = asyncio.get_running_loop().create_future()

        await adapter.connect()
        client.add_event_handler.assert_called_once()
        client.disconnected.set_result(None)
        received = await asyncio.wait_for(adapter.events().__anext__(), 1)

        assert received == StatusChanged(status=BridgeStatus.DISCONNECTED)
        await adapter.disconnect()
        client.remove_event_handler.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_failure(self, adapter, client):
        client.connect.side_effect = OSError("network unreachable")

        with pytest.raises(ServiceError, match="connect failed"):
            await adapter.connect()
        client.add_event_handler.assert_not_called()


def test_registry():
    assert available_services() == ["telegram", "whatsapp"]
    with pytest.raises(ConfigError, match="unknown service 'signal'"):
        build_service("signal", BridgeSettings())
