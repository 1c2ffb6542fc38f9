"""
Command Dispatcher

Routes decoded envelopes to handlers. The wire ``type`` is an open string;
internally every recognized command is a ``CommandKind`` member and the
handler table must cover all of them. Anything else gets the explicit
"unknown command" answer.

Each recognized command runs as its own task so a slow history fetch never
holds up the read loop, other commands, or service events. The task boundary
converts every failure into exactly one ``error`` envelope carrying the
request id.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError

from switchboard.core.domain.chat_id import parse_chat_id
from switchboard.core.domain.config_schema import HistorySettings
from switchboard.core.domain.envelope import Envelope, EventType
from switchboard.core.domain.errors import (
    BridgeError,
    RequestCancelled,
    RequestValidationError,
    UnknownCommand,
    error_payload,
)
from switchboard.core.domain.models import (
    AuthCodeRequest,
    AuthPasswordRequest,
    AuthPhoneRequest,
    AuthStartRequest,
    ChatListResponse,
    ChatMessagesRequest,
    ChatMessagesResponse,
    MessageSent,
    SendMessageRequest,
)
from switchboard.core.interfaces.logging import LoggerProtocol
from switchboard.core.interfaces.protocol import EnvelopeSinkProtocol
from switchboard.core.interfaces.service import ServiceClientProtocol
from switchboard.application.auth_coordinator import AuthCoordinator
from switchboard.infrastructure.protocol.codec import parse_data


class CommandKind(str, Enum):
    """Commands the bridge accepts from the host."""

    AUTH_START = "auth.start"
    AUTH_PHONE = "auth.phone"
    AUTH_CODE = "auth.code"
    AUTH_PASSWORD = "auth.password"
    CHATS_LIST = "chats.list"
    CHAT_MESSAGES = "chat.messages"
    MESSAGE_SEND = "message.send"

    @classmethod
    def parse(cls, msg_type: str) -> Optional["CommandKind"]:
        """Return the matching kind, or ``None`` for an unrecognized type."""
        try:
            return cls(msg_type)
        except ValueError:
            return None


Handler = Callable[[Envelope], Awaitable[None]]


class CommandDispatcher:
    """Dispatch envelopes to concurrently running handler tasks."""

    def __init__(
        self,
        service: ServiceClientProtocol,
        sink: EnvelopeSinkProtocol,
        auth: AuthCoordinator,
        *,
        history: HistorySettings | None = None,
        logger: LoggerProtocol | None = None,
    ) -> None:
        self._service = service
        self._sink = sink
        self._auth = auth
        self._history = history or HistorySettings()
        self._logger = logger or structlog.get_logger(__name__).bind(service=service.name)
        self._tasks: set[asyncio.Task[None]] = set()
        self._handlers: dict[CommandKind, Handler] = {
            CommandKind.AUTH_START: self._handle_auth_start,
            CommandKind.AUTH_PHONE: self._handle_auth_phone,
            CommandKind.AUTH_CODE: self._handle_auth_code,
            CommandKind.AUTH_PASSWORD: self._handle_auth_password,
            CommandKind.CHATS_LIST: self._handle_chats_list,
            CommandKind.CHAT_MESSAGES: self._handle_chat_messages,
            CommandKind.MESSAGE_SEND: self._handle_message_send,
        }
        missing = set(CommandKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no handler for {sorted(kind.value for kind in missing)}")

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, envelope: Envelope) -> asyncio.Task[None]:
        """Start handling one envelope and return its task."""
        kind = CommandKind.parse(envelope.type)
        if kind is None:
            coro = self._handle_unknown(envelope)
        else:
            coro = self._handlers[kind](envelope)
        task = asyncio.create_task(
            self._run(envelope, coro), name=f"cmd-{envelope.type}-{envelope.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float) -> None:
        """Let in-flight handlers finish, cancelling any still running after ``timeout``."""
        if not self._tasks:
            return
        tasks = set(self._tasks)
        self._logger.info("dispatcher.draining", in_flight=len(tasks), timeout=timeout)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            self._logger.warning("dispatcher.cancelled_handlers", count=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Handler boundary
    # ------------------------------------------------------------------

    async def _run(self, envelope: Envelope, coro: Awaitable[None]) -> None:
        log = self._logger.bind(type=envelope.type, request_id=envelope.id)
        try:
            await coro
        except asyncio.CancelledError:
            log.info("command.cancelled")
            await self._emit_error(envelope.id, RequestCancelled())
            raise
        except ValidationError as exc:
            log.info("command.invalid", errors=exc.error_count())
            await self._emit_error(envelope.id, _validation_error(envelope.type, exc))
        except BridgeError as exc:
            log.warning("command.failed", error=exc.message, code=exc.code)
            await self._emit_error(envelope.id, exc)
        except Exception as exc:
            log.error("command.error", error=str(exc), error_type=type(exc).__name__)
            await self._emit_error(envelope.id, exc)

    async def _emit_error(self, request_id: str, error: BaseException) -> None:
        try:
            await self._sink.send_typed(EventType.ERROR, request_id, error_payload(error))
        except Exception as exc:
            self._logger.error("command.emit_failed", error=str(exc), request_id=request_id)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_unknown(self, envelope: Envelope) -> None:
        raise UnknownCommand(envelope.type)

    async def _handle_auth_start(self, envelope: Envelope) -> None:
        request = parse_data(envelope, AuthStartRequest)
        await self._auth.start(envelope.id, request)

    async def _handle_auth_phone(self, envelope: Envelope) -> None:
        request = parse_data(envelope, AuthPhoneRequest)
        await self._auth.submit_phone(envelope.id, request.phone)

    async def _handle_auth_code(self, envelope: Envelope) -> None:
        request = parse_data(envelope, AuthCodeRequest)
        await self._auth.submit_code(envelope.id, request.code)

    async def _handle_auth_password(self, envelope: Envelope) -> None:
        request = parse_data(envelope, AuthPasswordRequest)
        await self._auth.submit_password(envelope.id, request.password)

    async def _handle_chats_list(self, envelope: Envelope) -> None:
        chats = await self._service.list_chats()
        await self._sink.send_typed(EventType.CHATS_LIST, envelope.id, ChatListResponse(chats=chats))

    async def _handle_chat_messages(self, envelope: Envelope) -> None:
        request = parse_data(envelope, ChatMessagesRequest)
        peer = parse_chat_id(request.chat_id)
        limit = request.clamped_limit(self._history.default_limit, self._history.max_limit)
        messages = await self._service.fetch_history(peer, limit)
        await self._sink.send_typed(
            EventType.CHAT_MESSAGES, envelope.id, ChatMessagesResponse(messages=messages)
        )

    async def _handle_message_send(self, envelope: Envelope) -> None:
        request = parse_data(envelope, SendMessageRequest)
        peer = parse_chat_id(request.chat_id)
        echo = await self._service.send_message(peer, request.text)
        await self._sink.send_typed(
            EventType.MESSAGE_SENT, envelope.id, MessageSent(chat_id=request.chat_id)
        )
        if echo is not None:
            await self._sink.send_typed(EventType.MESSAGE_NEW, envelope.id, echo)


def _validation_error(msg_type: str, exc: ValidationError) -> RequestValidationError:
    """Summarize a pydantic error as one readable message."""
    parts = []
    for err in exc.errors():
        field = ".".join(str(loc) for loc in err.get("loc", ())) or "data"
        parts.append(f"{field}: {err.get('msg', 'invalid')}")
    return RequestValidationError(
        f"invalid {msg_type} payload: " + "; ".join(parts),
        details={"errors": len(parts)},
    )
