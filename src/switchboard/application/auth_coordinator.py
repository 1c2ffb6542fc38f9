"""
Auth Coordinator

Bridges a service's callback-driven sign-in flow with auth commands that
arrive over the envelope stream whenever the host sends them.

The service adapter runs ``authenticate(flow)`` as a coordinator-owned task
and calls back into the flow for the phone number, the verification code and
the two-step password. Each answer is handed over through a single-slot
``Mailbox``: the callback waits on the slot and the matching host command
fills it. A newer answer replaces one that has not been consumed yet.

State machine::

    idle -> phone_needed -> code_needed -> (password_needed) -> authenticated
    idle -> qr_pending -> (password_needed) -> authenticated
    any non-terminal state -> failed

At most one flow is active. ``auth.start`` builds a fresh flow, publishes it
into the active slot and only then retires the previous one: its pending
waits fail with ``AuthSuperseded`` and, if it is still suspended inside the
service after the grace period, its task is cancelled. Every flow task stays
tracked until it finishes so ``shutdown`` can settle all of them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from switchboard.core.domain.auth import AuthMethod, AuthState
from switchboard.core.domain.envelope import EventType
from switchboard.core.domain.errors import (
    AuthCancelled,
    AuthStateError,
    AuthSuperseded,
    BridgeError,
    RequestValidationError,
    SignUpRequired,
    error_payload,
)
from switchboard.core.domain.models import (
    AuthCodeNeeded,
    AuthPasswordNeeded,
    AuthQR,
    AuthStartRequest,
    AuthSuccess,
)
from switchboard.core.interfaces.logging import LoggerProtocol
from switchboard.core.interfaces.protocol import EnvelopeSinkProtocol
from switchboard.core.interfaces.service import ServiceClientProtocol
from switchboard.application.mailbox import Mailbox


@dataclass(frozen=True)
class _Answer:
    """A value delivered by a host command, tagged with that command's id."""

    value: str
    request_id: str


class AuthFlow:
    """One interactive sign-in attempt.

    Implements ``UserAuthenticatorProtocol`` for the service adapter.
    ``reply_to`` tracks the id of the most recent command that fed the flow;
    prompts and the terminal ``auth.success``/``error`` answer that command.
    """

    def __init__(
        self,
        *,
        sink: EnvelopeSinkProtocol,
        request_id: str,
        method: AuthMethod = AuthMethod.PHONE,
    ) -> None:
        self.method = method
        self.state = AuthState.QR_PENDING if method is AuthMethod.QR else AuthState.PHONE_NEEDED
        self.reply_to = request_id
        self.task: Optional[asyncio.Task[None]] = None
        self._sink = sink
        self._phone = ""
        self._qr_shown = False
        self._code_box: Mailbox[_Answer] = Mailbox()
        self._password_box: Mailbox[_Answer] = Mailbox()
        self._closed_with: Optional[BridgeError] = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def phone_hint(self) -> str:
        return self._phone

    @property
    def closed_with(self) -> Optional[BridgeError]:
        return self._closed_with

    # ------------------------------------------------------------------
    # UserAuthenticatorProtocol
    # ------------------------------------------------------------------

    async def phone(self) -> str:
        self._ensure_open()
        return self._phone

    async def code(self, phone_hint: str) -> str:
        self._ensure_open()
        self.state = AuthState.CODE_NEEDED
        await self._sink.send_typed(
            EventType.AUTH_CODE_NEEDED,
            self.reply_to,
            AuthCodeNeeded(phone_hint=phone_hint or self._phone),
        )
        answer = await self._code_box.get()
        self.reply_to = answer.request_id
        return answer.value

    async def password(self, phone_hint: str) -> str:
        self._ensure_open()
        self.state = AuthState.PASSWORD_NEEDED
        await self._sink.send_typed(
            EventType.AUTH_PASSWORD_NEEDED,
            self.reply_to,
            AuthPasswordNeeded(phone_hint=phone_hint or self._phone),
        )
        answer = await self._password_box.get()
        self.reply_to = answer.request_id
        return answer.value

    async def qr(self, code: str) -> None:
        self._ensure_open()
        self.state = AuthState.QR_PENDING
        # Token refreshes are spontaneous; only the first answers auth.start.
        msg_id = "" if self._qr_shown else self.reply_to
        self._qr_shown = True
        await self._sink.send_typed(EventType.AUTH_QR, msg_id, AuthQR(code=code))

    async def sign_up(self) -> None:
        raise SignUpRequired()

    # ------------------------------------------------------------------
    # Host-side delivery
    # ------------------------------------------------------------------

    def begin(self, phone: str, request_id: str) -> None:
        self._phone = phone
        self.reply_to = request_id

    def accepts_code(self) -> bool:
        # A code may arrive before the service has asked for it.
        return self.running and self.state in (AuthState.PHONE_NEEDED, AuthState.CODE_NEEDED)

    def accepts_password(self) -> bool:
        return self.running and self.state is AuthState.PASSWORD_NEEDED

    def deliver_code(self, answer: _Answer) -> Optional[_Answer]:
        return self._code_box.put(answer)

    def deliver_password(self, answer: _Answer) -> Optional[_Answer]:
        return self._password_box.put(answer)

    def close(self, error: BridgeError) -> list[_Answer]:
        """Fail pending waits; return answers that were never consumed."""
        if self._closed_with is None:
            self._closed_with = error
        undelivered = [self._code_box.close(error), self._password_box.close(error)]
        return [answer for answer in undelivered if answer is not None]

    def _ensure_open(self) -> None:
        if self._closed_with is not None:
            raise self._closed_with


class AuthCoordinator:
    """Owns the single active ``AuthFlow`` and drives it from host commands."""

    def __init__(
        self,
        service: ServiceClientProtocol,
        sink: EnvelopeSinkProtocol,
        *,
        logger: LoggerProtocol | None = None,
        shutdown_grace: float = 1.0,
    ) -> None:
        self._service = service
        self._sink = sink
        self._shutdown_grace = shutdown_grace
        self._logger = logger or structlog.get_logger(__name__).bind(service=service.name)
        self._flow: Optional[AuthFlow] = None
        self._resting_state = AuthState.IDLE
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def state(self) -> AuthState:
        if self._flow is not None:
            return self._flow.state
        return self._resting_state

    @property
    def active_flow(self) -> Optional[AuthFlow]:
        return self._flow

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self, request_id: str, request: AuthStartRequest | None = None) -> None:
        """Handle ``auth.start``."""
        request = request or AuthStartRequest()
        self._ensure_open()
        method = self._resolve_method(request)

        if await self._service.is_authorized():
            user = await self._service.current_user()
            self._ensure_open()
            previous = self._swap(None)
            self._resting_state = AuthState.AUTHENTICATED
            await self._retire(previous, AuthSuperseded())
            self._logger.info("auth.already_authorized", user=user.user)
            await self._sink.send_typed(EventType.AUTH_SUCCESS, request_id, user)
            return

        self._ensure_open()
        flow = AuthFlow(sink=self._sink, request_id=request_id, method=method)
        previous = self._swap(flow)
        await self._retire(previous, AuthSuperseded())
        if self._flow is not flow:
            # Replaced again while the previous flow was being retired.
            raise AuthSuperseded()
        self._ensure_open()
        self._logger.info("auth.flow_started", method=method.value, request_id=request_id)

        if method is AuthMethod.QR:
            self._launch(flow)
            return

        if request.phone and request.phone.strip():
            self._begin_phone(flow, request.phone.strip(), request_id)
            return

        await self._sink.send_typed(EventType.AUTH_PHONE_NEEDED, request_id, None)

    async def submit_phone(self, request_id: str, phone: str) -> None:
        """Handle ``auth.phone``."""
        flow = self._flow
        if flow is None or flow.state is not AuthState.PHONE_NEEDED or flow.running:
            raise AuthStateError(
                "no authentication is waiting for a phone number; send auth.start first",
                state=self.state.value,
            )
        self._begin_phone(flow, phone, request_id)

    async def submit_code(self, request_id: str, code: str) -> None:
        """Handle ``auth.code``.

        The answer to this command is the flow's next prompt or its terminal
        envelope. A code displaced by a newer one is answered with an error.
        """
        flow = self._flow
        if flow is None or not flow.accepts_code():
            raise AuthStateError(
                "no authentication is waiting for a code", state=self.state.value
            )
        displaced = flow.deliver_code(_Answer(code, request_id))
        if displaced is not None:
            self._logger.info("auth.code_replaced", request_id=displaced.request_id)
            await self._emit_error(
                displaced.request_id, AuthStateError("superseded by a newer code")
            )

    async def submit_password(self, request_id: str, password: str) -> None:
        """Handle ``auth.password``."""
        flow = self._flow
        if flow is None or not flow.accepts_password():
            raise AuthStateError(
                "no authentication is waiting for a password", state=self.state.value
            )
        displaced = flow.deliver_password(_Answer(password, request_id))
        if displaced is not None:
            await self._emit_error(
                displaced.request_id, AuthStateError("superseded by a newer password")
            )

    async def shutdown(self) -> None:
        """Cancel every flow's waits and settle every flow task.

        Later ``auth.start`` commands fail with ``AuthCancelled``.
        """
        self._closed = True
        flow = self._flow
        if flow is not None:
            await self._reject_all(flow.close(AuthCancelled()), AuthCancelled())
        await self._settle(set(self._tasks))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise AuthCancelled()

    def _resolve_method(self, request: AuthStartRequest) -> AuthMethod:
        supported = self._service.auth_methods
        if request.method is None:
            return supported[0]
        method = AuthMethod(request.method)
        if method not in supported:
            raise RequestValidationError(
                f"{self._service.name} does not support {method.value} sign-in",
                details={"method": method.value},
            )
        return method

    def _swap(self, flow: Optional[AuthFlow]) -> Optional[AuthFlow]:
        """Publish ``flow`` as the active flow and return the one it replaced."""
        previous = self._flow
        self._flow = flow
        return previous

    async def _retire(self, flow: Optional[AuthFlow], error: BridgeError) -> None:
        """Fail a replaced flow's waits and make sure its task ends."""
        if flow is None:
            return
        if not flow.state.is_terminal:
            self._logger.info("auth.flow_superseded", request_id=flow.reply_to)
            await self._reject_all(flow.close(error), error)
        if flow.task is not None:
            await self._settle({flow.task})

    async def _settle(self, tasks: set[asyncio.Task[None]]) -> None:
        # Closed waits fail at once; a call suspended in the service is cancelled.
        tasks = {task for task in tasks if not task.done()}
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=self._shutdown_grace)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _begin_phone(self, flow: AuthFlow, phone: str, request_id: str) -> None:
        flow.begin(phone, request_id)
        self._launch(flow)

    def _launch(self, flow: AuthFlow) -> None:
        flow.task = asyncio.create_task(self._run(flow), name=f"auth-flow-{flow.method.value}")
        self._tasks.add(flow.task)
        flow.task.add_done_callback(self._tasks.discard)

    async def _run(self, flow: AuthFlow) -> None:
        try:
            result: AuthSuccess = await self._service.authenticate(flow, method=flow.method)
        except asyncio.CancelledError:
            flow.state = AuthState.FAILED
            await self._emit_error(flow.reply_to, flow.closed_with or AuthCancelled())
            raise
        except BridgeError as exc:
            flow.state = AuthState.FAILED
            self._logger.warning("auth.flow_failed", error=exc.message, code=exc.code)
            await self._emit_error(flow.reply_to, exc)
            return
        except Exception as exc:
            flow.state = AuthState.FAILED
            self._logger.error("auth.flow_error", error=str(exc), error_type=type(exc).__name__)
            await self._emit_error(flow.reply_to, exc)
            return

        if flow.closed_with is not None:
            # The service finished after the flow was retired.
            flow.state = AuthState.FAILED
            self._logger.warning("auth.stale_success", user=result.user, code=flow.closed_with.code)
            await self._emit_error(flow.reply_to, flow.closed_with)
            return

        flow.state = AuthState.AUTHENTICATED
        if self._flow is flow:
            self._resting_state = AuthState.AUTHENTICATED
        self._logger.info("auth.authenticated", user=result.user)
        await self._sink.send_typed(EventType.AUTH_SUCCESS, flow.reply_to, result)

    async def _reject_all(self, answers: list[_Answer], error: BridgeError) -> None:
        for answer in answers:
            await self._emit_error(answer.request_id, error)

    async def _emit_error(self, request_id: str, error: BaseException) -> None:
        try:
            await self._sink.send_typed(EventType.ERROR, request_id, error_payload(error))
        except Exception as exc:
            self._logger.error("auth.emit_failed", error=str(exc), request_id=request_id)
