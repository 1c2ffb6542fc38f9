"""
Bridge Runtime

Wires one service session to the envelope stream and owns the process
lifecycle:

1. connect the service (failure is fatal and writes nothing to stdout)
2. ``status connected``, then ``auth.success`` if the stored session is
   signed in, otherwise ``status auth_needed``
3. start the event forwarder and read commands until stdin EOF or a
   shutdown signal
4. cancel auth waits, drain in-flight commands, stop the forwarder, emit a
   single ``status disconnected`` and disconnect the service
"""

from __future__ import annotations

import asyncio
import signal
from typing import Optional

import structlog

from switchboard.core.domain.config_schema import BridgeSettings
from switchboard.core.domain.envelope import EventType
from switchboard.core.domain.errors import LineTooLong, MalformedEnvelope
from switchboard.core.domain.models import BridgeStatus, StatusData
from switchboard.core.interfaces.logging import LoggerProtocol
from switchboard.core.interfaces.protocol import EnvelopeSinkProtocol
from switchboard.core.interfaces.service import ServiceClientProtocol
from switchboard.application.auth_coordinator import AuthCoordinator
from switchboard.application.dispatcher import CommandDispatcher
from switchboard.application.event_forwarder import EventForwarder
from switchboard.infrastructure.protocol.stream import EnvelopeReader, open_stdio_streams

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Bridge:
    """One bridge process: a service session behind the envelope protocol."""

    def __init__(
        self,
        service: ServiceClientProtocol,
        reader: EnvelopeReader,
        writer: EnvelopeSinkProtocol,
        *,
        settings: BridgeSettings | None = None,
        logger: LoggerProtocol | None = None,
    ) -> None:
        self._settings = settings or BridgeSettings()
        self._service = service
        self._reader = reader
        self._writer = writer
        self._logger = logger or structlog.get_logger(__name__).bind(service=service.name)
        self._stop = asyncio.Event()
        self.auth = AuthCoordinator(
            service,
            writer,
            shutdown_grace=min(1.0, self._settings.shutdown_grace_seconds),
        )
        self.dispatcher = CommandDispatcher(
            service, writer, self.auth, history=self._settings.history
        )
        self.forwarder = EventForwarder(service, writer)

    def request_stop(self, reason: str = "requested") -> None:
        """Ask the read loop to end; shutdown then proceeds as on EOF."""
        if not self._stop.is_set():
            self._logger.info("bridge.stop_requested", reason=reason)
            self._stop.set()

    async def run(self) -> None:
        """Run until stdin closes or a stop is requested.

        Raises:
            Exception: Whatever ``service.connect()`` raised. Nothing has
                been written to the envelope stream in that case.
        """
        await self._service.connect()
        self._logger.info("bridge.connected")

        installed = self._install_signal_handlers()
        try:
            await self._announce()
            await self.forwarder.start()
            await self._read_loop()
        finally:
            self._remove_signal_handlers(installed)
            await self._shutdown()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def _announce(self) -> None:
        await self._emit_status(BridgeStatus.CONNECTED)
        try:
            authorized = await self._service.is_authorized()
            user = await self._service.current_user() if authorized else None
        except Exception as exc:
            self._logger.warning("bridge.auth_probe_failed", error=str(exc))
            user = None

        if user is not None:
            self._logger.info("bridge.session_restored", user=user.user)
            await self._writer.send_typed(EventType.AUTH_SUCCESS, "", user)
        else:
            await self._emit_status(BridgeStatus.AUTH_NEEDED)

    # ------------------------------------------------------------------
    # Read loop
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        stop_waiter = asyncio.create_task(self._stop.wait(), name="bridge-stop")
        try:
            while not self._stop.is_set():
                read = asyncio.create_task(self._reader.read(), name="bridge-read")
                done, _ = await asyncio.wait(
                    {read, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if read not in done:
                    read.cancel()
                    await asyncio.gather(read, return_exceptions=True)
                    return

                try:
                    envelope = read.result()
                except (MalformedEnvelope, LineTooLong) as exc:
                    self._logger.warning("bridge.bad_line", error=exc.message, code=exc.code)
                    continue

                if envelope is None:
                    self._logger.info("bridge.stdin_closed")
                    return
                self._logger.debug("envelope.received", type=envelope.type, id=envelope.id)
                self.dispatcher.dispatch(envelope)
        finally:
            stop_waiter.cancel()
            await asyncio.gather(stop_waiter, return_exceptions=True)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def _shutdown(self) -> None:
        self._logger.info("bridge.shutting_down", in_flight=self.dispatcher.in_flight)
        await self.auth.shutdown()
        await self.dispatcher.drain(self._settings.shutdown_grace_seconds)
        await self.forwarder.stop()
        await self._emit_status(BridgeStatus.DISCONNECTED)
        try:
            await self._service.disconnect()
        except Exception as exc:
            self._logger.warning("bridge.disconnect_failed", error=str(exc))
        self._logger.info("bridge.stopped")

    async def _emit_status(self, status: BridgeStatus) -> None:
        try:
            await self._writer.send_typed(EventType.STATUS, "", StatusData(status=status))
        except Exception as exc:
            self._logger.error("bridge.emit_failed", error=str(exc), status=status.value)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> list[signal.Signals]:
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in _STOP_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_stop, sig.name)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread.
                continue
            installed.append(sig)
        return installed

    def _remove_signal_handlers(self, installed: list[signal.Signals]) -> None:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)


async def serve_stdio(
    service: ServiceClientProtocol,
    settings: BridgeSettings,
    *,
    logger: Optional[LoggerProtocol] = None,
) -> None:
    """Run a bridge for ``service`` over the process's stdin and stdout."""
    reader, writer = await open_stdio_streams(
        max_line_bytes=settings.protocol.max_line_bytes
    )
    bridge = Bridge(service, reader, writer, settings=settings, logger=logger)
    await bridge.run()
