"""Service event forwarder.

Consumes the adapter's normalized event stream and writes spontaneous
envelopes (empty id) to the host. Incoming messages also raise a
``notification`` so the host can alert the user.

Usage::

    forwarder = EventForwarder(service, writer)
    await forwarder.start()   # runs in background
    ...
    await forwarder.stop()
"""

from __future__ import annotations

import asyncio

import structlog

from switchboard.core.domain.envelope import EventType
from switchboard.core.domain.events import MessageReceived, ServiceEvent, StatusChanged
from switchboard.core.domain.models import Notification, StatusData
from switchboard.core.interfaces.logging import LoggerProtocol
from switchboard.core.interfaces.protocol import EnvelopeSinkProtocol
from switchboard.core.interfaces.service import ServiceClientProtocol

IMAGE_PLACEHOLDER = "[image]"


class EventForwarder:
    """Forward service events to the envelope sink as a background task."""

    def __init__(
        self,
        service: ServiceClientProtocol,
        sink: EnvelopeSinkProtocol,
        *,
        logger: LoggerProtocol | None = None,
    ) -> None:
        self._service = service
        self._sink = sink
        self._logger = logger or structlog.get_logger(__name__).bind(service=service.name)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background forwarding task."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._forward_loop(), name="event-forwarder")
        self._logger.info("event_forwarder.started")

    async def stop(self) -> None:
        """Cancel the forwarding task."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._logger.info("event_forwarder.stopped")

    # ------------------------------------------------------------------
    # Internal loop
    # ------------------------------------------------------------------

    async def _forward_loop(self) -> None:
        try:
            async for event in self._service.events():
                try:
                    await self.forward(event)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._logger.error(
                        "event_forwarder.forward_failed",
                        error=str(exc),
                        event_type=type(event).__name__,
                    )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.error("event_forwarder.stream_failed", error=str(exc))
            return
        self._logger.info("event_forwarder.stream_ended")

    async def forward(self, event: ServiceEvent) -> None:
        """Write the envelopes for a single event."""
        if isinstance(event, MessageReceived):
            await self._forward_message(event)
        elif isinstance(event, StatusChanged):
            await self._sink.send_typed(EventType.STATUS, "", StatusData(status=event.status))
        else:
            self._logger.warning("event_forwarder.unknown_event", event_type=type(event).__name__)

    async def _forward_message(self, event: MessageReceived) -> None:
        message = event.message
        await self._sink.send_typed(EventType.MESSAGE_NEW, "", message)
        if message.from_me:
            return
        notification = Notification(
            title=event.sender_name or self._service.name.capitalize(),
            body=message.text or (IMAGE_PLACEHOLDER if message.image_path else ""),
            service=self._service.name,
        )
        await self._sink.send_typed(EventType.NOTIFICATION, "", notification)
