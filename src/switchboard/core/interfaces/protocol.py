"""Protocol definitions for the outbound envelope sink."""

from __future__ import annotations

from typing import Any, Protocol

from switchboard.core.domain.envelope import Envelope


class EnvelopeSinkProtocol(Protocol):
    """Serialized writer shared by command handlers and the event forwarder."""

    async def send(self, envelope: Envelope) -> None:
        """Write one envelope as one atomic line."""
        ...

    async def send_typed(self, msg_type: str, msg_id: str = "", data: Any = None) -> None:
        """Build an envelope from a payload model or JSON value and send it."""
        ...
