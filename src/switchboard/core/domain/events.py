"""Normalized events produced by a service adapter's subscription."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from switchboard.core.domain.models import BridgeStatus, Message


@dataclass(frozen=True)
class MessageReceived:
    """A new message arrived from the service."""

    message: Message
    sender_name: str


@dataclass(frozen=True)
class StatusChanged:
    """The service session changed connectivity or authorization state."""

    status: BridgeStatus


ServiceEvent = Union[MessageReceived, StatusChanged]
