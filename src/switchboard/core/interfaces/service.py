"""
Service Adapter Protocol

Defines the capability set the bridge consumes from a messaging-service
client library. Adapters translate native types into the normalized
``Chat``/``Message`` models and raise ``ServiceError`` (or ``AuthError``)
for rejected calls.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Optional, Protocol

from switchboard.core.domain.auth import AuthMethod
from switchboard.core.domain.chat_id import PeerRef
from switchboard.core.domain.events import ServiceEvent
from switchboard.core.domain.models import AuthSuccess, Chat, Message


class UserAuthenticatorProtocol(Protocol):
    """Callbacks a service's authentication flow invokes.

    Each callback may suspend for as long as the user takes to answer.
    Implementations raise ``AuthCancelled`` or ``AuthSuperseded`` when the
    answer will never come.
    """

    async def phone(self) -> str:
        """Return the phone number to sign in with."""
        ...

    async def code(self, phone_hint: str) -> str:
        """Return the verification code the service sent to ``phone_hint``."""
        ...

    async def password(self, phone_hint: str) -> str:
        """Return the two-step verification password."""
        ...

    async def qr(self, code: str) -> None:
        """Present a login token for scanning by an already signed-in device."""
        ...

    async def sign_up(self) -> None:
        """Called when the account does not exist. Must raise."""
        ...


class ServiceClientProtocol(Protocol):
    """Capability set of one underlying messaging-service session."""

    @property
    def name(self) -> str:
        """Short service name used in notifications (e.g. ``telegram``)."""
        ...

    @property
    def auth_methods(self) -> tuple[AuthMethod, ...]:
        """Supported sign-in methods, preferred first."""
        ...

    async def connect(self) -> None:
        """Open the session. Failures are fatal at startup."""
        ...

    async def disconnect(self) -> None:
        """Close the session."""
        ...

    async def is_authorized(self) -> bool:
        """Return whether the stored session is already signed in."""
        ...

    async def current_user(self) -> AuthSuccess:
        """Return the signed-in user's display name and phone."""
        ...

    async def authenticate(
        self,
        authenticator: UserAuthenticatorProtocol,
        *,
        method: AuthMethod = AuthMethod.PHONE,
    ) -> AuthSuccess:
        """Run the interactive sign-in flow, driving ``authenticator``."""
        ...

    async def list_chats(self) -> list[Chat]:
        """Return the user's conversations."""
        ...

    async def fetch_history(self, peer: PeerRef, limit: int) -> list[Message]:
        """Return up to ``limit`` recent messages of a conversation."""
        ...

    async def send_message(self, peer: PeerRef, text: str) -> Optional[Message]:
        """Send a text message.

        Returns the sent message when the service has no echo event of its
        own, so the bridge can show it immediately; otherwise ``None``.
        """
        ...

    def events(self) -> AsyncIterator[ServiceEvent]:
        """Yield normalized events for the lifetime of the session."""
        ...
