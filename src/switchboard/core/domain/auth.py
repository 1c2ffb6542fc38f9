"""Authentication flow states."""

from __future__ import annotations

from enum import Enum


class AuthState(str, Enum):
    """States of the interactive authentication state machine."""

    IDLE = "idle"
    PHONE_NEEDED = "phone_needed"
    CODE_NEEDED = "code_needed"
    PASSWORD_NEEDED = "password_needed"
    QR_PENDING = "qr_pending"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AuthState.AUTHENTICATED, AuthState.FAILED)


class AuthMethod(str, Enum):
    """How the user proves ownership of the account."""

    PHONE = "phone"
    QR = "qr"
