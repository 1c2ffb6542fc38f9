"""Domain-specific exception types for the Switchboard bridge."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class BridgeError(Exception):
    """Base exception for bridge domain errors."""

    message: str
    code: str = "bridge_error"
    details: Dict[str, Any] | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.details is None:
            self.details = {}


class MalformedEnvelope(BridgeError):
    """Raised when an inbound line is not a well-formed envelope."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="malformed_envelope", details=details)


class LineTooLong(BridgeError):
    """Raised when an inbound line exceeds the configured read limit."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            message=f"line exceeds {limit} bytes",
            code="line_too_long",
            details={"limit": limit},
        )
        self.limit = limit


class RequestValidationError(BridgeError):
    """Error raised when a command payload fails validation."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="validation_error", details=details)


class InvalidChatId(RequestValidationError):
    """Error raised when a chat id does not decode to a known peer kind."""

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"invalid chat id {chat_id!r}", details={"chat_id": chat_id})
        self.code = "invalid_chat_id"
        self.chat_id = chat_id


class UnknownCommand(RequestValidationError):
    """Error raised for envelope types the dispatcher does not recognize."""

    def __init__(self, command_type: str) -> None:
        super().__init__(
            f"unknown command: {command_type}", details={"type": command_type}
        )
        self.code = "unknown_command"
        self.command_type = command_type


class AuthStateError(RequestValidationError):
    """Error raised when an auth command arrives in the wrong state."""

    def __init__(self, message: str, *, state: str | None = None) -> None:
        super().__init__(message, details={"state": state} if state else None)
        self.code = "auth_state"


class RequestCancelled(BridgeError):
    """Reported for a command still running when the shutdown grace ran out."""

    def __init__(self, message: str = "request cancelled: bridge shutting down") -> None:
        super().__init__(message=message, code="request_cancelled")


class ServiceError(BridgeError):
    """Error raised when the external messaging service rejects a call."""

    def __init__(
        self,
        message: str,
        *,
        service: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if service:
            details.setdefault("service", service)
        self.service = service
        super().__init__(message=message, code="service_error", details=details)


class AuthError(BridgeError):
    """Error raised when the service rejects an authentication step."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="auth_error", details=details)


class SignUpRequired(AuthError):
    """Raised when the phone number has no account; the bridge never signs up."""

    def __init__(self) -> None:
        super().__init__(
            "sign-up not supported; please register with the official app first"
        )
        self.code = "sign_up_required"


class AuthCancelled(AuthError):
    """Raised into a pending auth wait when the bridge shuts down."""

    def __init__(self, message: str = "authentication cancelled: bridge shutting down") -> None:
        super().__init__(message)
        self.code = "auth_cancelled"


class AuthSuperseded(AuthError):
    """Raised into a pending auth wait when a newer auth.start replaces the flow."""

    def __init__(self) -> None:
        super().__init__("authentication superseded by a new auth.start")
        self.code = "auth_superseded"


class ConfigError(BridgeError):
    """Error raised for configuration and startup failures."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="config_error", details=details)


def error_payload(error: BaseException) -> Dict[str, Any]:
    """Convert an exception into the wire payload of an ``error`` envelope."""
    payload: Dict[str, Any] = {"message": str(error) or type(error).__name__}
    if isinstance(error, BridgeError):
        payload["code"] = error.code
    return payload
