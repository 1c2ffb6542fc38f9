"""Protocol interfaces between the application layer and infrastructure."""

from switchboard.core.interfaces.logging import LoggerProtocol
from switchboard.core.interfaces.protocol import EnvelopeSinkProtocol
from switchboard.core.interfaces.service import (
    ServiceClientProtocol,
    UserAuthenticatorProtocol,
)

__all__ = [
    "EnvelopeSinkProtocol",
    "LoggerProtocol",
    "ServiceClientProtocol",
    "UserAuthenticatorProtocol",
]
