"""
Application Layer

Coordinates the envelope protocol with one service session: command
dispatch, interactive authentication, event forwarding and the process
lifecycle.
"""

from switchboard.application.auth_coordinator import AuthCoordinator, AuthFlow
from switchboard.application.bridge import Bridge, serve_stdio
from switchboard.application.dispatcher import CommandDispatcher, CommandKind
from switchboard.application.event_forwarder import EventForwarder
from switchboard.application.mailbox import Mailbox

__all__ = [
    "AuthCoordinator",
    "AuthFlow",
    "Bridge",
    "CommandDispatcher",
    "CommandKind",
    "EventForwarder",
    "Mailbox",
    "serve_stdio",
]
