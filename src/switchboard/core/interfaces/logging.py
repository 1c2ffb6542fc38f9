"""
Logging Protocol Interface for Core Domain.

Defines the LoggerProtocol interface so application components can be handed
a bound structlog logger (or a test double) without importing structlog
types.
"""

from typing import Any, Protocol


class LoggerProtocol(Protocol):
    """Protocol for logging operations in the application layer."""

    def info(self, event: str, **kwargs: Any) -> None:
        """Log an informational message."""
        ...

    def warning(self, event: str, **kwargs: Any) -> None:
        """Log a warning message."""
        ...

    def error(self, event: str, **kwargs: Any) -> None:
        """Log an error message."""
        ...

    def debug(self, event: str, **kwargs: Any) -> None:
        """Log a debug message."""
        ...
