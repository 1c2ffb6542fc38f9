"""
Service adapter registry.

Maps the service name given on the command line to a factory that builds
the adapter from resolved settings.
"""

from __future__ import annotations

from typing import Callable

from switchboard.core.domain.config_schema import BridgeSettings
from switchboard.core.domain.errors import ConfigError
from switchboard.core.interfaces.service import ServiceClientProtocol
from switchboard.infrastructure.services.telegram import TelegramService
from switchboard.infrastructure.services.whatsapp import WhatsAppService

ServiceFactory = Callable[[BridgeSettings], ServiceClientProtocol]

SERVICE_FACTORIES: dict[str, ServiceFactory] = {
    "telegram": TelegramService.from_settings,
    "whatsapp": WhatsAppService.from_settings,
}


def available_services() -> list[str]:
    return sorted(SERVICE_FACTORIES)


def build_service(name: str, settings: BridgeSettings) -> ServiceClientProtocol:
    """Build the adapter registered under ``name``.

    Raises:
        ConfigError: If no adapter is registered under ``name``.
    """
    factory = SERVICE_FACTORIES.get(name)
    if factory is None:
        raise ConfigError(
            f"unknown service {name!r}; available: {', '.join(available_services())}",
            details={"service": name},
        )
    return factory(settings)
