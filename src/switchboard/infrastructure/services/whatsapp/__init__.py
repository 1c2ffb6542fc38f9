"""WhatsApp adapter built on neonize."""

from switchboard.infrastructure.services.whatsapp.client import SERVICE_NAME, WhatsAppService

__all__ = ["SERVICE_NAME", "WhatsAppService"]
