"""Telegram adapter built on Telethon."""

from switchboard.infrastructure.services.telegram.client import SERVICE_NAME, TelegramService

__all__ = ["SERVICE_NAME", "TelegramService"]
