"""
Configuration Schema Validation

Pydantic models for the bridge settings file. Unknown keys are rejected so a
typo in ``bridge.yaml`` fails at startup rather than being silently ignored.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from switchboard.core.domain.models import DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT

DEFAULT_MAX_LINE_BYTES = 1024 * 1024


def default_config_dir() -> Path:
    """Return ``~/.config/switchboard``."""
    return Path.home() / ".config" / "switchboard"


class TelegramSettings(BaseModel):
    """Credentials for the Telegram client library."""

    model_config = ConfigDict(extra="forbid")

    api_id: Optional[int] = Field(None, description="Application id from my.telegram.org")
    api_hash: Optional[str] = Field(None, description="Application hash from my.telegram.org")


class WhatsAppSettings(BaseModel):
    """Options for the WhatsApp client library. Pairing needs no credentials."""

    model_config = ConfigDict(extra="forbid")

    connect_timeout_seconds: float = Field(
        30.0, gt=0, description="How long to wait for the session to come up or ask for pairing"
    )


class ProtocolSettings(BaseModel):
    """Envelope stream limits."""

    model_config = ConfigDict(extra="forbid")

    max_line_bytes: int = Field(
        DEFAULT_MAX_LINE_BYTES,
        ge=DEFAULT_MAX_LINE_BYTES,
        description="Longest accepted inbound line; at least 1 MiB",
    )


class HistorySettings(BaseModel):
    """Bounds applied to ``chat.messages`` limits."""

    model_config = ConfigDict(extra="forbid")

    default_limit: int = Field(DEFAULT_HISTORY_LIMIT, ge=1)
    max_limit: int = Field(MAX_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT)

    @model_validator(mode="after")
    def default_within_max(self) -> "HistorySettings":
        if self.default_limit > self.max_limit:
            raise ValueError("default_limit must not exceed max_limit")
        return self


class BridgeSettings(BaseModel):
    """Resolved settings for one bridge process."""

    model_config = ConfigDict(extra="forbid")

    config_dir: Path = Field(default_factory=default_config_dir)
    media_dir: Optional[Path] = Field(
        None, description="Media cache root; defaults to <config_dir>/media"
    )
    shutdown_grace_seconds: float = Field(5.0, ge=0)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    whatsapp: WhatsAppSettings = Field(default_factory=WhatsAppSettings)
    protocol: ProtocolSettings = Field(default_factory=ProtocolSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)

    def media_dir_for(self, service: str) -> Path:
        base = self.media_dir or self.config_dir / "media"
        return base / service

    def session_path_for(self, service: str) -> Path:
        return self.config_dir / f"{service}-session"
