"""
Bridge configuration loading.

Resolves ``BridgeSettings`` from, lowest priority first:

- built-in defaults (``~/.config/switchboard``)
- a YAML file (``<config_dir>/bridge.yaml`` or an explicit path)
- environment variables (``SWITCHBOARD_CONFIG_DIR``, ``TELEGRAM_API_ID``,
  ``TELEGRAM_API_HASH``)

Every failure is raised as ``ConfigError``; the CLI treats it as fatal.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml
from pydantic import ValidationError

from switchboard.core.domain.config_schema import BridgeSettings, default_config_dir
from switchboard.core.domain.errors import ConfigError

logger = structlog.get_logger(__name__)

CONFIG_FILENAME = "bridge.yaml"
DIR_MODE = 0o700

ENV_CONFIG_DIR = "SWITCHBOARD_CONFIG_DIR"
ENV_TELEGRAM_API_ID = "TELEGRAM_API_ID"
ENV_TELEGRAM_API_HASH = "TELEGRAM_API_HASH"


def load_settings(
    config_path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> BridgeSettings:
    """Load and validate bridge settings.

    Args:
        config_path: Explicit YAML file. When given it must exist; otherwise
            ``<config_dir>/bridge.yaml`` is read if present.
        env: Environment mapping, ``os.environ`` by default.

    Raises:
        ConfigError: If the file is unreadable or invalid, or a value fails
            validation.
    """
    env = os.environ if env is None else env

    env_dir = env.get(ENV_CONFIG_DIR, "").strip()
    config_dir = Path(env_dir).expanduser() if env_dir else default_config_dir()

    if config_path is not None:
        raw = _read_yaml(Path(config_path).expanduser(), required=True)
    else:
        raw = _read_yaml(config_dir / CONFIG_FILENAME, required=False)

    if env_dir:
        raw["config_dir"] = str(config_dir)
    raw.setdefault("config_dir", str(config_dir))

    telegram = raw.setdefault("telegram", {})
    if not isinstance(telegram, dict):
        raise ConfigError("'telegram' must be a mapping")
    api_id = env.get(ENV_TELEGRAM_API_ID, "").strip()
    if api_id:
        try:
            telegram["api_id"] = int(api_id)
        except ValueError as exc:
            raise ConfigError(
                f"{ENV_TELEGRAM_API_ID} must be an integer", details={"value": api_id}
            ) from exc
    api_hash = env.get(ENV_TELEGRAM_API_HASH, "").strip()
    if api_hash:
        telegram["api_hash"] = api_hash

    try:
        settings = BridgeSettings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {_summarize(exc)}") from exc

    logger.debug("config.loaded", config_dir=str(settings.config_dir))
    return settings


def require_credentials(settings: BridgeSettings, service: str) -> None:
    """Raise ``ConfigError`` if ``service`` lacks the credentials it needs."""
    if service == "telegram":
        missing = [
            name
            for name, value in (
                (ENV_TELEGRAM_API_ID, settings.telegram.api_id),
                (ENV_TELEGRAM_API_HASH, settings.telegram.api_hash),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                f"{' and '.join(missing)} must be set (environment or telegram section of "
                f"{CONFIG_FILENAME})",
                details={"missing": missing},
            )


def ensure_directories(settings: BridgeSettings, service: str) -> None:
    """Create the config and media directories with owner-only permissions."""
    for path in (settings.config_dir, settings.media_dir_for(service)):
        try:
            path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(
                f"cannot create directory {path}: {exc.strerror or exc}",
                details={"path": str(path)},
            ) from exc


def _read_yaml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigError(f"config file not found: {path}", details={"path": str(path)})
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc.strerror or exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    logger.debug("config.file_read", path=str(path))
    return data


def _summarize(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc']) or 'root'}: {err['msg']}"
        for err in exc.errors()
    )
