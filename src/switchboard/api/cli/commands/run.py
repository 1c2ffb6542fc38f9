"""Run command - Start a bridge on stdin/stdout."""

import asyncio
from pathlib import Path
from typing import Optional

import structlog
import typer

from switchboard.api.cli.logging_config import configure_logging, resolve_level
from switchboard.application.bridge import serve_stdio
from switchboard.core.domain.errors import BridgeError, ConfigError
from switchboard.infrastructure.config_loader import (
    ensure_directories,
    load_settings,
    require_credentials,
)
from switchboard.infrastructure.services import available_services, build_service

logger = structlog.get_logger(__name__)


def run_bridge(
    ctx: typer.Context,
    service: str = typer.Argument(..., help="Service to bridge (telegram or whatsapp)"),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Settings file (default: <config_dir>/bridge.yaml)"
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Log at DEBUG level"),
):
    """Bridge SERVICE to the envelope protocol on stdin/stdout.

    Exits 0 on stdin EOF or SIGINT/SIGTERM, 1 if startup fails.
    """
    global_debug = bool(ctx.obj and ctx.obj.get("debug"))
    if debug and not global_debug:
        configure_logging(resolve_level(debug=True))
    log = logger.bind(service=service)

    try:
        if service not in available_services():
            raise ConfigError(
                f"unknown service {service!r}; available: {', '.join(available_services())}"
            )
        settings = load_settings(config)
        require_credentials(settings, service)
        ensure_directories(settings, service)
        adapter = build_service(service, settings)
    except ConfigError as exc:
        log.error("bridge.config_error", error=exc.message, **(exc.details or {}))
        raise typer.Exit(1)

    log.info("bridge.starting", config_dir=str(settings.config_dir))
    try:
        asyncio.run(serve_stdio(adapter, settings))
    except BridgeError as exc:
        log.error("bridge.startup_failed", error=exc.message, code=exc.code)
        raise typer.Exit(1)
    except Exception as exc:
        log.error("bridge.crashed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        # Interrupted before the bridge installed its own signal handlers.
        log.info("bridge.interrupted")
        raise typer.Exit(0)
