"""Config command - Inspect resolved bridge settings."""

from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from switchboard.core.domain.config_schema import BridgeSettings
from switchboard.core.domain.errors import ConfigError
from switchboard.infrastructure.config_loader import load_settings

app = typer.Typer(help="Configuration management")
console = Console()

NOT_SET = "(not set)"


def mask_secret(value: Optional[str]) -> str:
    """Keep only the last four characters of a secret."""
    if not value:
        return NOT_SET
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


def settings_rows(settings: BridgeSettings, service: str) -> list[tuple[str, Any]]:
    return [
        ("config_dir", str(settings.config_dir)),
        ("session", str(settings.session_path_for(service))),
        ("media_dir", str(settings.media_dir_for(service))),
        ("shutdown_grace_seconds", settings.shutdown_grace_seconds),
        ("protocol.max_line_bytes", settings.protocol.max_line_bytes),
        ("history.default_limit", settings.history.default_limit),
        ("history.max_limit", settings.history.max_limit),
        ("telegram.api_id", settings.telegram.api_id or NOT_SET),
        ("telegram.api_hash", mask_secret(settings.telegram.api_hash)),
        ("whatsapp.connect_timeout_seconds", settings.whatsapp.connect_timeout_seconds),
    ]


@app.command("show")
def show_config(
    service: str = typer.Argument(
        "telegram", help="Service whose paths to show (telegram or whatsapp)"
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings file"),
    as_yaml: bool = typer.Option(False, "--yaml", help="Print as YAML instead of a table"),
):
    """Show the resolved settings with secrets masked."""
    try:
        settings = load_settings(config)
    except ConfigError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1)

    rows = settings_rows(settings, service)

    if as_yaml:
        console.print(yaml.safe_dump(dict(rows), default_flow_style=False, sort_keys=False))
        return

    table = Table(title=f"Bridge Settings ({service})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")
    for key, value in rows:
        table.add_row(key, str(value))
    console.print(table)
