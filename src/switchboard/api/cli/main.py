"""Switchboard bridge CLI entry point."""

import typer
from rich.console import Console

from switchboard.api.cli.commands import config, run
from switchboard.api.cli.logging_config import configure_logging, resolve_level

app = typer.Typer(
    name="switchboard-bridge",
    help="Switchboard bridge - one messaging service behind a JSON-lines protocol",
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# Register commands
app.command("run")(run.run_bridge)
app.add_typer(config.app, name="config", help="Configuration management")


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", "-d", help="Log at DEBUG level"),
):
    """Switchboard bridge CLI."""
    # Logs never touch stdout, whichever command runs.
    configure_logging(resolve_level(debug))
    ctx.obj = {"debug": debug}


@app.command()
def version():
    """Show the bridge version."""
    from switchboard import __version__

    console.print(f"[bold blue]Version:[/bold blue] [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
