"""Main CLI application using Typer."""

import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install

from genoring_cli import __version__
from genoring_cli.commands import deployment, modules
from genoring_cli.commands.common import EXIT_FATAL, EXIT_INTERRUPTED
from genoring_cli.config import ConfigManager

# Install rich traceback handler
install(show_locals=True)

# Create console for rich output
console = Console()

# Create main Typer app
app = typer.Typer(
    name="genoring",
    help="GenoRing CLI - Manage the modules of a GenoRing deployment",
    add_completion=True,
    rich_markup_mode="rich",
)

# Add subcommands
app.add_typer(modules.app, name="modules", help="Inspect available modules")
app.add_typer(modules.alternative_app, name="alternative", help="Manage module alternatives")

for command in (
    modules.install,
    modules.uninstall,
    modules.enable,
    modules.disable,
    modules.update,
    modules.upgrade,
):
    app.command()(command)

app.command("start")(deployment.start)
app.command("stop")(deployment.stop)
app.command("status")(deployment.status)
app.command("compose")(deployment.compose)
app.command("backup")(deployment.backup)
app.command("restore")(deployment.restore)


@app.command()
def version() -> None:
    """Show the CLI version."""
    console.print(f"[bold blue]GenoRing CLI[/bold blue] version [green]{__version__}[/green]")


@app.command()
def config(
    ctx: typer.Context,
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", help="Initialize configuration file"),
) -> None:
    """Manage GenoRing CLI configuration."""
    config_manager = ConfigManager((ctx.obj or {}).get("config_file"))

    if init:
        try:
            config_manager.create_default_config()
            console.print(
                f"[green]✓[/green] Configuration file created at "
                f"[cyan]{config_manager.config_path}[/cyan]"
            )
        except OSError as e:
            console.print(f"[red]✗[/red] Failed to create configuration: {e}")
            raise typer.Exit(code=1)

    elif show:
        try:
            cfg = config_manager.load()
        except (OSError, ValueError) as e:
            console.print(f"[red]✗[/red] Failed to load configuration: {e}")
            raise typer.Exit(code=1)
        console.print("\n[bold]Current Configuration:[/bold]\n")
        console.print(f"Config file: [cyan]{config_manager.config_path}[/cyan]")
        console.print(f"Root: [yellow]{cfg.root}[/yellow]")
        console.print(f"Project: [yellow]{cfg.project}[/yellow]")
        console.print(f"Profile: [yellow]{cfg.profile}[/yellow]")
        console.print(f"Volumes: [yellow]{cfg.volumes_dir or 'volumes'}[/yellow]")
        console.print(f"Docker: [yellow]{cfg.docker.command}[/yellow]")
        console.print(f"Module directories: [yellow]{len(cfg.modules_dirs)}[/yellow]")
        for modules_dir in cfg.modules_dirs:
            console.print(f"  - {modules_dir}")
    else:
        console.print("Use [cyan]--show[/cyan] to display configuration")
        console.print("Use [cyan]--init[/cyan] to create a new configuration file")


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
        envvar="GENORING_CLI_CONFIG",
    ),
    root: Optional[str] = typer.Option(
        None,
        "--root",
        help="GenoRing deployment directory (overrides config/env)",
    ),
    profile: Optional[str] = typer.Option(
        None,
        "--profile",
        "-p",
        help="Site profile: dev, staging, prod or backend (overrides config/env)",
    ),
    platform: Optional[str] = typer.Option(
        None,
        "--platform",
        help="Docker platform used to pull and run images",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Enable debug mode",
        envvar="GENORING_DEBUG",
    ),
) -> None:
    """
    GenoRing CLI - Manage the modules of a GenoRing deployment.

    Settings can be provided via:
      1. CLI flags (--root, --profile) - highest priority
      2. Environment variables (GENORING_DIR, GENORING_ENVIRONMENT, ...)
      3. Configuration file (genoring-cli.yaml)
    """
    # Store global options in context
    ctx.obj = {
        "config_file": config_file,
        "root": root,
        "profile": profile,
        "platform": platform,
        "debug": debug,
    }

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=debug)],
        force=True,
    )
    if debug:
        console.print("[dim]Debug mode enabled[/dim]")


def run() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(EXIT_FATAL)


if __name__ == "__main__":
    run()
