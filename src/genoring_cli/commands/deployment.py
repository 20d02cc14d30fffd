"""Deployment-wide commands: start, stop, status, compose, backup and restore."""

from typing import Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from genoring_cli.commands.common import err_console, fail, get_controller, run_operation
from genoring_cli.context import RUN_MODES
from genoring_cli.errors import GenoringError

console = Console()

STATE_STYLES = {
    "running": "green",
    "absent": "dim",
    "unknown": "yellow",
}


def start(
    ctx: typer.Context,
    mode: str = typer.Option(
        "online", "--mode", "-m", help=f"Run mode: {', '.join(RUN_MODES)}"
    ),
) -> None:
    """Start GenoRing in the given run mode."""
    if mode not in RUN_MODES:
        err_console.print(f"[red]✗[/red] Invalid mode '{mode}', expected one of {', '.join(RUN_MODES)}")
        raise typer.Exit(code=1)
    controller = get_controller(ctx)
    run_operation("Start", controller.start, mode)


def stop(ctx: typer.Context) -> None:
    """Stop every GenoRing service."""
    controller = get_controller(ctx)
    run_operation("Stop", controller.stop)


def status(
    ctx: typer.Context,
    module: Optional[str] = typer.Argument(None, help="Module name (all modules if omitted)"),
) -> None:
    """Show module lifecycle and runtime states."""
    controller = get_controller(ctx)
    try:
        rows = controller.status(module)
        mode = controller.current_mode()
    except GenoringError as e:
        fail("Status", e)

    if mode:
        console.print(f"GenoRing is [green]running[/green] ([cyan]{mode}[/cyan] mode)")
    else:
        console.print("GenoRing is [yellow]stopped[/yellow]")

    table = Table()
    table.add_column("Module", style="cyan")
    table.add_column("State")
    table.add_column("Installed")
    table.add_column("Available")
    table.add_column("Runtime")
    for row in rows:
        runtime = row["runtime"]
        style = STATE_STYLES.get(runtime, "red")
        available = row["available"]
        if row["installed"] and available and available != row["installed"]:
            available = f"[yellow]{available}[/yellow]"
        table.add_row(
            row["name"],
            row["state"],
            row["installed"],
            available,
            f"[{style}]{runtime}[/{style}]" if runtime else "",
        )
    console.print(table)


def compose(
    ctx: typer.Context,
    stdout: bool = typer.Option(
        False, "--stdout", help="Print the descriptor instead of writing the compose file"
    ),
    mode: str = typer.Option("online", "--mode", "-m", help="Run mode the descriptor is built for"),
) -> None:
    """Regenerate the docker compose file from the enabled modules."""
    controller = get_controller(ctx)
    try:
        if stdout:
            descriptor = controller.compose(write=False, mode=mode)
            typer.echo(descriptor.dump(), nl=False)
            return
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task("Composing services...", total=None)
            descriptor = controller.compose(mode=mode)
    except (GenoringError, ValueError, OSError) as e:
        fail("Compose", e)

    console.print(
        f"[green]✓[/green] Wrote {len(descriptor.services)} service(s) to "
        f"[cyan]{controller.ctx.compose_file}[/cyan]"
    )
    if descriptor.services:
        console.print(f"[dim]Start order: {', '.join(descriptor.order)}[/dim]")


def backup(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Backup name (defaults to backup_<date>)"),
    module: Optional[str] = typer.Option(None, "--module", help="Only back up this module"),
) -> None:
    """Back up GenoRing data."""
    controller = get_controller(ctx)
    run_operation("Backup", controller.backup, name, module=module)


def restore(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Backup name"),
    module: Optional[str] = typer.Option(None, "--module", help="Only restore this module"),
) -> None:
    """Restore a GenoRing backup."""
    controller = get_controller(ctx)
    run_operation("Restore", controller.restore, name, module=module)
