"""Helpers shared by the command groups."""

import textwrap
from typing import Any, Dict, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape

from genoring_cli.config import ConfigManager
from genoring_cli.context import Context
from genoring_cli.errors import GenoringError, OperationCancelled
from genoring_cli.lifecycle import LifecycleController, OperationResult

console = Console()
err_console = Console(stderr=True)

EXIT_FATAL = 1
EXIT_DEGRADED = 2
EXIT_INTERRUPTED = 130


def load_context(ctx: typer.Context, **overrides: Any) -> Context:
    """Build the deployment context from the config file, env and global CLI flags."""
    cli_overrides: Dict[str, Any] = ctx.obj or {}
    config_manager = ConfigManager(cli_overrides.get("config_file"))
    config = config_manager.load_with_overrides(
        root=cli_overrides.get("root"),
        profile=cli_overrides.get("profile"),
        platform=cli_overrides.get("platform"),
        **overrides,
    )
    return Context.from_config(config)


def get_controller(ctx: typer.Context, **overrides: Any) -> LifecycleController:
    """Create a lifecycle controller for the current deployment."""
    try:
        return LifecycleController(load_context(ctx, **overrides))
    except (GenoringError, ValueError) as e:
        fail("Loading the deployment", e)


def report(result: OperationResult) -> None:
    """
    Print an operation result and exit with its status.

    Hook failures and readiness timeouts make the operation degraded: the
    state change went through but something needs attention.
    """
    for warning in result.warnings:
        err_console.print(f"[yellow]⚠[/yellow] {escape(warning)}")
    if result.degraded:
        err_console.print(
            f"\n[yellow]⚠[/yellow] {result.message}, with {len(result.failures)} problem(s):"
        )
        for failure in result.failures:
            err_console.print(f"  [red]✗[/red] {escape(str(failure))}")
            output = getattr(failure, "output", "")
            if output:
                err_console.print(textwrap.indent(output, "      "), markup=False, highlight=False)
        raise typer.Exit(code=EXIT_DEGRADED)
    console.print(f"\n[green]✓[/green] {result.message}")


def fail(action: str, error: Exception, code: Optional[int] = None) -> NoReturn:
    """Print a fatal error and exit."""
    if isinstance(error, OperationCancelled):
        err_console.print(f"\n[yellow]Operation cancelled:[/yellow] {escape(str(error))}")
        raise typer.Exit(code=EXIT_INTERRUPTED)
    err_console.print(f"\n[red]✗[/red] {action} failed: {escape(str(error))}")
    raise typer.Exit(code=code or EXIT_FATAL)


def run_operation(action: str, operation, *args: Any, **kwargs: Any) -> None:
    """Run a controller operation and report its result."""
    try:
        result = operation(*args, **kwargs)
    except (GenoringError, ValueError, OSError) as e:
        fail(action, e)
    else:
        report(result)
