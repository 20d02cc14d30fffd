"""Module lifecycle commands."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from genoring_cli.commands.common import fail, get_controller, run_operation
from genoring_cli.errors import GenoringError
from genoring_cli.modules.registry import ModuleRegistry
from genoring_cli.state import StateStore

console = Console()
app = typer.Typer(help="Inspect available GenoRing modules")
alternative_app = typer.Typer(help="Manage module alternatives")


@app.command("list")
def list_modules(
    ctx: typer.Context,
    show_all: bool = typer.Option(
        False, "--all", "-a", help="Also list modules that failed to load"
    ),
) -> None:
    """List available modules and their lifecycle state."""
    try:
        controller = get_controller(ctx)
        registry: ModuleRegistry = controller.registry
        store: StateStore = controller.store

        table = Table(title="GenoRing modules")
        table.add_column("Module", style="cyan")
        table.add_column("Version")
        table.add_column("State")
        table.add_column("Description", style="dim")
        for descriptor in registry.modules():
            state = store.lifecycle_state(descriptor.name)
            table.add_row(
                descriptor.name, descriptor.version, state.value, descriptor.description
            )
        console.print(table)

        invalid = registry.invalid_modules
        if invalid and show_all:
            console.print("\n[yellow]Modules that could not be loaded:[/yellow]")
            for name, error in sorted(invalid.items()):
                console.print(f"  [red]✗[/red] {name}: {error.reason}")
        elif invalid:
            console.print(
                f"\n[yellow]⚠[/yellow] {len(invalid)} module(s) could not be loaded "
                "(use [cyan]--all[/cyan] to list them)"
            )
    except GenoringError as e:
        fail("Listing modules", e)


def install(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
    no_enable: bool = typer.Option(
        False, "--no-enable", help="Only install the module, do not enable it"
    ),
    with_dependencies: bool = typer.Option(
        False,
        "--with-dependencies",
        help="Install and enable the modules this one requires",
    ),
) -> None:
    """
    Install a module.

    Runs the module requirements check, copies its env files, runs its init
    hooks and, unless --no-enable is given, enables it.
    """
    controller = get_controller(ctx)
    run_operation(
        f"Installing '{module}'",
        controller.install,
        module,
        enable=not no_enable,
        with_dependencies=with_dependencies,
    )


def uninstall(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
    disable: bool = typer.Option(
        False, "--disable", help="Disable the module first if it is enabled"
    ),
    keep_env: bool = typer.Option(
        False, "--keep-env", help="Keep the module environment files"
    ),
) -> None:
    """Uninstall a module and remove its data."""
    controller = get_controller(ctx, keep_env=keep_env or None)
    run_operation(f"Uninstalling '{module}'", controller.uninstall, module, disable=disable)


def enable(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
) -> None:
    """Enable an installed module."""
    controller = get_controller(ctx)
    run_operation(f"Enabling '{module}'", controller.enable, module)


def disable(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
) -> None:
    """Disable an enabled module. Its data is kept."""
    controller = get_controller(ctx)
    run_operation(f"Disabling '{module}'", controller.disable, module)


def update(
    ctx: typer.Context,
    module: Optional[str] = typer.Argument(None, help="Module name (all enabled modules if omitted)"),
) -> None:
    """Run update hooks."""
    controller = get_controller(ctx)
    run_operation("Update", controller.update, module)


def upgrade(
    ctx: typer.Context,
    module: Optional[str] = typer.Argument(None, help="Module name (all installed modules if omitted)"),
) -> None:
    """Upgrade modules that have a newer version available."""
    controller = get_controller(ctx)
    try:
        pending = controller.pending_upgrades(module)
    except GenoringError as e:
        fail("Upgrade", e)
    for name, old, new in pending:
        console.print(f"  {name}: [yellow]{old}[/yellow] -> [green]{new}[/green]")
    run_operation("Upgrade", controller.upgrade, module)


@alternative_app.command("list")
def list_alternatives(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
) -> None:
    """List the alternatives a module offers."""
    try:
        alternatives = get_controller(ctx).list_alternatives(module)
    except GenoringError as e:
        fail("Listing alternatives", e)

    if not alternatives:
        console.print(f"Module [cyan]{module}[/cyan] has no alternative")
        return
    table = Table(title=f"Alternatives of {module}")
    table.add_column("Alternative", style="cyan")
    table.add_column("Enabled")
    table.add_column("Changes", style="dim")
    table.add_column("Description", style="dim")
    for alternative in alternatives:
        changes = [f"{old} -> {new}" for old, new in alternative["substitute"].items()]
        changes += [f"+{name}" for name in alternative["add"]]
        changes += [f"-{name}" for name in alternative["remove"]]
        table.add_row(
            alternative["name"],
            "[green]yes[/green]" if alternative["enabled"] else "no",
            ", ".join(changes),
            alternative["description"],
        )
    console.print(table)


@alternative_app.command("enable")
def enable_alternative(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
    alternative: str = typer.Argument(..., help="Alternative name"),
) -> None:
    """Enable an alternative of an installed, disabled module."""
    controller = get_controller(ctx)
    run_operation(
        f"Enabling alternative '{alternative}'", controller.enable_alternative, module, alternative
    )


@alternative_app.command("disable")
def disable_alternative(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
    alternative: str = typer.Argument(..., help="Alternative name"),
) -> None:
    """Disable an alternative of an installed, disabled module."""
    controller = get_controller(ctx)
    run_operation(
        f"Disabling alternative '{alternative}'", controller.disable_alternative, module, alternative
    )
