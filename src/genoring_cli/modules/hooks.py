"""Hook discovery and dispatch for module lifecycle events."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from rich.console import Console

from genoring_cli.context import Context
from genoring_cli.docker_client import DockerClient
from genoring_cli.errors import HookFailure, ProcessError
from genoring_cli.modules.base import ModuleDescriptor
from genoring_cli.modules.registry import ModuleRegistry
from genoring_cli.process import ProcessResult, run_process
from genoring_cli.state import ContainerState

logger = logging.getLogger(__name__)
err_console = Console(stderr=True)

EVENTS = (
    "backend",
    "backup",
    "devtest",
    "disable",
    "enable",
    "init",
    "offline",
    "online",
    "requirements",
    "reset",
    "restore",
    "start",
    "state",
    "stop",
    "uninstall",
    "update",
    "upgrade",
)


@dataclass(frozen=True)
class LocalHook:
    """A hook run on the orchestrating host: ``<event>.<ext>``."""

    module: str
    event: str
    path: Path

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class ContainerHook:
    """A hook run inside a service container: ``<event>_<service>.<ext>``."""

    module: str
    event: str
    service: str
    path: Path

    @property
    def name(self) -> str:
        return self.path.name


Hook = Union[LocalHook, ContainerHook]


def classify_hook(module: str, path: Path) -> Optional[Hook]:
    """
    Classify a file of a module ``hooks`` directory.

    Args:
        module: Owning module name
        path: Hook file path

    Returns:
        LocalHook, ContainerHook, or None when the name follows no convention
    """
    stem = path.name.split(".", 1)[0]
    if not stem or path.name.startswith("."):
        return None
    if stem in EVENTS:
        return LocalHook(module, stem, path)
    event, sep, service = stem.partition("_")
    if sep and event in EVENTS and service:
        return ContainerHook(module, event, service, path)
    return None


class HookRegistry:
    """Hooks of a set of modules, classified once by file name."""

    def __init__(self, modules: Iterable[ModuleDescriptor]):
        self._local: Dict[Tuple[str, str], LocalHook] = {}
        self._container: Dict[str, List[ContainerHook]] = {}
        for module in modules:
            self.scan(module)

    def scan(self, module: ModuleDescriptor) -> None:
        if not module.hooks_dir.is_dir():
            return
        for path in sorted(module.hooks_dir.iterdir(), key=lambda p: p.name):
            if not path.is_file():
                continue
            hook = classify_hook(module.name, path)
            if hook is None:
                logger.debug("Ignoring unrecognized hook file %s", path)
            elif isinstance(hook, LocalHook):
                # Several extensions for one event: first one in lexical order wins.
                self._local.setdefault((module.name, hook.event), hook)
            else:
                self._container.setdefault(module.name, []).append(hook)

    def local(self, module: str, event: str) -> Optional[LocalHook]:
        return self._local.get((module, event))

    def container(self, module: str, event: Optional[str] = None) -> List[ContainerHook]:
        hooks = self._container.get(module, [])
        if event is None:
            return list(hooks)
        return [hook for hook in hooks if hook.event == event]


@dataclass
class HookReport:
    """Outcome of dispatching one event."""

    event: str
    ran: List[Hook] = field(default_factory=list)
    skipped: List[Tuple[Hook, str]] = field(default_factory=list)
    failures: List[HookFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def failed_modules(self) -> List[str]:
        return sorted({failure.module for failure in self.failures})


class HookDispatcher:
    """
    Runs local and container hooks for lifecycle events.

    Hooks run one at a time in the module order the resolver computed. A
    failing hook never stops the dispatch: its failure and captured output are
    collected in the HookReport and the next hook runs.
    """

    def __init__(
        self,
        ctx: Context,
        registry: ModuleRegistry,
        docker: DockerClient,
        hooks: Optional[HookRegistry] = None,
        runner=None,
        console: Optional[Console] = None,
    ):
        self.ctx = ctx
        self.registry = registry
        self.docker = docker
        self.hooks = hooks or HookRegistry(registry.modules())
        self.runner = runner or run_process
        self.console = console or err_console

    def _command(self, hook: LocalHook) -> List[str]:
        interpreter = self.ctx.interpreters.get(hook.path.suffix)
        if interpreter:
            return [*interpreter.split(), str(hook.path)]
        if os.access(hook.path, os.X_OK):
            return [str(hook.path)]
        return ["sh", str(hook.path)]

    def _relay(self, label: str, result: ProcessResult) -> None:
        if result.output:
            self.console.print(f"[dim]{label}:[/dim]")
            self.console.print(result.output, markup=False, highlight=False)

    def run_local_hook(
        self,
        hook: LocalHook,
        args: Sequence[str] = (),
        mode: Optional[str] = None,
    ) -> ProcessResult:
        """Run one local hook with the module's environment."""
        module = self.registry.require(hook.module)
        env = self.ctx.hook_env(module.name, module.path, mode)
        logger.debug("Running local hook %s of %s", hook.name, hook.module)
        return self.runner(
            [*self._command(hook), *[str(a) for a in args]],
            env=env,
            cwd=self.ctx.root,
        )

    def run_local(
        self,
        event: str,
        modules: Iterable[str],
        args: Sequence[str] = (),
        mode: Optional[str] = None,
    ) -> HookReport:
        """
        Run the local hook of an event for each module, in the given order.

        Args:
            event: Lifecycle event
            modules: Module names in resolver order
            args: Positional arguments passed to every hook
            mode: Run mode exposed to the hooks as COMPOSE_PROFILES

        Returns:
            HookReport listing what ran and what failed
        """
        report = HookReport(event)
        for module in modules:
            hook = self.hooks.local(module, event)
            if hook is None:
                continue
            self.console.print(f"  Processing {module} module hook {event}...")
            result = self.run_local_hook(hook, args, mode)
            report.ran.append(hook)
            if result.ok:
                self._relay(f"{module}/{hook.name}", result)
            else:
                failure = HookFailure(module, hook.name, result)
                logger.warning("%s", failure)
                report.failures.append(failure)
        return report

    def run_container(
        self,
        event: str,
        services: Mapping[str, str],
        modules: Iterable[str],
        changing: Optional[str] = None,
        related: bool = True,
        args: Sequence[str] = (),
    ) -> HookReport:
        """
        Run the container hooks of an event.

        Args:
            event: Lifecycle event
            services: Enabled services mapped to their owning module
            modules: Modules whose hooks are considered, in resolver order
            changing: Module the operation is about. When set, only its own
                hooks and hooks targeting its services run.
            related: Also run other modules' hooks that target the changing
                module's services
            args: Positional arguments passed to every hook

        Returns:
            HookReport listing what ran, what was skipped and what failed
        """
        report = HookReport(event)
        modules = list(modules)
        if changing and changing not in modules:
            modules.append(changing)
        for module in modules:
            if changing and not related and module != changing:
                continue
            for hook in self.hooks.container(module, event):
                owner = services.get(hook.service)
                if owner is None:
                    continue
                if changing and module != changing and owner != changing:
                    continue
                container = self.ctx.container_name(hook.service)
                state = self.docker.container_state(container)
                if state != ContainerState.RUNNING:
                    reason = "not running" if state == ContainerState.ABSENT else state.label
                    self.console.print(
                        f"[yellow]⚠[/yellow] Skipping {module} hook {hook.name}: "
                        f"{container} is {reason}"
                    )
                    report.skipped.append((hook, reason))
                    continue
                self.console.print(
                    f"  Processing {module} module hook {event} in '{hook.service}' container..."
                )
                try:
                    self.docker.copy_modules(container)
                except ProcessError as e:
                    report.failures.append(
                        HookFailure(module, hook.name, e.result, hook.service, str(e))
                    )
                    continue
                env_files = list(self.ctx.module_env_files(owner))
                if owner != module:
                    env_files += self.ctx.module_env_files(module)
                result = self.docker.exec_hook(container, module, hook.name, args, env_files)
                report.ran.append(hook)
                if result.ok:
                    self._relay(f"{module}/{hook.name} in {hook.service}", result)
                else:
                    failure = HookFailure(module, hook.name, result, hook.service)
                    logger.warning("%s", failure)
                    report.failures.append(failure)
        return report

    def module_state(self, module: str, services: Iterable[str] = ()) -> ContainerState:
        """
        Runtime state of a module.

        Uses the module's ``state`` hook when it has one: a failing hook or an
        empty answer is UNKNOWN, never "not running". Otherwise the state is
        derived from the module's service containers.
        """
        hook = self.hooks.local(module, "state")
        if hook is not None:
            result = self.run_local_hook(hook)
            if not result.ok:
                logger.debug("State hook of %s failed: %s", module, result.status.describe())
                return ContainerState.UNKNOWN
            return ContainerState.parse(result.stdout)
        services = list(services)
        if not services:
            return ContainerState.UNKNOWN
        for service in services:
            state = self.docker.container_state(self.ctx.container_name(service))
            if state != ContainerState.RUNNING:
                return state
        return ContainerState.RUNNING
