"""Lifecycle controller sequencing registry, resolver, compositor and hooks."""

import logging
import re
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.markup import escape

from genoring_cli.context import RUN_MODES, Context
from genoring_cli.docker_client import DockerClient
from genoring_cli.errors import (
    GenoringError,
    OperationCancelled,
    PreconditionFailed,
    ReadinessTimeout,
)
from genoring_cli.modules.compositor import DeploymentDescriptor, DescriptorCompositor
from genoring_cli.modules.hooks import HookDispatcher, HookReport
from genoring_cli.modules.registry import ModuleRegistry
from genoring_cli.modules.resolver import DependencyResolver, Resolution
from genoring_cli.modules.versions import is_upgrade
from genoring_cli.state import (
    STATUS_DISABLED,
    STATUS_ENABLED,
    STATUS_UNINSTALLING,
    ContainerState,
    DeploymentLock,
    LifecycleState,
    StateStore,
)

logger = logging.getLogger(__name__)
console = Console(stderr=True)

BACKUP_NAME_REGEX = re.compile(r"^[a-z][\w.\-]*$", re.IGNORECASE)


@dataclass
class OperationResult:
    """Standard result format for lifecycle operations."""

    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    failures: List[GenoringError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when hooks failed or services were not ready in time."""
        return bool(self.failures)

    def add_report(self, report: HookReport) -> None:
        self.failures.extend(report.failures)


@dataclass
class Operation:
    """Runtime mode bookkeeping of a mutating operation."""

    previous: Optional[str]
    mode: str
    result: OperationResult


class ReadinessPoller:
    """
    Polls a module's state until it reports ``running``.

    This is the only blocking wait of an operation. It sleeps on an Event so
    that ``cancel()`` (or Ctrl-C) interrupts it immediately.
    """

    def __init__(self, dispatcher: HookDispatcher, max_tries: int = 300, interval: float = 1.0):
        self.dispatcher = dispatcher
        self.max_tries = max(1, max_tries)
        self.interval = interval
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    def wait(self, module: str, services: Sequence[str] = ()) -> ContainerState:
        """
        Wait for a module to be running.

        Args:
            module: Module name
            services: Module services expected to run in the current mode

        Returns:
            The final (running) state

        Raises:
            ReadinessTimeout: If the module is not running after max_tries checks
            OperationCancelled: If the wait was cancelled
        """
        state = self.dispatcher.module_state(module, services)
        tries = 1
        while state != ContainerState.RUNNING:
            if tries >= self.max_tries:
                raise ReadinessTimeout(module, state.value, tries, services)
            try:
                cancelled = self._cancelled.wait(self.interval)
            except KeyboardInterrupt:
                self.cancel()
                cancelled = True
            if cancelled:
                raise OperationCancelled(f"Stopped waiting for module '{module}'")
            state = self.dispatcher.module_state(module, services)
            tries += 1
        return state


class LifecycleController:
    """
    Drives modules through their lifecycle.

    Every mutating operation holds the deployment lock, validates its
    preconditions (including a full dependency resolution) before any hook
    runs, stops the deployment, runs local hooks while no container is up,
    starts the deployment in backend or offline mode for container hooks, and
    finally puts the deployment back in the mode it was found in.
    """

    def __init__(
        self,
        ctx: Context,
        registry: Optional[ModuleRegistry] = None,
        store: Optional[StateStore] = None,
        docker: Optional[DockerClient] = None,
        dispatcher: Optional[HookDispatcher] = None,
        runner=None,
        out: Optional[Console] = None,
    ):
        """
        Initialize the controller.

        Args:
            ctx: Deployment context
            registry: Module registry, loaded from the context when omitted
            store: Lifecycle marker store
            docker: Container runtime client
            dispatcher: Hook dispatcher
            runner: Process runner shared by the default collaborators
            out: Console for progress output
        """
        self.ctx = ctx
        self.registry = registry or ModuleRegistry(ctx.module_dirs)
        self.store = store or StateStore(ctx.state_file)
        self.docker = docker or DockerClient(ctx, runner)
        self.dispatcher = dispatcher or HookDispatcher(
            ctx, self.registry, self.docker, runner=runner, console=out
        )
        self.compositor = DescriptorCompositor(ctx, self.registry)
        self.poller = ReadinessPoller(self.dispatcher, ctx.wait_ready, ctx.poll_interval)
        self.lock = DeploymentLock(ctx.lock_file)
        self.console = out or console

    # Resolution and composition.

    def resolver(self, profile: Optional[str] = None) -> DependencyResolver:
        return DependencyResolver(self.registry, profile, self.store.alternatives())

    def resolve(self, active: Sequence[str], candidates: Optional[Sequence[str]] = None) -> Resolution:
        """Validate a module set against every constraint, whatever the profile."""
        return self.resolver(None).resolve(active, candidates)

    def build_descriptor(
        self, active: Optional[Sequence[str]] = None, mode: str = "online"
    ) -> Tuple[Resolution, DeploymentDescriptor]:
        """Resolve and compose the deployment for a run mode."""
        if active is None:
            active = self.store.enabled_modules()
        resolution = self.resolver(self.ctx.compose_profile(mode)).resolve(active)
        return resolution, self.compositor.compose(resolution)

    def validate(self, active: Sequence[str]) -> Resolution:
        """
        Resolve a module set and compose it for every run mode.

        Raises:
            GenoringError: Any resolution or composition failure
        """
        resolution = self.resolve(active)
        for mode in RUN_MODES:
            self.build_descriptor(active, mode)
        return resolution

    def _write_compose(self, active: Sequence[str], mode: str) -> Resolution:
        resolution, descriptor = self.build_descriptor(active, mode)
        self.compositor.write(descriptor)
        for volume in descriptor.external_volumes:
            self.docker.create_volume(self.ctx.volume_name(volume))
        for warning in resolution.warnings:
            self.console.print(f"[yellow]⚠[/yellow] {escape(warning)}")
        return resolution

    def _hook_order(self, modules: Sequence[str]) -> List[str]:
        if not modules:
            return []
        try:
            return self.resolve(modules).modules
        except GenoringError as e:
            logger.warning("Cannot order modules (%s), using name order", e)
            return sorted(modules)

    @staticmethod
    def _services_map(resolution: Resolution) -> Dict[str, str]:
        return {service.name: service.module for service in resolution.services}

    # Runtime mode handling.

    def current_mode(self) -> Optional[str]:
        """Run mode the deployment is in, None when stopped."""
        if not self.docker.is_running():
            return None
        return self.store.state.mode or "online"

    def _start(
        self, mode: str, result: OperationResult, active: Optional[Sequence[str]] = None
    ) -> Resolution:
        if active is None:
            active = self.store.enabled_modules()
        resolution = self._write_compose(active, mode)
        if not resolution.services:
            logger.info("No service to start")
            return resolution
        if not self.docker.is_running():
            result.add_report(self.dispatcher.run_local("start", resolution.modules, mode=mode))
        self.console.print(f"- Starting GenoRing ({mode} mode)...")
        self.docker.up(mode)
        self.store.set_mode(mode)
        self._wait_ready(resolution, mode, result)
        result.add_report(
            self.dispatcher.run_container(mode, self._services_map(resolution), resolution.modules)
        )
        return resolution

    def _wait_ready(self, resolution: Resolution, mode: str, result: OperationResult) -> None:
        profile = self.ctx.compose_profile(mode)
        for module in resolution.modules:
            services = [s.name for s in resolution.services_of(module) if s.runs_in(profile)]
            if not services and self.dispatcher.hooks.local(module, "state") is None:
                continue
            try:
                self.poller.wait(module, services)
            except ReadinessTimeout as e:
                self.console.print(f"[yellow]⚠[/yellow] {escape(str(e))}")
                for service in services:
                    logs = self.docker.logs(self.ctx.container_name(service))
                    if logs:
                        self.console.print(f"[dim]==> {service}:[/dim]")
                        self.console.print(logs, markup=False, highlight=False)
                result.failures.append(e)

    def _stop(self, result: OperationResult) -> None:
        self.console.print("- Stopping GenoRing...")
        self.docker.down()
        self.store.set_mode(None)
        modules = self._hook_order(self.store.enabled_modules())
        result.add_report(self.dispatcher.run_local("stop", modules))

    def _ensure_stopped(self, result: OperationResult) -> None:
        if self.docker.is_running():
            self._stop(result)

    @contextmanager
    def _operation(self, result: OperationResult) -> Iterator[Operation]:
        previous = self.current_mode()
        mode = "backend" if previous in ("online", "backend") else "offline"
        self._stop(result)
        operation = Operation(previous, mode, result)
        try:
            yield operation
        finally:
            self._restore(operation)

    def _restore(self, operation: Operation) -> None:
        result = operation.result
        try:
            if operation.previous:
                self._start(operation.previous, result)
            else:
                self._write_compose(self.store.enabled_modules(), "online")
                self._ensure_stopped(result)
        except GenoringError as e:
            message = f"Failed to restore GenoRing to its previous state: {e}"
            logger.error(message)
            result.warnings.append(message)

    # Preconditions.

    def _require_state(self, module: str, *allowed: LifecycleState) -> LifecycleState:
        self.registry.require(module)
        state = self.store.lifecycle_state(module)
        if state in allowed:
            return state
        if state == LifecycleState.ABSENT:
            raise PreconditionFailed(f"Module '{module}' is not installed")
        if state == LifecycleState.UNINSTALLING:
            raise PreconditionFailed(
                f"Module '{module}' is being uninstalled. Run uninstall again to finish."
            )
        if LifecycleState.ABSENT in allowed:
            raise PreconditionFailed(f"Module '{module}' is already installed")
        if state == LifecycleState.ENABLED:
            raise PreconditionFailed(f"Module '{module}' is enabled. Disable it first.")
        raise PreconditionFailed(f"Module '{module}' is not enabled")

    def _check_requirements(self, module: str) -> None:
        report = self.dispatcher.run_local("requirements", [module])
        if report.failures:
            failure = report.failures[0]
            detail = f"\n{failure.output}" if failure.output else ""
            raise PreconditionFailed(
                f"Could not install module '{module}': some requirements were not met.{detail}"
            )

    # File system helpers.

    def _install_env_files(self, module: str) -> None:
        descriptor = self.registry.require(module)
        if not descriptor.env_dir.is_dir():
            return
        self.ctx.env_dir.mkdir(parents=True, exist_ok=True)
        for env_file in sorted(descriptor.env_dir.glob("*.env")):
            target = self.ctx.env_dir / f"{module}_{env_file.name}"
            if not target.exists():
                shutil.copy2(env_file, target)

    def _remove_env_files(self, module: str) -> None:
        for env_file in self.ctx.module_env_files(module):
            env_file.unlink()

    def _remove_volumes(self, module: str, result: OperationResult) -> None:
        descriptor = self.registry.require(module)
        volumes_root = self.ctx.volumes_dir.resolve()
        for volume in descriptor.volumes:
            if volume.mapping:
                path = Path(volume.mapping)
                if not path.is_absolute():
                    path = self.ctx.root / path
                path = path.resolve()
                if path != volumes_root and volumes_root in path.parents and path.exists():
                    try:
                        if path.is_dir():
                            shutil.rmtree(path)
                        else:
                            path.unlink()
                    except OSError as e:
                        result.warnings.append(f"Failed to remove volume data {path}: {e}")
            if volume.definition is not None or self.ctx.no_exposed_volumes:
                if not self.docker.remove_volume(self.ctx.volume_name(volume.name)):
                    result.warnings.append(f"Failed to remove volume '{volume.name}'")

    # Operations.

    def _do_enable(self, module: str, operation: Operation) -> None:
        result = operation.result
        self._ensure_stopped(result)
        result.add_report(self.dispatcher.run_local("enable", [module], mode=operation.mode))
        active = sorted(set(self.store.enabled_modules()) | {module})
        resolution = self._start(operation.mode, result, active=active)
        result.add_report(
            self.dispatcher.run_container(
                "enable", self._services_map(resolution), resolution.modules, changing=module
            )
        )
        self.store.set(module, STATUS_ENABLED)

    def _do_init(self, module: str, operation: Operation) -> None:
        result = operation.result
        self._ensure_stopped(result)
        result.add_report(self.dispatcher.run_local("init", [module], mode=operation.mode))
        self.store.set(module, STATUS_DISABLED, self.registry.require(module).version)

    def install(self, module: str, enable: bool = True, with_dependencies: bool = False) -> OperationResult:
        """
        Install a module and, by default, enable it.

        Args:
            module: Module name
            enable: Enable the module once installed
            with_dependencies: Install and enable missing required modules first

        Returns:
            OperationResult; degraded when hooks failed

        Raises:
            PreconditionFailed: If the module is installed or its requirements hook fails
            UnsatisfiedDependency: If a required module is not enabled
        """
        with self.lock:
            self._require_state(module, LifecycleState.ABSENT)
            enabled = self.store.enabled_modules()
            candidates = self.registry.list_modules() if with_dependencies else None
            resolution = self.resolve(enabled + [module], candidates)
            dependencies = [m for m in resolution.modules if m in resolution.added]
            for dependency in dependencies:
                if self.store.lifecycle_state(dependency) == LifecycleState.UNINSTALLING:
                    raise PreconditionFailed(f"Module '{dependency}' is being uninstalled")
            self.validate(enabled + dependencies + ([module] if enable else []))

            to_install = [
                m for m in dependencies + [module]
                if self.store.lifecycle_state(m) == LifecycleState.ABSENT
            ]
            for name in to_install:
                self._check_requirements(name)
            for name in to_install:
                self._install_env_files(name)

            result = OperationResult(success=True, message=f"Module '{module}' installed")
            with self._operation(result) as operation:
                for dependency in dependencies:
                    if dependency in to_install:
                        self._do_init(dependency, operation)
                    self._do_enable(dependency, operation)
                self._do_init(module, operation)
                if enable:
                    self._do_enable(module, operation)
            if enable:
                result.message = f"Module '{module}' installed and enabled"
            result.data = {"module": module, "dependencies": dependencies}
            return result

    def enable(self, module: str) -> OperationResult:
        """
        Enable an installed module.

        Raises:
            PreconditionFailed: If the module is not installed-disabled
            UnsatisfiedDependency: If a required module is not enabled
            ConflictingModules: If an enabled module conflicts with it
            DependencyCycle: If start ordering becomes cyclic
            VersionMismatch: If a required module is out of bounds
            CompositionError: If the resulting deployment cannot be composed
        """
        with self.lock:
            self._require_state(module, LifecycleState.INSTALLED_DISABLED)
            self.validate(self.store.enabled_modules() + [module])
            result = OperationResult(success=True, message=f"Module '{module}' enabled")
            with self._operation(result) as operation:
                self._do_enable(module, operation)
            return result

    def _disable(self, module: str, result: OperationResult) -> None:
        self._require_state(module, LifecycleState.ENABLED)
        enabled = self.store.enabled_modules()
        # Fails, naming the dependent, when an enabled module still requires it.
        self.validate([m for m in enabled if m != module])
        with self._operation(result) as operation:
            resolution = self._start(operation.mode, result, active=enabled)
            result.add_report(
                self.dispatcher.run_container(
                    "disable", self._services_map(resolution), resolution.modules, changing=module
                )
            )
            self._ensure_stopped(result)
            result.add_report(self.dispatcher.run_local("disable", [module], mode=operation.mode))
            self.store.set(module, STATUS_DISABLED)

    def disable(self, module: str) -> OperationResult:
        """
        Disable an enabled module, keeping its data.

        Raises:
            PreconditionFailed: If the module is not enabled
            UnsatisfiedDependency: If another enabled module requires it
        """
        with self.lock:
            result = OperationResult(success=True, message=f"Module '{module}' disabled")
            self._disable(module, result)
            return result

    def uninstall(self, module: str, disable: bool = False) -> OperationResult:
        """
        Uninstall a disabled module and remove its data.

        Args:
            module: Module name
            disable: Disable the module first when it is enabled

        Raises:
            PreconditionFailed: If the module is not installed, or enabled without ``disable``
        """
        with self.lock:
            result = OperationResult(success=True, message=f"Module '{module}' uninstalled")
            state = self._require_state(
                module,
                LifecycleState.INSTALLED_DISABLED,
                LifecycleState.UNINSTALLING,
                LifecycleState.ENABLED,
            )
            if state == LifecycleState.ENABLED:
                if not disable:
                    raise PreconditionFailed(
                        f"Module '{module}' is enabled. Disable it first (or use --disable)."
                    )
                self._disable(module, result)

            self.store.set(module, STATUS_UNINSTALLING)
            with self._operation(result) as operation:
                resolution = self._start(operation.mode, result)
                result.add_report(
                    self.dispatcher.run_container(
                        "uninstall", self._services_map(resolution), resolution.modules,
                        changing=module,
                    )
                )
                self._ensure_stopped(result)
                result.add_report(
                    self.dispatcher.run_local("uninstall", [module], mode=operation.mode)
                )
                self._remove_volumes(module, result)
                if not self.ctx.keep_env:
                    self._remove_env_files(module)
                self.store.remove(module)
            return result

    def update(self, module: Optional[str] = None) -> OperationResult:
        """Run update hooks for one installed module, or for every enabled module."""
        with self.lock:
            if module:
                self._require_state(
                    module, LifecycleState.ENABLED, LifecycleState.INSTALLED_DISABLED
                )
                targets = [module]
            else:
                targets = self.store.enabled_modules()
            targets = self._hook_order(targets)
            result = OperationResult(success=True, message="Update done", data={"modules": targets})
            with self._operation(result) as operation:
                result.add_report(
                    self.dispatcher.run_local("update", targets, mode=operation.mode)
                )
                resolution = self._start(operation.mode, result)
                services = self._services_map(resolution)
                if module:
                    result.add_report(
                        self.dispatcher.run_container(
                            "update", services, resolution.modules, changing=module
                        )
                    )
                else:
                    result.add_report(
                        self.dispatcher.run_container("update", services, resolution.modules)
                    )
            return result

    def pending_upgrades(self, module: Optional[str] = None) -> List[Tuple[str, str, str]]:
        """(module, installed version, available version) for modules with a newer version."""
        names = [module] if module else self.store.installed_modules()
        pending = []
        for name in names:
            record = self.store.get(name)
            descriptor = self.registry.get_module(name)
            if record is None or descriptor is None:
                continue
            if is_upgrade(record.version, descriptor.version):
                pending.append((name, record.version, descriptor.version))
        return pending

    def upgrade(self, module: Optional[str] = None) -> OperationResult:
        """
        Upgrade modules whose available version is strictly newer.

        Local ``upgrade`` hooks (old, new) run before container ``upgrade``
        and ``update`` hooks.
        """
        with self.lock:
            if module:
                self._require_state(
                    module, LifecycleState.ENABLED, LifecycleState.INSTALLED_DISABLED
                )
            pending = self.pending_upgrades(module)
            if not pending:
                return OperationResult(success=True, message="Everything is up to date", data={"upgraded": []})

            # Order over the enabled set too: pending modules may require modules that are not.
            names = [name for name, _, _ in pending]
            order = self._hook_order(sorted(set(self.store.enabled_modules()) | set(names)))
            order = [name for name in order if name in names]
            order += sorted(name for name in names if name not in order)
            pending.sort(key=lambda item: order.index(item[0]))
            result = OperationResult(
                success=True,
                message=f"Upgraded {len(pending)} module(s)",
                data={"upgraded": [list(item) for item in pending]},
            )
            with self._operation(result) as operation:
                for name, old, new in pending:
                    result.add_report(
                        self.dispatcher.run_local("upgrade", [name], args=[old, new], mode=operation.mode)
                    )
                resolution = self._start(operation.mode, result)
                services = self._services_map(resolution)
                for name, old, new in pending:
                    result.add_report(
                        self.dispatcher.run_container(
                            "upgrade", services, resolution.modules, changing=name, args=[old, new]
                        )
                    )
                    result.add_report(
                        self.dispatcher.run_container(
                            "update", services, resolution.modules, changing=name
                        )
                    )
                for name, old, new in pending:
                    record = self.store.get(name)
                    self.store.set(name, record.status, new)
            return result

    def _backup_modules(self, module: Optional[str]) -> List[str]:
        if module:
            self._require_state(module, LifecycleState.ENABLED, LifecycleState.INSTALLED_DISABLED)
            return [module]
        return self._hook_order(self.store.enabled_modules())

    def _copy_config(self, target: Path) -> None:
        target.mkdir(parents=True, exist_ok=True)
        for path in (self.ctx.compose_file, self.ctx.state_file):
            if path.exists():
                shutil.copy2(path, target / path.name)
        if self.ctx.env_dir.is_dir():
            shutil.copytree(self.ctx.env_dir, target / "env", dirs_exist_ok=True)

    def _restore_config(self, source: Path) -> None:
        for path in (self.ctx.compose_file, self.ctx.state_file):
            saved = source / path.name
            if saved.exists():
                shutil.copy2(saved, path)
        if (source / "env").is_dir():
            shutil.copytree(source / "env", self.ctx.env_dir, dirs_exist_ok=True)
        self.store.reload()

    def _run_backup_hooks(self, event: str, name: str, module: Optional[str],
                          modules: List[str], result: OperationResult) -> None:
        with self._operation(result) as operation:
            result.add_report(
                self.dispatcher.run_local(event, modules, args=[name], mode=operation.mode)
            )
            resolution = self._start(operation.mode, result)
            result.add_report(
                self.dispatcher.run_container(
                    event, self._services_map(resolution), resolution.modules,
                    changing=module, args=[name],
                )
            )

    def backup(self, name: Optional[str] = None, module: Optional[str] = None) -> OperationResult:
        """
        Back up the deployment or a single module.

        Args:
            name: Backup name, defaults to ``backup_<YYYYMMDDTHHMM>``
            module: Only back up this module

        Raises:
            PreconditionFailed: If the name is invalid or the module is not installed
        """
        name = name or datetime.now().strftime("backup_%Y%m%dT%H%M")
        if not BACKUP_NAME_REGEX.match(name):
            raise PreconditionFailed(
                f"Invalid backup name '{name}'. Only letters, numbers, dots, underscores "
                "and dashes are allowed and the name must begin with a letter."
            )
        with self.lock:
            modules = self._backup_modules(module)
            backup_dir = self.ctx.backups_dir / name
            backup_dir.mkdir(parents=True, exist_ok=True)
            if module is None:
                self._copy_config(backup_dir / "config")
            result = OperationResult(
                success=True,
                message=f"Backup created in '{backup_dir}'",
                data={"name": name, "path": str(backup_dir)},
            )
            self._run_backup_hooks("backup", name, module, modules, result)
            return result

    def restore(self, name: str, module: Optional[str] = None) -> OperationResult:
        """
        Restore a backup of the deployment or of a single module.

        Raises:
            PreconditionFailed: If the backup does not exist
        """
        if not BACKUP_NAME_REGEX.match(name or ""):
            raise PreconditionFailed(f"Invalid backup name '{name}'")
        backup_dir = self.ctx.backups_dir / name
        if not backup_dir.is_dir():
            raise PreconditionFailed(f"Backup '{name}' not found in {self.ctx.backups_dir}")
        with self.lock:
            if module is None and (backup_dir / "config").is_dir():
                self._restore_config(backup_dir / "config")
            modules = self._backup_modules(module)
            result = OperationResult(
                success=True, message=f"Backup '{name}' restored", data={"name": name}
            )
            self._run_backup_hooks("restore", name, module, modules, result)
            return result

    def start(self, mode: str = "online") -> OperationResult:
        """Start the deployment in a run mode."""
        self.ctx.compose_profile(mode)
        with self.lock:
            result = OperationResult(success=True, message=f"GenoRing started ({mode} mode)")
            self.resolve(self.store.enabled_modules())
            self._start(mode, result)
            return result

    def stop(self) -> OperationResult:
        """Stop every service of the deployment."""
        with self.lock:
            result = OperationResult(success=True, message="GenoRing stopped")
            self._stop(result)
            return result

    def compose(self, write: bool = True, mode: str = "online") -> DeploymentDescriptor:
        """Regenerate the deployment descriptor for the enabled modules."""
        if not write:
            return self.build_descriptor(mode=mode)[1]
        with self.lock:
            resolution, descriptor = self.build_descriptor(mode=mode)
            self.compositor.write(descriptor)
            return descriptor

    # Alternatives.

    def list_alternatives(self, module: str) -> List[Dict[str, Any]]:
        descriptor = self.registry.require(module)
        record = self.store.get(module)
        enabled = set(record.alternatives) if record else set()
        return [
            {
                "name": alternative.name,
                "description": alternative.description,
                "enabled": alternative.name in enabled,
                "substitute": dict(alternative.substitute),
                "add": list(alternative.add),
                "remove": list(alternative.remove),
            }
            for alternative in descriptor.alternatives
        ]

    def _set_alternative(self, module: str, alternative: str, enabled: bool) -> OperationResult:
        with self.lock:
            self._require_state(module, LifecycleState.INSTALLED_DISABLED)
            descriptor = self.registry.require(module)
            if descriptor.get_alternative(alternative) is None:
                raise PreconditionFailed(
                    f"Module '{module}' has no alternative '{alternative}'"
                )
            current = list(self.store.get(module).alternatives)
            if enabled and alternative not in current:
                current.append(alternative)
            elif not enabled and alternative in current:
                current.remove(alternative)
            self.store.set_alternatives(module, current)
            state = "enabled" if enabled else "disabled"
            return OperationResult(
                success=True, message=f"Alternative '{alternative}' of '{module}' {state}"
            )

    def enable_alternative(self, module: str, alternative: str) -> OperationResult:
        """Record an alternative as enabled. The module must be installed and disabled."""
        return self._set_alternative(module, alternative, True)

    def disable_alternative(self, module: str, alternative: str) -> OperationResult:
        """Record an alternative as disabled. The module must be installed and disabled."""
        return self._set_alternative(module, alternative, False)

    # Status.

    def status(self, module: Optional[str] = None) -> List[Dict[str, Any]]:
        """Lifecycle state, versions and runtime state of modules."""
        if module:
            self.registry.require(module)
            names = [module]
        else:
            names = sorted(set(self.registry.list_modules()) | set(self.store.installed_modules()))
        running = self.docker.is_running()
        rows = []
        for name in names:
            descriptor = self.registry.get_module(name)
            record = self.store.get(name)
            state = self.store.lifecycle_state(name)
            runtime = None
            if state == LifecycleState.ENABLED and descriptor is not None:
                if running:
                    runtime = self.dispatcher.module_state(name, descriptor.service_names)
                else:
                    runtime = ContainerState.ABSENT
            rows.append(
                {
                    "name": name,
                    "state": state.value,
                    "installed": record.version if record else "",
                    "available": descriptor.version if descriptor else "",
                    "runtime": runtime.label if runtime is not None else "",
                }
            )
        return rows
