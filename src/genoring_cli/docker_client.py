"""Docker and docker compose client used by the lifecycle controller."""

import logging
import shlex
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from genoring_cli.context import Context
from genoring_cli.errors import ProcessError
from genoring_cli.process import ProcessResult, run_process
from genoring_cli.state import ContainerState

logger = logging.getLogger(__name__)

CONTAINER_MODULES_DIR = "/genoring/modules"

Runner = Callable[..., ProcessResult]


class DockerClient:
    """
    Client for the container runtime.

    Every call goes through a single process runner so that tests can replace
    the runtime with a fake.
    """

    def __init__(self, ctx: Context, runner: Optional[Runner] = None):
        """
        Initialize the Docker client.

        Args:
            ctx: Deployment context
            runner: Process runner, defaults to ``run_process``
        """
        self.ctx = ctx
        self.runner = runner or run_process
        self._prepared: Dict[str, bool] = {}

    def _docker(self, *args: str, env: Optional[Dict[str, str]] = None) -> ProcessResult:
        return self.runner([self.ctx.docker_command, *args], env=env, cwd=self.ctx.root)

    def _compose(self, args: Sequence[str], mode: Optional[str] = None) -> ProcessResult:
        env = self.ctx.compose_env(mode)
        if self.ctx.platform:
            env["DOCKER_DEFAULT_PLATFORM"] = self.ctx.platform
        command = [
            self.ctx.docker_command,
            "compose",
            "-f",
            str(self.ctx.compose_file),
            "-p",
            self.ctx.project,
            *args,
        ]
        return self.runner(command, env=env, cwd=self.ctx.root)

    def up(self, mode: str) -> ProcessResult:
        """
        Start the deployment in the given run mode.

        Raises:
            ProcessError: If docker compose fails
        """
        result = self._compose(["up", "-d", "--remove-orphans"], mode=mode)
        if not result.ok:
            raise ProcessError(f"Failed to start GenoRing ({mode} mode)", result)
        return result

    def down(self) -> Optional[ProcessResult]:
        """
        Stop every service of every profile.

        Raises:
            ProcessError: If docker compose fails
        """
        if not self.ctx.compose_file.exists():
            return None
        result = self._compose(["--profile", "*", "down", "--remove-orphans"])
        if not result.ok:
            raise ProcessError("Failed to stop GenoRing", result)
        self._prepared.clear()
        return result

    def project_states(self) -> Dict[str, ContainerState]:
        """State of every container of the compose project, by container name."""
        result = self._docker(
            "ps",
            "--all",
            "--filter",
            f"label=com.docker.compose.project={self.ctx.project}",
            "--format",
            "{{.Names}} {{.State}}",
        )
        states: Dict[str, ContainerState] = {}
        if not result.ok:
            logger.warning("Could not list containers: %s", result.status.describe())
            return states
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 2:
                states[parts[0]] = ContainerState.parse(parts[1])
        return states

    def is_running(self) -> bool:
        return any(state == ContainerState.RUNNING for state in self.project_states().values())

    def container_state(self, container: str) -> ContainerState:
        """State of one container; ABSENT when it does not exist."""
        result = self._docker(
            "ps", "--all", "--filter", f"name={container}", "--format", "{{.Names}} {{.State}}"
        )
        if not result.ok:
            return ContainerState.UNKNOWN
        for line in result.stdout.splitlines():
            parts = line.split()
            # The name filter is a substring match.
            if parts and parts[0] == container:
                return ContainerState.parse(parts[1] if len(parts) > 1 else "")
        return ContainerState.ABSENT

    def copy_modules(self, container: str) -> None:
        """
        Provide module files to a container, once per run.

        Raises:
            ProcessError: If the copy fails
        """
        if self._prepared.get(container):
            return
        result = self._docker(
            "exec",
            "-u",
            "0",
            container,
            "sh",
            "-c",
            f"mkdir -p {CONTAINER_MODULES_DIR} && rm -rf {CONTAINER_MODULES_DIR}/*",
        )
        if not result.ok:
            raise ProcessError(f"Failed to prepare module files in {container}", result)
        for modules_dir in self.ctx.module_dirs:
            if not modules_dir.is_dir():
                continue
            result = self._docker("cp", f"{modules_dir}/.", f"{container}:{CONTAINER_MODULES_DIR}")
            if not result.ok:
                raise ProcessError(f"Failed to copy module files in {container}", result)
        self._prepared[container] = True

    def exec_hook(
        self,
        container: str,
        module: str,
        hook_file: str,
        args: Sequence[str] = (),
        env_files: Sequence[Path] = (),
    ) -> ProcessResult:
        """Run a module hook script inside a container as root."""
        script = f"{CONTAINER_MODULES_DIR}/{module}/hooks/{hook_file}"
        command = f"chmod uog+x {shlex.quote(script)} && {shlex.quote(script)}"
        if args:
            command += " " + " ".join(shlex.quote(str(a)) for a in args)
        options: List[str] = []
        for env_file in env_files:
            options += ["--env-file", str(env_file)]
        return self._docker("exec", *options, "-u", "0", container, "sh", "-c", command)

    def create_volume(self, name: str) -> None:
        result = self._docker("volume", "create", name)
        if not result.ok:
            raise ProcessError(f"Failed to create volume '{name}'", result)

    def remove_volume(self, name: str) -> bool:
        result = self._docker("volume", "rm", "-f", name)
        if not result.ok:
            logger.warning("Failed to remove volume '%s': %s", name, result.output)
        return result.ok

    def logs(self, container: str, tail: int = 10) -> str:
        result = self._docker("logs", "-n", str(tail), container)
        return result.output
