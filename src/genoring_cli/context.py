"""Deployment context shared by the orchestration layers."""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import dotenv_values

from genoring_cli.config import DEFAULT_INTERPRETERS, Config

RUN_MODES = ("online", "backend", "offline")


@dataclass(frozen=True)
class Context:
    """
    Settings and absolute paths of one deployment.

    Built once per process from the configuration and passed explicitly to the
    registry, resolver, compositor, dispatcher and lifecycle controller.
    """

    root: Path
    module_dirs: Tuple[Path, ...]
    volumes_dir: Path
    env_dir: Path
    compose_file: Path
    state_file: Path
    lock_file: Path
    project: str = "genoring"
    profile: str = "dev"
    docker_command: str = "docker"
    platform: Optional[str] = None
    wait_ready: int = 300
    poll_interval: float = 1.0
    no_exposed_volumes: bool = False
    keep_env: bool = False
    interpreters: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_INTERPRETERS))

    @classmethod
    def from_config(cls, config: Config) -> "Context":
        """
        Build a context from a loaded configuration.

        Relative paths are resolved against the deployment root.
        """
        root = Path(config.root).expanduser().resolve()

        def at_root(value: str) -> Path:
            path = Path(value).expanduser()
            return path if path.is_absolute() else root / path

        return cls(
            root=root,
            module_dirs=tuple(at_root(d) for d in config.modules_dirs),
            volumes_dir=at_root(config.volumes_dir or "volumes"),
            env_dir=at_root(config.env_dir),
            compose_file=at_root(config.compose_file),
            state_file=at_root(config.state_file),
            lock_file=at_root(config.lock_file),
            project=config.project,
            profile=config.profile,
            docker_command=config.docker.command,
            platform=config.docker.platform,
            wait_ready=config.readiness.tries,
            poll_interval=config.readiness.interval,
            no_exposed_volumes=config.no_exposed_volumes,
            keep_env=config.keep_env,
            interpreters=dict(config.interpreters),
        )

    @property
    def backups_dir(self) -> Path:
        return self.volumes_dir / "backups"

    def compose_profile(self, mode: str) -> str:
        """
        COMPOSE_PROFILES value for a run mode.

        Args:
            mode: One of ``online``, ``backend`` or ``offline``

        Raises:
            ValueError: If the mode is unknown
        """
        if mode not in RUN_MODES:
            raise ValueError(
                f"Invalid run mode '{mode}', expected one of {', '.join(RUN_MODES)}"
            )
        return self.profile if mode == "online" else mode

    def container_name(self, service: str) -> str:
        """Container name of a service: a leading ``genoring`` becomes the project name."""
        return re.sub(r"^genoring", self.project, service)

    def volume_name(self, volume: str) -> str:
        """Docker volume name: a leading ``genoring-`` becomes ``<project>-``."""
        return re.sub(r"^genoring-", f"{self.project}-", volume)

    def module_env_files(self, module: str):
        """Installed env files of a module, sorted."""
        if not self.env_dir.is_dir():
            return []
        return sorted(self.env_dir.glob(f"{module}_*.env"))

    def hook_env(self, module: str, module_path: Path, mode: Optional[str] = None) -> Dict[str, str]:
        """
        Environment for a local hook of a module.

        Contains the parent environment, every variable of the module's
        installed env files, and the fixed GenoRing variables. Paths never end
        with a slash.
        """
        env = dict(os.environ)
        for env_file in self.module_env_files(module):
            for key, value in dotenv_values(env_file).items():
                if value is not None:
                    env[key] = value
        env.update(
            {
                "GENORING_DIR": str(self.root).rstrip("/") or "/",
                "GENORING_MODULE_DIR": str(module_path).rstrip("/") or "/",
                "GENORING_VOLUMES_DIR": str(self.volumes_dir).rstrip("/") or "/",
                "GENORING_NO_EXPOSED_VOLUMES": "1" if self.no_exposed_volumes else "",
                "COMPOSE_PROJECT_NAME": self.project,
            }
        )
        if mode is not None:
            env["COMPOSE_PROFILES"] = self.compose_profile(mode)
        return env

    def compose_env(self, mode: Optional[str] = None) -> Dict[str, str]:
        """Environment for ``docker compose`` invocations."""
        env = dict(os.environ)
        env.update(
            {
                "COMPOSE_PROJECT_NAME": self.project,
                "GENORING_DIR": str(self.root),
                "GENORING_VOLUMES_DIR": str(self.volumes_dir),
            }
        )
        if mode is not None:
            env["COMPOSE_PROFILES"] = self.compose_profile(mode)
        return env
