"""Shared pytest fixtures and configuration."""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest
import yaml

from genoring_cli.context import Context
from genoring_cli.docker_client import DockerClient
from genoring_cli.process import ExitKind, ExitStatus, ProcessResult
from genoring_cli.state import ContainerState


def write_fragment(path: Path, payload: Dict[str, Any], header: str = "# v1.0") -> Path:
    """Write a service fragment file with its version header."""
    path.parent.mkdir(parents=True, exist_ok=True)
    body = yaml.safe_dump(payload, default_flow_style=False, sort_keys=False) if payload else ""
    path.write_text(f"{header}\n{body}")
    return path


def make_module(
    modules_dir: Path,
    name: str,
    version: Any = "1.0",
    services: Optional[Dict[str, Dict[str, Any]]] = None,
    dependencies: Optional[List[str]] = None,
    volume_dependencies: Optional[List[str]] = None,
    volumes: Optional[Dict[str, Dict[str, Any]]] = None,
    alternatives: Optional[Dict[str, Dict[str, Any]]] = None,
    hooks: Optional[Dict[str, str]] = None,
    fragments: Optional[Dict[str, Dict[str, Any]]] = None,
    env: Optional[Dict[str, str]] = None,
    description: str = "",
) -> Path:
    """
    Create a module directory.

    Args:
        modules_dir: Module root directory
        name: Module name
        version: Module version
        services: Service name to base fragment payload
        dependencies: Service dependency lines
        volume_dependencies: Volume dependency lines
        volumes: Volume name to descriptor entry
        alternatives: Alternative name to descriptor entry
        hooks: Hook file name to script content
        fragments: Extra fragment file name (under services/) to payload
        env: Env file name to content

    Returns:
        Module directory
    """
    module_dir = modules_dir / name
    module_dir.mkdir(parents=True, exist_ok=True)
    info: Dict[str, Any] = {
        "name": name.capitalize(),
        "description": description or f"{name} module",
        "version": version,
        "services": {service: {"name": service} for service in (services or {})},
    }
    if volumes:
        info["volumes"] = volumes
    if alternatives:
        info["alternatives"] = alternatives
    if dependencies or volume_dependencies:
        info["dependencies"] = {
            "services": list(dependencies or []),
            "volumes": list(volume_dependencies or []),
        }
    with open(module_dir / f"{name}.yml", "w") as f:
        yaml.safe_dump(info, f, sort_keys=False)

    for service, payload in (services or {}).items():
        write_fragment(module_dir / "services" / f"{service}.yml", payload)
    for file_name, payload in (fragments or {}).items():
        write_fragment(module_dir / "services" / file_name, payload)
    for hook_name, script in (hooks or {}).items():
        hook_path = module_dir / "hooks" / hook_name
        hook_path.parent.mkdir(parents=True, exist_ok=True)
        hook_path.write_text(script)
    for env_name, content in (env or {}).items():
        env_path = module_dir / "env" / env_name
        env_path.parent.mkdir(parents=True, exist_ok=True)
        env_path.write_text(content)
    return module_dir


def result(stdout: str = "", stderr: str = "", code: int = 0, args=None) -> ProcessResult:
    """Build a finished process result."""
    return ProcessResult(
        list(args or []), ExitStatus(ExitKind.EXITED, code=code), stdout, stderr
    )


class FakeRunner:
    """Process runner recording every command instead of running it."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.responses: List[Any] = []

    def respond(self, match: Callable[[List[str]], bool], response: ProcessResult) -> None:
        """Return ``response`` for commands ``match`` accepts."""
        self.responses.append((match, response))

    def fail_hook(self, hook_name: str, stderr: str = "boom", code: int = 1) -> None:
        self.respond(
            lambda args: any(Path(a).name == hook_name for a in args),
            result(stderr=stderr, code=code),
        )

    def __call__(self, args, env=None, cwd=None, **kwargs) -> ProcessResult:
        args = [str(a) for a in args]
        self.calls.append({"args": args, "env": env, "cwd": cwd})
        for match, response in self.responses:
            if match(args):
                return response
        return result(args=args)

    @property
    def hooks_run(self) -> List[str]:
        """``module/hook`` names of the local hooks run, in order."""
        names = []
        for call in self.calls:
            for arg in call["args"]:
                if "/hooks/" in arg:
                    names.append(f"{Path(arg).parent.parent.name}/{Path(arg).name}")
                    break
        return names


@pytest.fixture
def deployment_dir(tmp_path: Path) -> Path:
    """Create an empty deployment directory."""
    root = tmp_path / "genoring"
    (root / "modules").mkdir(parents=True)
    return root


@pytest.fixture
def modules_dir(deployment_dir: Path) -> Path:
    return deployment_dir / "modules"


@pytest.fixture
def ctx(deployment_dir: Path) -> Context:
    """Create a deployment context with a short readiness budget."""
    return Context(
        root=deployment_dir,
        module_dirs=(deployment_dir / "modules",),
        volumes_dir=deployment_dir / "volumes",
        env_dir=deployment_dir / "env",
        compose_file=deployment_dir / "docker-compose.yml",
        state_file=deployment_dir / "config.yml",
        lock_file=deployment_dir / ".genoring.lock",
        wait_ready=3,
        poll_interval=0.0,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def mock_docker() -> Mock:
    """Create a mock container runtime where every container runs."""
    docker = Mock(spec=DockerClient)
    docker.is_running.return_value = False
    docker.container_state.return_value = ContainerState.RUNNING
    docker.exec_hook.return_value = result()
    docker.remove_volume.return_value = True
    docker.logs.return_value = ""
    return docker


@pytest.fixture
def db_and_web(modules_dir: Path) -> Path:
    """A database module and a web module that requires it."""
    make_module(
        modules_dir,
        "db",
        version="1.2",
        services={"genoring-db": {"image": "postgres:15", "volumes": ["genoring-data:/var/lib/postgresql"]}},
        hooks={
            "init.sh": "echo init db\n",
            "enable.sh": "echo enable db\n",
            "enable_genoring-db.sh": "echo db container enabled\n",
        },
        env={"db.env": "POSTGRES_PASSWORD=secret\n"},
    )
    make_module(
        modules_dir,
        "web",
        version="2.0",
        services={"genoring-web": {"image": "nginx", "ports": ["8080:80"]}},
        dependencies=["REQUIRES db >= 1.0", "genoring-web AFTER db genoring-db"],
        hooks={"init.sh": "echo init web\n", "enable.sh": "echo enable web\n"},
    )
    return modules_dir


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clean environment variables before each test."""
    env_vars = [
        "GENORING_CLI_CONFIG",
        "GENORING_DIR",
        "GENORING_VOLUMES_DIR",
        "GENORING_ENVIRONMENT",
        "GENORING_DOCKER_COMMAND",
        "GENORING_WAIT_READY",
        "GENORING_NO_EXPOSED_VOLUMES",
        "GENORING_DEBUG",
        "COMPOSE_PROJECT_NAME",
        "COMPOSE_PROFILES",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)
