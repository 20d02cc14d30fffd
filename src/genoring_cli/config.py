"""Configuration management with file and environment variable support."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

SITE_PROFILES = ("dev", "staging", "prod", "backend")
DEFAULT_CONFIG_FILE = "genoring-cli.yaml"
DEFAULT_INTERPRETERS = {".pl": "perl", ".py": "python3", ".sh": "sh"}


class DockerConfig(BaseModel):
    """Container runtime settings."""

    command: str = "docker"
    platform: Optional[str] = None


class ReadinessConfig(BaseModel):
    """Readiness polling budget."""

    tries: int = 300
    interval: float = 1.0


class Config(BaseModel):
    """Main configuration model."""

    root: str = "."
    modules_dirs: List[str] = Field(default_factory=lambda: ["modules"])
    volumes_dir: Optional[str] = None
    env_dir: str = "env"
    compose_file: str = "docker-compose.yml"
    state_file: str = "config.yml"
    lock_file: str = ".genoring.lock"
    project: str = "genoring"
    profile: str = "dev"
    no_exposed_volumes: bool = False
    keep_env: bool = False
    docker: DockerConfig = Field(default_factory=DockerConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    interpreters: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_INTERPRETERS))

    @field_validator("profile")
    @classmethod
    def check_profile(cls, value: str) -> str:
        if value not in SITE_PROFILES:
            raise ValueError(
                f"Invalid profile '{value}', expected one of {', '.join(SITE_PROFILES)}"
            )
        return value


def _is_true(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Manages configuration loading with precedence: CLI flags > env vars > config file."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Loads a ``.env`` file from the current directory if present. Existing
        environment variables are never overridden by it.

        Note: .env loading is skipped during testing to prevent interference.
        """
        is_testing = os.getenv("PYTEST_CURRENT_TEST") is not None
        if not is_testing and Path(".env").exists():
            load_dotenv(".env", override=False)

        if config_path:
            self.config_path = Path(config_path)
        elif os.getenv("GENORING_CLI_CONFIG"):
            self.config_path = Path(os.environ["GENORING_CLI_CONFIG"])
        else:
            self.config_path = Path(DEFAULT_CONFIG_FILE)

    def load(self) -> Config:
        """
        Load configuration with precedence rules.

        Order of precedence (highest to lowest):
        1. Environment variables (including .env file)
        2. Configuration file (genoring-cli.yaml)
        3. Default values
        """
        config_dict: Dict[str, Any] = Config().model_dump()

        if self.config_path.exists():
            with open(self.config_path, "r") as f:
                file_config = yaml.safe_load(f) or {}
            for key, value in file_config.items():
                if isinstance(value, dict) and isinstance(config_dict.get(key), dict):
                    config_dict[key].update(value)
                else:
                    config_dict[key] = value

        self._load_from_env(config_dict)

        return Config(**config_dict)

    def _load_from_env(self, config_dict: Dict[str, Any]) -> None:
        """Load configuration from environment variables."""
        if root := os.getenv("GENORING_DIR"):
            config_dict["root"] = root
        if volumes_dir := os.getenv("GENORING_VOLUMES_DIR"):
            config_dict["volumes_dir"] = volumes_dir
        if project := os.getenv("COMPOSE_PROJECT_NAME"):
            config_dict["project"] = project
        if profile := os.getenv("GENORING_ENVIRONMENT"):
            config_dict["profile"] = profile
        if docker_command := os.getenv("GENORING_DOCKER_COMMAND"):
            config_dict["docker"]["command"] = docker_command
        if wait_ready := os.getenv("GENORING_WAIT_READY"):
            config_dict["readiness"]["tries"] = int(wait_ready)
        if no_exposed := os.getenv("GENORING_NO_EXPOSED_VOLUMES"):
            config_dict["no_exposed_volumes"] = _is_true(no_exposed)

    def create_default_config(self) -> None:
        """Create a default configuration file."""
        # Ensure directory exists
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        default_config = Config().model_dump()
        default_config["volumes_dir"] = "volumes"

        with open(self.config_path, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

    def load_with_overrides(
        self,
        root: Optional[str] = None,
        profile: Optional[str] = None,
        platform: Optional[str] = None,
        no_exposed_volumes: Optional[bool] = None,
        keep_env: Optional[bool] = None,
    ) -> Config:
        """
        Load configuration with CLI flag overrides.

        Precedence (highest to lowest):
        1. CLI flags (passed as arguments)
        2. Environment variables
        3. Configuration file
        4. Default values
        """
        config = self.load()
        updates: Dict[str, Any] = {}
        if root:
            updates["root"] = root
        if profile:
            updates["profile"] = profile
        if no_exposed_volumes is not None:
            updates["no_exposed_volumes"] = no_exposed_volumes
        if keep_env is not None:
            updates["keep_env"] = keep_env
        if updates:
            config = Config(**{**config.model_dump(), **updates})
        if platform:
            config.docker.platform = platform
        return config
