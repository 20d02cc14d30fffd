"""Module lifecycle markers, container states and the deployment lock."""

import fcntl
import logging
import os
from enum import Enum
from pathlib import Path
from typing import IO, Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from genoring_cli.errors import LockUnavailable

logger = logging.getLogger(__name__)

STATUS_ENABLED = "enabled"
STATUS_DISABLED = "disabled"
STATUS_UNINSTALLING = "uninstalling"


class ContainerState(str, Enum):
    """
    State reported for a container or by a module ``state`` hook.

    UNKNOWN is an explicit answer ("cannot tell"), distinct from ABSENT
    ("no such container").
    """

    CREATED = "created"
    RUNNING = "running"
    RESTARTING = "restarting"
    PAUSED = "paused"
    DEAD = "dead"
    EXITED = "exited"
    UNKNOWN = ""
    ABSENT = "absent"

    @classmethod
    def parse(cls, text: Optional[str]) -> "ContainerState":
        """Map raw state output to a state; empty or unexpected output is UNKNOWN."""
        value = (text or "").strip().lower()
        if not value:
            return cls.UNKNOWN
        for state in (cls.RUNNING, cls.RESTARTING, cls.PAUSED, cls.CREATED, cls.DEAD, cls.EXITED):
            if state.value in value:
                return state
        return cls.UNKNOWN

    @property
    def label(self) -> str:
        return self.value or "unknown"


class LifecycleState(str, Enum):
    """Per-module lifecycle state."""

    ABSENT = "absent"
    INSTALLED_DISABLED = "installed-disabled"
    ENABLED = "enabled"
    UNINSTALLING = "uninstalling"


class ModuleRecord(BaseModel):
    """Persisted marker of an installed module."""

    status: str = STATUS_DISABLED
    version: str = ""
    alternatives: List[str] = Field(default_factory=list)


class DeploymentState(BaseModel):
    """Content of the deployment state file."""

    modules: Dict[str, ModuleRecord] = Field(default_factory=dict)
    mode: Optional[str] = None


class StateStore:
    """
    Reads and writes module lifecycle markers.

    Markers live in the deployment state file (``config.yml``). Only the
    lifecycle controller writes them, under the deployment lock.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.state = self._read()

    def _read(self) -> DeploymentState:
        if not self.path.exists():
            return DeploymentState()
        with open(self.path, "r") as f:
            data = yaml.safe_load(f) or {}
        modules = {}
        for name, record in (data.get("modules") or {}).items():
            record = dict(record or {})
            if "version" in record and record["version"] is not None:
                record["version"] = str(record["version"])
            modules[name] = ModuleRecord(**record)
        return DeploymentState(modules=modules, mode=data.get("mode"))

    def reload(self) -> None:
        self.state = self._read()

    def save(self) -> None:
        """Write the state file atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data: Dict[str, Any] = {
            "modules": {
                name: record.model_dump()
                for name, record in sorted(self.state.modules.items())
            }
        }
        if self.state.mode:
            data["mode"] = self.state.mode
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        tmp.replace(self.path)

    def get(self, name: str) -> Optional[ModuleRecord]:
        return self.state.modules.get(name)

    def set(self, name: str, status: str, version: Optional[str] = None) -> ModuleRecord:
        """Create or update a module marker and persist it."""
        record = self.state.modules.get(name) or ModuleRecord()
        record.status = status
        if version is not None:
            record.version = str(version)
        self.state.modules[name] = record
        self.save()
        return record

    def remove(self, name: str) -> None:
        if self.state.modules.pop(name, None) is not None:
            self.save()

    def set_mode(self, mode: Optional[str]) -> None:
        self.state.mode = mode
        self.save()

    def set_alternatives(self, name: str, alternatives: List[str]) -> None:
        record = self.state.modules.get(name) or ModuleRecord()
        record.alternatives = list(alternatives)
        self.state.modules[name] = record
        self.save()

    def lifecycle_state(self, name: str) -> LifecycleState:
        record = self.get(name)
        if record is None:
            return LifecycleState.ABSENT
        if record.status == STATUS_ENABLED:
            return LifecycleState.ENABLED
        if record.status == STATUS_UNINSTALLING:
            return LifecycleState.UNINSTALLING
        return LifecycleState.INSTALLED_DISABLED

    def installed_modules(self) -> List[str]:
        return sorted(self.state.modules.keys())

    def enabled_modules(self) -> List[str]:
        return sorted(
            name for name, record in self.state.modules.items() if record.status == STATUS_ENABLED
        )

    def alternatives(self) -> Dict[str, List[str]]:
        return {
            name: list(record.alternatives)
            for name, record in self.state.modules.items()
            if record.alternatives
        }


class DeploymentLock:
    """
    Exclusive lock guarding the compose file and module markers.

    Uses a non-blocking ``fcntl.flock``; the kernel releases it when the
    holder exits, so a crashed run never leaves a stale lock behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._file is not None

    def acquire(self) -> None:
        """
        Acquire the lock.

        Raises:
            LockUnavailable: If another process holds it
        """
        if self._file is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.seek(0)
            holder = handle.read().strip()
            handle.close()
            raise LockUnavailable(str(self.path), holder)
        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._file = handle
        logger.debug("Acquired deployment lock %s", self.path)

    def release(self) -> None:
        """Release the lock. Safe to call without prior acquire."""
        if self._file is None:
            return
        try:
            self._file.seek(0)
            self._file.truncate()
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None
            logger.debug("Released deployment lock %s", self.path)

    def __enter__(self) -> "DeploymentLock":
        self.acquire()
        return self

    def __exit__(self, *args: Any) -> None:
        self.release()
