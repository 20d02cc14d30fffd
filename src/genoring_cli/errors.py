"""Error taxonomy for module orchestration."""

from typing import Iterable, Optional


class GenoringError(Exception):
    """Base class for every orchestration error."""


class InvalidVersion(GenoringError):
    """A version string does not follow ``major[.minor][stability]``."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Invalid version string: '{version}'")


class MalformedConstraint(GenoringError):
    """A dependency line does not match the constraint grammar."""

    def __init__(self, line: str, module: Optional[str] = None, reason: str = ""):
        self.line = line
        self.module = module
        self.reason = reason
        where = f" in module '{module}'" if module else ""
        detail = f": {reason}" if reason else ""
        super().__init__(f"Malformed dependency{where}: '{line}'{detail}")


class InvalidModule(GenoringError):
    """A module could not be loaded. Reported, never fatal to the registry."""

    def __init__(self, module: str, reason: str):
        self.module = module
        self.reason = reason
        super().__init__(f"Invalid module '{module}': {reason}")


class DuplicateModule(GenoringError):
    """Two module roots provide a module with the same name."""

    def __init__(self, module: str, paths: Iterable[str]):
        self.module = module
        self.paths = list(paths)
        super().__init__(
            f"Module '{module}' is provided more than once: {', '.join(self.paths)}"
        )


class UnknownModule(GenoringError):
    """The operator named a module that is not available."""

    def __init__(self, module: str):
        self.module = module
        super().__init__(f"Module '{module}' not found")


class UnsatisfiedDependency(GenoringError):
    """A REQUIRES constraint has no enabled target."""

    def __init__(self, module: str, missing: Iterable[str], detail: str = ""):
        self.module = module
        self.missing = list(missing)
        message = (
            f"Module '{module}' requires {' or '.join(self.missing)} "
            f"which is not enabled"
        )
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class ConflictingModules(GenoringError):
    """Two simultaneously enabled modules conflict."""

    def __init__(self, module: str, other: str, line: str = ""):
        self.module = module
        self.other = other
        self.line = line
        super().__init__(
            f"Module '{module}' conflicts with enabled module '{other}'"
            + (f" ({line})" if line else "")
            + ". Disable one of them first."
        )


class DependencyCycle(GenoringError):
    """BEFORE/AFTER (or REQUIRES) edges form a cycle."""

    def __init__(self, modules: Iterable[str], nodes: Iterable[str] = ()):
        self.modules = sorted(set(modules))
        self.nodes = sorted(set(nodes))
        message = f"Dependency cycle between modules: {', '.join(self.modules)}"
        if self.nodes and self.nodes != self.modules:
            message += f" (involving {', '.join(self.nodes)})"
        super().__init__(message)


class VersionMismatch(GenoringError):
    """A version-bounded constraint is not met by the enabled target."""

    def __init__(self, module: str, target: str, required: str, actual: str):
        self.module = module
        self.target = target
        self.required = required
        self.actual = actual
        super().__init__(
            f"Module '{module}' requires {target} {required} "
            f"but version {actual or 'n/a'} is available"
        )


class CompositionError(GenoringError):
    """The deployment descriptor cannot be composed."""


class PreconditionFailed(GenoringError):
    """A lifecycle transition is not allowed from the current state."""


class LockUnavailable(GenoringError):
    """Another orchestration run holds the deployment lock."""

    def __init__(self, path: str, holder: str = ""):
        self.path = path
        self.holder = holder
        super().__init__(
            f"Another genoring run holds the lock '{path}'"
            + (f" (pid {holder})" if holder else "")
        )


class ProcessError(GenoringError):
    """A required runtime command failed."""

    def __init__(self, message: str, result=None):
        self.result = result
        if result is not None:
            message = f"{message} ({result.status.describe()})"
            output = (result.stderr or result.stdout or "").strip()
            if output:
                message = f"{message}\n{output}"
        super().__init__(message)


class HookFailure(GenoringError):
    """A hook exited with a failure status. Collected, not raised."""

    def __init__(self, module: str, hook: str, result=None, service: Optional[str] = None,
                 reason: str = ""):
        self.module = module
        self.hook = hook
        self.result = result
        self.service = service
        self.reason = reason
        where = f" in '{service}'" if service else ""
        if not reason and result is not None:
            reason = result.status.describe()
        super().__init__(f"Hook '{hook}' of module '{module}'{where} failed: {reason}")

    @property
    def output(self) -> str:
        """Captured hook output, stdout first."""
        if self.result is None:
            return ""
        parts = [self.result.stdout or "", self.result.stderr or ""]
        return "\n".join(part.rstrip() for part in parts if part.strip())


class OperationCancelled(GenoringError):
    """The operator interrupted a blocking wait."""


class ReadinessTimeout(GenoringError):
    """A module did not report ``running`` within the polling budget."""

    def __init__(self, module: str, last_state: str, tries: int, services: Iterable[str] = ()):
        self.module = module
        self.last_state = last_state
        self.tries = tries
        self.services = list(services)
        if last_state:
            state = f"last state '{last_state}'"
        else:
            state = "last state unknown, not necessarily failed"
        super().__init__(
            f"Module '{module}' was not ready after {tries} checks ({state})"
        )
