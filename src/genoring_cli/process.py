"""External process execution with normalized exit status."""

import logging
import signal
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


class ExitKind(str, Enum):
    """How a process ended."""

    EXITED = "exited"
    SIGNALED = "signaled"
    NOT_FOUND = "not-found"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ExitStatus:
    """Exit code and signal, never conflated."""

    kind: ExitKind
    code: int = 0
    signal: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.kind == ExitKind.EXITED and self.code == 0

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExitStatus":
        # subprocess reports death by signal as a negative return code.
        if returncode < 0:
            return cls(ExitKind.SIGNALED, code=128 - returncode, signal=-returncode)
        return cls(ExitKind.EXITED, code=returncode)

    def describe(self) -> str:
        if self.kind == ExitKind.SIGNALED:
            try:
                name = signal.Signals(self.signal).name
            except ValueError:
                name = str(self.signal)
            return f"killed by signal {name}"
        if self.kind == ExitKind.NOT_FOUND:
            return "command not found"
        if self.kind == ExitKind.TIMEOUT:
            return "timed out"
        return f"exit code {self.code}"


@dataclass(frozen=True)
class ProcessResult:
    """Captured output and status of a finished process."""

    args: List[str]
    status: ExitStatus
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.status.ok

    @property
    def returncode(self) -> int:
        return self.status.code

    @property
    def output(self) -> str:
        return "\n".join(part.rstrip() for part in (self.stdout, self.stderr) if part and part.strip())


def _decode(output: Union[bytes, str, None]) -> str:
    # TimeoutExpired carries raw bytes even when the run was in text mode.
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output or ""


def run_process(
    args: Sequence[Union[str, Path]],
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
    input_text: Optional[str] = None,
) -> ProcessResult:
    """
    Run a command and capture its output.

    Never raises for a failing command: a missing executable, a timeout or a
    signal are all reported through the returned ExitStatus.

    Args:
        args: Command and arguments
        env: Full environment for the child (inherits the parent's when None)
        cwd: Working directory
        timeout: Seconds before the process is killed
        input_text: Text sent to the process standard input

    Returns:
        ProcessResult with stdout, stderr and ExitStatus
    """
    argv = [str(a) for a in args]
    logger.debug("Running: %s", " ".join(argv))
    try:
        completed = subprocess.run(
            argv,
            env=env,
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            input=input_text,
        )
    except FileNotFoundError as e:
        return ProcessResult(argv, ExitStatus(ExitKind.NOT_FOUND, code=COMMAND_NOT_FOUND), "", str(e))
    except PermissionError as e:
        return ProcessResult(argv, ExitStatus(ExitKind.EXITED, code=126), "", str(e))
    except subprocess.TimeoutExpired as e:
        return ProcessResult(
            argv, ExitStatus(ExitKind.TIMEOUT, code=124), _decode(e.stdout), _decode(e.stderr)
        )

    result = ProcessResult(
        argv,
        ExitStatus.from_returncode(completed.returncode),
        completed.stdout or "",
        completed.stderr or "",
    )
    if not result.ok:
        logger.debug("Command %s failed: %s", argv[0], result.status.describe())
    return result
