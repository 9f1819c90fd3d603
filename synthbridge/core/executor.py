"""
Executor: runs one worker program under one deadline.

Behavior:
- Spawn '<interpreter> -' with the program text on stdin (no argv size limits)
- Capture stdout/stderr until exit or deadline
- On deadline: kill the worker (whole process group on POSIX), reap it,
  discard partial output
- Never raise for worker failures; every path returns an ExecutionOutcome
"""

from __future__ import annotations

import os
import signal
import subprocess
import time
import shlex
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# seconds to wait for a killed worker to be reaped
_REAP_TIMEOUT = 5.0


@dataclass
class ExecutionOutcome:
    status: str  # "exited" | "timeout" | "launch_failed"
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timeout: Optional[float] = None
    error: Optional[str] = None
    pid: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "exited" and self.returncode == 0


@dataclass
class ProcessExecutor:
    """Spawns worker interpreters; one call to run() is one worker process."""

    interpreter: str
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[Path] = None

    def command(self) -> List[str]:
        # '-' reads the whole program from stdin
        return [self.interpreter, "-"]

    def _environment(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        env.setdefault("PYTHONIOENCODING", "utf-8")
        env.setdefault("PYTHONUNBUFFERED", "1")
        return env

    def run(self, program: str, timeout: float) -> ExecutionOutcome:
        """Execute program text in a fresh worker, bounded by timeout seconds."""
        cmd = self.command()
        cmd_repr = " ".join(shlex.quote(x) for x in cmd)
        interp = Path(self.interpreter)
        # bare names are resolved through PATH by Popen
        if interp.is_absolute() and not interp.exists():
            return ExecutionOutcome(
                status="launch_failed",
                error=f"Python executable does not exist at path: {self.interpreter}",
                timeout=timeout,
            )
        started = time.monotonic()
        popen_kwargs = {
            "stdin": subprocess.PIPE,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "cwd": str(self.cwd) if self.cwd else None,
            "env": self._environment(),
        }
        if os.name == "posix":
            # new session so a deadline kill reaches every child of the worker
            popen_kwargs["start_new_session"] = True
        logger.debug(f"spawn cmd={cmd_repr} timeout={timeout}")
        try:
            proc = subprocess.Popen(cmd, **popen_kwargs)
        except OSError as ex:
            logger.error(f"Worker spawn failed: {ex}")
            return ExecutionOutcome(
                status="launch_failed",
                error=f"Python execution failed: {ex}",
                duration=time.monotonic() - started,
                timeout=timeout,
            )

        try:
            out, err = proc.communicate(input=program.encode("utf-8"), timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            duration = time.monotonic() - started
            logger.warning(f"Worker pid={proc.pid} exceeded deadline of {timeout:g}s; terminated")
            return ExecutionOutcome(
                status="timeout",
                returncode=proc.returncode,
                duration=duration,
                timeout=timeout,
                pid=proc.pid,
            )
        except BaseException:
            # interrupted caller: never leave an orphaned worker behind
            self._kill(proc)
            raise

        duration = time.monotonic() - started
        logger.debug(f"Worker pid={proc.pid} done rc={proc.returncode} in {duration:.2f}s")
        return ExecutionOutcome(
            status="exited",
            returncode=proc.returncode,
            stdout=out.decode("utf-8", errors="replace"),
            stderr=err.decode("utf-8", errors="replace"),
            duration=duration,
            timeout=timeout,
            pid=proc.pid,
        )

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        """Force-terminate the worker and reap it; partial output is dropped."""
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except (ProcessLookupError, PermissionError):
            pass
        try:
            proc.communicate(timeout=_REAP_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.error(f"Worker pid={proc.pid} did not exit after kill")
