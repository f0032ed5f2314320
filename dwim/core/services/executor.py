"""
Executor
========

The execution environment: runs a native resolution (an executable on
disk) or an interpreted action (a shell command line) and reports the
exit status.

By default the child inherits stdin/stdout/stderr so the shim is
transparent to its caller; ``capture=True`` collects the output instead.

Layer: core.services
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Sequence

from dwim.core.exceptions import ExecutionFailure
from dwim.core.models     import ExitCode, NativeResolution

log = logging.getLogger(__name__)

# status a POSIX shell reports for "command not found / not executable"
EXIT_NOT_RUNNABLE = 127


@dataclass(slots=True)
class ExecutionResult:
    exit_code: int
    stdout:    str = ""
    stderr:    str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self) -> "ExecutionResult":
        """
        Raise ExecutionFailure on a non-zero status.  Killed by signal N
        → 128+N.  A status that collides with one of dwim's own codes
        (usage, token, pending) is reported as FAILURE; the real status stays
        in the message and the ledger.
        """
        if self.exit_code < 0:
            raise ExecutionFailure(128 - self.exit_code, f"action killed by signal {-self.exit_code}")
        if self.exit_code in ExitCode.reserved():
            raise ExecutionFailure(ExitCode.FAILURE, f"action exited with status {self.exit_code}")
        if self.exit_code:
            raise ExecutionFailure(self.exit_code)
        return self


# ---------------------------------------------------------------------------
async def run_process(
    cmd: Sequence[str],
    *,
    cwd: str | Path | None = None,
    capture: bool = False,
    input: bytes | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> tuple[str, str, int]:
    """
    Async wrapper around subprocess; returns (stdout, stderr, rc).

    Raises ``asyncio.TimeoutError`` after killing the child when
    ``timeout`` elapses.
    """
    log.debug("Running %s (cwd=%s)", " ".join(cmd), cwd)

    pipe = asyncio.subprocess.PIPE
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=str(cwd) if cwd else None,
        stdin=pipe if input is not None else None,
        stdout=pipe if capture else None,
        stderr=pipe if capture else None,
        env=dict(env) if env is not None else None,
    )
    try:
        stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(input), timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise

    stdout = stdout_b.decode(errors="replace") if stdout_b is not None else ""
    stderr = stderr_b.decode(errors="replace") if stderr_b is not None else ""
    return stdout, stderr, int(proc.returncode)


# ---------------------------------------------------------------------------
class Executor:

    def __init__(self, *, capture: bool = False, shell: str = "/bin/sh") -> None:
        self.capture = capture
        self.shell = shell

    # ════════════════════════════════════════════════════════════════════
    #                         PUBLIC  API
    # ════════════════════════════════════════════════════════════════════
    def run_native(
        self,
        resolution: NativeResolution,
        args: Sequence[str],
        *,
        cwd: str | Path,
        env: Mapping[str, str] | None = None,
    ) -> ExecutionResult:
        cmd = [str(resolution.executable_ref), *args]
        return self._execute(cmd, cwd=cwd, env=env)

    def run_action(
        self,
        action: str,
        *,
        cwd: str | Path,
        env: Mapping[str, str] | None = None,
    ) -> ExecutionResult:
        return self._execute([self.shell, "-c", action], cwd=cwd, env=env)

    # ════════════════════════════════════════════════════════════════════
    #                         INTERNAL HELPERS
    # ════════════════════════════════════════════════════════════════════
    def _execute(
        self,
        cmd: list[str],
        *,
        cwd: str | Path,
        env: Mapping[str, str] | None,
    ) -> ExecutionResult:
        child_env: Dict[str, str] = dict(os.environ)
        child_env.update(env or {})
        try:
            stdout, stderr, rc = asyncio.run(
                run_process(cmd, cwd=cwd, capture=self.capture, env=child_env)
            )
        except OSError as exc:
            log.error("Could not start %s: %s", cmd[0], exc)
            return ExecutionResult(EXIT_NOT_RUNNABLE, "", str(exc))

        if rc != 0:
            log.warning("%s exited with status %d", cmd[0], rc)
        return ExecutionResult(rc, stdout, stderr)
