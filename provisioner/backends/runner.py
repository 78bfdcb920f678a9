"""
Command runner — the single place where subprocesses are started.

Backends and command probes go through a CommandRunner so that tests
can substitute a fake that records commands instead of running them.
``run`` never raises: every failure mode ends up in the CommandResult.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Keep captured output bounded; install scripts can be very chatty.
_OUTPUT_TAIL = 4000


@dataclass
class CommandResult:
    """Outcome of one command."""

    command: str
    ok: bool
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    error: str = ""

    @property
    def summary(self) -> str:
        """Best one-line explanation of a failure."""
        if self.ok:
            return ""
        if self.error:
            return self.error
        tail = (self.stderr or self.stdout).strip().splitlines()
        reason = tail[-1] if tail else ""
        msg = f"`{self.command}` exited with code {self.returncode}"
        return f"{msg}: {reason}" if reason else msg


class CommandRunner:
    """Run commands with captured output.

    A ``str`` command runs through the shell (pipes, ``||``); a list
    runs directly.
    """

    def run(
        self,
        cmd: list[str] | str,
        *,
        timeout: float = 120,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        use_shell = isinstance(cmd, str)
        display = cmd if isinstance(cmd, str) else " ".join(cmd)

        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)

        logger.debug("Executing: %s", display)
        start = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                shell=use_shell,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=full_env,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=display,
                ok=False,
                error=f"`{display}` timed out after {timeout}s",
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )
        except (FileNotFoundError, PermissionError) as e:
            return CommandResult(command=display, ok=False, error=f"Cannot execute `{display}`: {e}")
        except OSError as e:
            logger.exception("Subprocess error: %s", display)
            return CommandResult(command=display, ok=False, error=str(e))

        elapsed_ms = int((time.monotonic() - start) * 1000)
        return CommandResult(
            command=display,
            ok=result.returncode == 0,
            returncode=result.returncode,
            stdout=(result.stdout or "")[-_OUTPUT_TAIL:],
            stderr=(result.stderr or "")[-_OUTPUT_TAIL:],
            elapsed_ms=elapsed_ms,
        )
