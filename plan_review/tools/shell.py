"""Subprocess execution for plan-review.

Runs the review engine CLIs with a timeout, feeds the prompt on stdin,
captures stdout/stderr, and provides structured results for the engine
invoker's retry policy.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

from plan_review.core.exceptions import ShellTimeoutError, ToolError

logger = logging.getLogger("plan_review.tools.shell")

DEFAULT_TIMEOUT = 300  # seconds
MAX_OUTPUT_BYTES = 1_048_576


@dataclass
class ShellResult:
    """Structured result from a shell command."""
    command: str
    return_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.return_code == 0 and not self.timed_out


def find_executable(name: str, env: Optional[dict[str, str]] = None) -> Optional[str]:
    """Resolve an executable on PATH, or None when it does not exist."""
    path = (env or os.environ).get("PATH")
    return shutil.which(name, path=path)


def run_command(
    command: list[str],
    input_text: Optional[str] = None,
    cwd: Optional[str] = None,
    timeout: int = DEFAULT_TIMEOUT,
    env: Optional[dict[str, str]] = None,
) -> ShellResult:
    """Execute a command with timeout and output capture.

    Args:
        command: Argument vector. Never run through a shell.
        input_text: Text written to the child's stdin.
        cwd: Working directory for the command.
        timeout: Max seconds before killing the process.
        env: Complete environment for the child (defaults to ours).

    Returns:
        ShellResult with return code, stdout, stderr.

    Raises:
        ShellTimeoutError: If command exceeds timeout.
        ToolError: If command can't be started.
    """
    cmd_str = " ".join(command)
    logger.debug("Running: %s (cwd=%s, timeout=%ds)", cmd_str, cwd, timeout)

    try:
        result = subprocess.run(
            command,
            input=input_text if input_text is not None else "",
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            env=env if env is not None else dict(os.environ),
        )
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ds: %s", timeout, cmd_str)
        raise ShellTimeoutError(f"Command timed out after {timeout}s: {cmd_str}")
    except FileNotFoundError as e:
        raise ToolError(f"Command not found: {e}") from e
    except OSError as e:
        raise ToolError(f"Failed to run command: {e}") from e

    stdout = _truncate_output(result.stdout or "")
    stderr = _truncate_output(result.stderr or "")
    logger.debug(
        "Command finished: rc=%d stdout=%d chars stderr=%d chars",
        result.returncode, len(stdout), len(stderr),
    )
    return ShellResult(
        command=cmd_str,
        return_code=result.returncode,
        stdout=stdout,
        stderr=stderr,
    )


def _truncate_output(text: str) -> str:
    if len(text.encode("utf-8")) <= MAX_OUTPUT_BYTES:
        return text

    encoded = text.encode("utf-8")[:MAX_OUTPUT_BYTES]
    truncated = encoded.decode("utf-8", errors="ignore")
    return truncated + "\n... [output truncated]"
