"""Process execution for AutoAgent.

Runs subprocesses with timeout, captures stdout/stderr and returns
structured results. Policy checks happen upstream; this module only
spawns the process it is given.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from autoagent.core.exceptions import ShellTimeoutError, ToolError

logger = logging.getLogger("autoagent.tools.shell")

DEFAULT_TIMEOUT = 30  # seconds
INSTALL_TIMEOUT = 120
MAX_OUTPUT_BYTES = 1_048_576

PACKAGE_MANAGERS = ("npm", "pip")


@dataclass
class ShellResult:
    """Structured result from a shell command."""
    command: str
    return_code: int
    stdout: str
    stderr: str
    cwd: Optional[str] = None
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.return_code == 0 and not self.timed_out

    def to_data(self) -> dict:
        return {
            "command": self.command,
            "stdout": self.stdout.strip(),
            "stderr": self.stderr.strip(),
            "exit_code": self.return_code,
            "cwd": self.cwd,
        }


def run_command(
    command: str | list[str],
    cwd: Optional[str] = None,
    timeout: int = DEFAULT_TIMEOUT,
    env: Optional[dict[str, str]] = None,
    safe_env_vars: Optional[Sequence[str]] = None,
) -> ShellResult:
    """Execute a command with timeout and output capture.

    Args:
        command: Command string (run through the shell) or list of args.
        cwd: Working directory for the command.
        timeout: Max seconds before killing the process.
        env: Extra environment variables layered over the base env.
        safe_env_vars: If given, the base env keeps only these variables.

    Returns:
        ShellResult with return code, stdout, stderr.

    Raises:
        ShellTimeoutError: If command exceeds timeout.
        ToolError: If command can't be started.
    """
    cmd_str = command if isinstance(command, str) else " ".join(command)
    logger.debug("Running: %s (cwd=%s, timeout=%ds)", cmd_str, cwd, timeout)

    try:
        result = subprocess.run(
            command,
            shell=isinstance(command, str),
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=_build_env(env, safe_env_vars),
        )
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ds: %s", timeout, cmd_str)
        raise ShellTimeoutError(f"Command timed out after {timeout}s: {cmd_str}")
    except FileNotFoundError as e:
        raise ToolError(f"Command not found: {e}") from e
    except OSError as e:
        raise ToolError(f"Failed to run command: {e}") from e

    stdout = _truncate_output(result.stdout)
    stderr = _truncate_output(result.stderr)
    logger.debug(
        "Command finished: rc=%d stdout=%d chars stderr=%d chars",
        result.returncode, len(stdout), len(stderr),
    )
    return ShellResult(
        command=cmd_str,
        return_code=result.returncode,
        stdout=stdout,
        stderr=stderr,
        cwd=cwd,
    )


def install_packages(
    packages: list[str],
    cwd: str,
    manager: str = "npm",
    dev: bool = False,
    timeout: int = INSTALL_TIMEOUT,
    safe_env_vars: Optional[Sequence[str]] = None,
) -> ShellResult:
    """Install packages with npm or pip in the given project directory."""
    if manager not in PACKAGE_MANAGERS:
        raise ToolError(f"Unsupported package manager: {manager}")
    if not packages:
        raise ToolError("No packages given")
    for name in packages:
        if not name or name.startswith("-"):
            raise ToolError(f"Invalid package name: {name!r}")

    if manager == "npm":
        args = ["npm", "install", "--save-dev" if dev else "--save", *packages]
    else:
        args = ["pip", "install", *packages]

    return run_command(args, cwd=cwd, timeout=timeout, safe_env_vars=safe_env_vars)


def _truncate_output(text: str) -> str:
    if len(text.encode("utf-8")) <= MAX_OUTPUT_BYTES:
        return text

    encoded = text.encode("utf-8")[:MAX_OUTPUT_BYTES]
    truncated = encoded.decode("utf-8", errors="ignore")
    return truncated + "\n... [output truncated]"


def _build_env(
    env: Optional[dict[str, str]],
    safe_env_vars: Optional[Sequence[str]],
) -> dict[str, str]:
    if safe_env_vars is None:
        base_env = dict(os.environ)
    else:
        base_env = {k: v for k, v in os.environ.items() if k in safe_env_vars}

    if env:
        base_env.update(env)

    return base_env
