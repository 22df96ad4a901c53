"""Command execution utilities for external image tools."""

from __future__ import annotations

import subprocess
from typing import Mapping, Optional, Sequence

from wic_patch.logging import LoggerFactory

from .exceptions import ToolCommandError


log = LoggerFactory.for_tools()


def run_command(
    command: Sequence[str],
    *,
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess:
    """Run a command and return the completed process without checking it.

    Raises ToolCommandError only when the command cannot be started or
    exceeds ``timeout``.
    """
    command = [str(part) for part in command]
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            input=input_text,
            text=True,
            capture_output=True,
            env=dict(env) if env is not None else None,
            timeout=timeout,
        )
    except FileNotFoundError as error:
        raise ToolCommandError(command, None, f"{command[0]} not found") from error
    except subprocess.TimeoutExpired as error:
        raise ToolCommandError(
            command, None, f"timed out after {timeout} seconds"
        ) from error
    if result.stdout:
        log.bind(tags=["tools", "stdout"]).trace(f"stdout: {result.stdout.strip()}")
    if result.stderr:
        log.bind(tags=["tools", "stderr"]).trace(f"stderr: {result.stderr.strip()}")
    log.debug(f"Command completed with return code {result.returncode}")
    return result


def run_checked_command(
    command: Sequence[str],
    *,
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> str:
    """Run a command and raise ToolCommandError if it fails."""
    result = run_command(command, input_text=input_text, env=env, timeout=timeout)
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        stdout = (result.stdout or "").strip()
        message = stderr or stdout or "Command failed"
        raise ToolCommandError(command, result.returncode, message)
    return result.stdout


__all__ = ["run_command", "run_checked_command"]
