"""Thin subprocess runner shared by the command-line adapters."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

from .errors import CommandError

logger = logging.getLogger("deacon.proc")


def run(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: Optional[float] = None,
) -> str:
    """Run a command and return its stdout.

    Args:
        cmd: Command and arguments.
        cwd: Working directory for the command.
        timeout: Seconds before the command is abandoned. None waits forever.

    Returns:
        str: Captured stdout.

    Raises:
        CommandError: On a non-zero exit, a timeout, or a missing binary.
    """
    logger.debug("run: %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise CommandError(cmd, output=str(exc)) from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandError(cmd, output=f"timed out after {timeout}s") from exc

    if result.returncode != 0:
        raise CommandError(cmd, result.returncode, (result.stderr or "") + (result.stdout or ""))
    return result.stdout
