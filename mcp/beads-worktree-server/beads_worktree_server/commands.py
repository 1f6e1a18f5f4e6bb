"""
Subprocess helpers shared by the git, gh and bd adapters.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import CommandTimeoutError

logger = logging.getLogger(__name__)

# Exit code reported when the executable could not be started at all.
SPAWN_FAILED = 127


@dataclass(frozen=True)
class CommandResult:
    args: tuple
    returncode: int
    stdout: str = ""
    stderr: str = ""
    spawned: bool = True

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(
    args: list[str],
    cwd: Union[str, Path, None] = None,
    timeout: Optional[float] = None
) -> CommandResult:
    """Run a command and capture its output.

    A command that cannot be spawned is reported as a failed result rather than
    an exception, so callers handle "git missing" and "git failed" the same way.
    Only an expired timeout raises.
    """
    cmd_str = " ".join(args)
    logger.debug("Running: %s (cwd=%s)", cmd_str, cwd)
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            cwd=str(cwd) if cwd is not None else None,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise CommandTimeoutError(f"Command timed out after {timeout:g} seconds")
    except (FileNotFoundError, OSError) as e:
        return CommandResult(
            args=tuple(args),
            returncode=SPAWN_FAILED,
            stderr=f"Failed to run {args[0]} command: {e}",
            spawned=False,
        )

    if result.returncode != 0:
        logger.debug("Command failed (%d): %s\n  %s", result.returncode, cmd_str, result.stderr.strip())
    return CommandResult(
        args=tuple(args),
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
    )
